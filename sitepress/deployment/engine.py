"""DeploymentEngine: tracked pull -> build -> publish pipelines.

Tasks live in process memory only.  Each site has a FIFO queue drained by at
most one worker at a time, so a second deployment of a site waits in
``pending`` without holding a pool thread while other sites keep running.
Cancellation is a flag checked between stages plus termination of the
running build process.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sitepress import config as defaults
from sitepress.deployment.builder import ProcessRegistry, build_site
from sitepress.deployment.environment import check_build_environment
from sitepress.errors import BuildError, GitSyncError, SitePressError, TaskCancelled
from sitepress.models.deployment import (
    BuildEnvironmentReport,
    BuildResult,
    DeploymentStatus,
    DeploymentTask,
    LogLevel,
    LogSource,
)
from sitepress.models.site import SiteConfig
from sitepress.settings import EngineSettings
from sitepress.vcs.publish import publish_directory
from sitepress.vcs.remote import build_authenticated_url, redact
from sitepress.vcs.sync import GitSyncManager

logger = logging.getLogger(__name__)


def new_task_id() -> str:
    """Return ``deploy_<epoch ms>_<random>``."""
    return f"deploy_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class DeploymentEngine:
    """Run and track deployments.

    Parameters
    ----------
    git:
        Sync manager used for the pull stage.
    settings:
        Engine settings; defaults apply when omitted.
    """

    def __init__(self, git: GitSyncManager, settings: EngineSettings | None = None) -> None:
        self.git = git
        self.settings = settings or EngineSettings()
        self._lock = threading.RLock()
        self._tasks: dict[str, DeploymentTask] = {}
        self._tokens: dict[str, threading.Event] = {}
        self._done: dict[str, threading.Event] = {}
        self._queues: dict[str, deque[tuple[str, SiteConfig]]] = {}
        self._draining: set[str] = set()
        self._site_locks: dict[str, threading.Lock] = {}
        self._processes = ProcessRegistry()
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="sitepress-deploy",
        )

    # -- Task registry --------------------------------------------------------------

    def _register(self, config: SiteConfig, triggered_by: str | None) -> str:
        task = DeploymentTask(id=new_task_id(), site_id=config.id, triggered_by=triggered_by)
        with self._lock:
            self._tasks[task.id] = task
            self._tokens[task.id] = threading.Event()
            self._done[task.id] = threading.Event()
        return task.id

    def _forget(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)
            self._tokens.pop(task_id, None)
            self._done.pop(task_id, None)

    def _log(self, task_id: str, level: LogLevel, message: str, source: LogSource) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is not None:
                task.append_log(level, message, source)

    def _advance(self, task_id: str, target: DeploymentStatus) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.transition(target):
                raise TaskCancelled(f"Task {task_id} can no longer move to {target.value}")
        logger.info("Deployment %s -> %s", task_id, target.value)

    def _check_cancelled(self, task_id: str) -> None:
        token = self._tokens.get(task_id)
        if token is None or token.is_set():
            raise TaskCancelled(f"Task {task_id} was cancelled")

    def _fail(self, task_id: str, error: str, source: LogSource) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return
            task.append_log(LogLevel.ERROR, error, source)
            task.error = error
            task.transition(DeploymentStatus.FAILED)
        logger.error("Deployment %s failed: %s", task_id, error)

    def _site_lock(self, site_id: str) -> threading.Lock:
        with self._lock:
            return self._site_locks.setdefault(site_id, threading.Lock())

    # -- Pipeline -------------------------------------------------------------------

    def _pull(self, task_id: str, config: SiteConfig) -> None:
        self._log(task_id, LogLevel.INFO, "Pulling latest changes", LogSource.GIT)
        result = self.git.ensure_clean_and_pull(config)
        if not result.success:
            raise GitSyncError(result.error or "Pull failed", result.error_code)
        self._log(task_id, LogLevel.INFO, result.message, LogSource.GIT)

    def _build(self, task_id: str, config: SiteConfig) -> BuildResult:
        self._log(task_id, LogLevel.INFO, "Starting build", LogSource.BUILD)

        def on_line(level: LogLevel, line: str) -> None:
            self._log(task_id, level, line, LogSource.BUILD)

        result = build_site(config, on_line, task_id, self._processes)
        self._log(task_id, LogLevel.INFO, f"Build finished in {result.duration:.1f}s", LogSource.BUILD)
        return result

    def _deploy(self, task_id: str, config: SiteConfig) -> None:
        output = Path(config.local_path).expanduser() / config.build_output_dir
        self._log(task_id, LogLevel.INFO, f"Publishing {config.build_output_dir} to {self.settings.hosting_branch}", LogSource.DEPLOY)
        result = publish_directory(
            output,
            build_authenticated_url(config.repository_url, config.credential),
            branch=self.settings.hosting_branch,
            message=f"Deploy at {datetime.now(timezone.utc).isoformat()}",
            author_name=self.settings.bot_name,
            author_email=self.settings.bot_email,
            secret=config.credential or None,
        )
        short = result.commit_hash[:7] if result.commit_hash else "none"
        self._log(task_id, LogLevel.INFO, f"Published {short} to {result.branch}", LogSource.DEPLOY)

    def _run_pipeline(self, task_id: str, config: SiteConfig) -> None:
        secret = config.credential or None
        with self._site_lock(config.id):
            try:
                self._check_cancelled(task_id)
                self._advance(task_id, DeploymentStatus.PULLING)
                self._pull(task_id, config)

                self._check_cancelled(task_id)
                self._advance(task_id, DeploymentStatus.BUILDING)
                self._build(task_id, config)

                self._check_cancelled(task_id)
                self._advance(task_id, DeploymentStatus.DEPLOYING)
                self._deploy(task_id, config)

                self._advance(task_id, DeploymentStatus.COMPLETED)
                self._log(task_id, LogLevel.INFO, "Deployment completed", LogSource.DEPLOY)
            except TaskCancelled:
                logger.info("Deployment %s stopped after cancellation", task_id)
            except GitSyncError as exc:
                self._fail(task_id, redact(str(exc), secret), LogSource.GIT)
            except BuildError as exc:
                self._fail(task_id, str(exc), LogSource.BUILD)
            except SitePressError as exc:
                self._fail(task_id, redact(str(exc), secret), LogSource.DEPLOY)
            except Exception as exc:
                logger.exception("Unexpected error in deployment %s", task_id)
                self._fail(task_id, redact(f"Unexpected error: {exc}", secret), LogSource.DEPLOY)
            finally:
                with self._lock:
                    done = self._done.get(task_id)
                if done is not None:
                    done.set()

    def _drain(self, site_id: str) -> None:
        """Run queued pipelines of *site_id* one after another until none are left."""
        while True:
            with self._lock:
                queue = self._queues.get(site_id)
                if not queue:
                    self._queues.pop(site_id, None)
                    self._draining.discard(site_id)
                    return
                task_id, config = queue.popleft()
            self._run_pipeline(task_id, config)

    # -- Public API -----------------------------------------------------------------

    def create_deployment_task(self, config: SiteConfig, triggered_by: str | None = None) -> str:
        """Register a pending task and queue its pipeline behind the site's earlier ones.

        Returns the task id immediately.
        """
        task_id = self._register(config, triggered_by)
        self._log(task_id, LogLevel.INFO, f"Deployment task created for site {config.id}", LogSource.DEPLOY)
        logger.info("Created deployment %s for site %s", task_id, config.id)
        with self._lock:
            self._queues.setdefault(config.id, deque()).append((task_id, config))
            start = config.id not in self._draining
            self._draining.add(config.id)
        if start:
            self._executor.submit(self._drain, config.id)
        return task_id

    def get_task_status(self, task_id: str) -> DeploymentTask | None:
        """Return a snapshot of the task, or None if unknown."""
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    def get_active_tasks(self) -> list[DeploymentTask]:
        """Return snapshots of all non-terminal tasks, oldest first."""
        with self._lock:
            active = [t.model_copy(deep=True) for t in self._tasks.values() if not t.is_terminal]
        return sorted(active, key=lambda t: t.created_at)

    def list_site_tasks(self, site_id: str, page: int = 1, limit: int = 20) -> dict[str, Any]:
        """Return one page of a site's tasks, newest first."""
        page = max(page, 1)
        limit = max(limit, 1)
        with self._lock:
            tasks = [t.model_copy(deep=True) for t in self._tasks.values() if t.site_id == site_id]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        start = (page - 1) * limit
        return {
            "tasks": tasks[start:start + limit],
            "total": len(tasks),
            "page": page,
            "limit": limit,
        }

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a non-terminal task.

        The task is marked failed at once; the worker stops at its next stage
        boundary and a running build process is terminated.  Returns False
        for unknown or finished tasks.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return False
            task.append_log(LogLevel.WARN, "Deployment cancelled by user", LogSource.DEPLOY)
            task.error = "Deployment cancelled by user"
            task.transition(DeploymentStatus.FAILED)
            self._tokens[task_id].set()
        if self._processes.terminate(task_id):
            logger.info("Terminated build process of deployment %s", task_id)
        logger.warning("Deployment %s cancelled", task_id)
        return True

    def cleanup_completed_tasks(self, max_age_seconds: float | None = None) -> int:
        """Drop terminal tasks that completed more than *max_age_seconds* ago.

        Returns the number of tasks removed.
        """
        if max_age_seconds is None:
            max_age_seconds = self.settings.task_retention_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        with self._lock:
            stale = [
                task_id for task_id, task in self._tasks.items()
                if task.is_terminal and task.completed_at is not None and task.completed_at < cutoff
            ]
            for task_id in stale:
                self._forget(task_id)
        if stale:
            logger.info("Removed %d finished deployment task(s)", len(stale))
        return len(stale)

    def build_only(self, config: SiteConfig) -> BuildResult:
        """Run the build stage alone, synchronously, without publishing.

        The task record used for logging is removed before returning.
        """
        task_id = self._register(config, None)
        start = time.monotonic()
        try:
            with self._site_lock(config.id):
                result = self._build(task_id, config)
            error, exit_code = None, result.exit_code
        except BuildError as exc:
            self._log(task_id, LogLevel.ERROR, str(exc), LogSource.BUILD)
            error, exit_code = str(exc), exc.exit_code
        finally:
            with self._lock:
                task = self._tasks.get(task_id)
                lines = [entry.message for entry in task.logs] if task is not None else []
            self._forget(task_id)
        return BuildResult(
            success=error is None,
            duration=time.monotonic() - start,
            exit_code=exit_code,
            logs=lines,
            error=error,
        )

    def check_build_environment(self, config: SiteConfig) -> BuildEnvironmentReport:
        """Probe the site's build prerequisites; never raises."""
        return check_build_environment(config)

    def wait(self, task_id: str, timeout: float | None = None) -> DeploymentTask | None:
        """Block until the task's worker returns, then return its snapshot."""
        with self._lock:
            done = self._done.get(task_id)
        if done is not None and not done.wait(timeout):
            logger.debug("Timed out waiting for deployment %s", task_id)
        return self.get_task_status(task_id)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel active tasks and stop the worker pool."""
        for task in self.get_active_tasks():
            self.cancel_task(task.id)
        self._executor.shutdown(wait=wait)
