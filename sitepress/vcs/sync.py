"""GitSyncManager: keep each site's local clone in step with its remote.

One :class:`SiteRepository` handle exists per site id.  Its re-entrant lock
serializes every git operation on that clone, so pulls, commits and the content
writes held under it by ContentManager never interleave.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from sitepress import config as defaults
from sitepress.errors import GitSyncError
from sitepress.models.results import FileOperationResult, GitOperationResult
from sitepress.models.site import Principal, SiteConfig
from sitepress.vcs.remote import build_authenticated_url, redact
from sitepress.vcs.repo import RepoManager

logger = logging.getLogger(__name__)


@dataclass
class SiteRepository:
    """Cached git handle for one site."""

    site_id: str
    repo: RepoManager
    fingerprint: tuple[str, str, str]
    lock: threading.RLock = field(default_factory=threading.RLock)


def _fingerprint(config: SiteConfig) -> tuple[str, str, str]:
    return (
        config.repository_url,
        config.credential,
        str(Path(config.local_path).resolve()),
    )


class RepositoryRegistry:
    """Keyed store of git handles, one per site id."""

    def __init__(self) -> None:
        self._handles: dict[str, SiteRepository] = {}
        self._lock = threading.Lock()

    def open(self, config: SiteConfig) -> SiteRepository:
        """Return the handle for *config*, creating or replacing it as needed.

        A handle whose URL, credential or path no longer match the config is
        replaced; the replacement keeps the old lock so in-flight work on the
        same site still serializes.
        """
        fingerprint = _fingerprint(config)
        with self._lock:
            handle = self._handles.get(config.id)
            if handle is not None and handle.fingerprint == fingerprint:
                return handle
            repo = RepoManager(config.local_path, secret=config.credential or None)
            if handle is None:
                handle = SiteRepository(config.id, repo, fingerprint)
            else:
                logger.info("Site %s configuration changed; replacing git handle", config.id)
                handle = SiteRepository(config.id, repo, fingerprint, lock=handle.lock)
            self._handles[config.id] = handle
            return handle

    def get(self, site_id: str) -> SiteRepository | None:
        with self._lock:
            return self._handles.get(site_id)

    def evict(self, site_id: str) -> bool:
        with self._lock:
            return self._handles.pop(site_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()

    def __contains__(self, site_id: object) -> bool:
        with self._lock:
            return site_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)


class GitSyncManager:
    """Clone, pull, commit and push on behalf of content and deployment flows.

    Parameters
    ----------
    registry:
        Handle store to use.  A private one is created if omitted.
    bot_name, bot_email:
        Commit identity used when no principal is supplied.
    """

    def __init__(
        self,
        registry: RepositoryRegistry | None = None,
        bot_name: str = defaults.BOT_NAME,
        bot_email: str = defaults.BOT_EMAIL,
    ) -> None:
        self.registry = registry if registry is not None else RepositoryRegistry()
        self.bot_name = bot_name
        self.bot_email = bot_email
        self._listeners: list[Callable[[str], None]] = []

    def add_sync_listener(self, callback: Callable[[str], None]) -> None:
        """Call *callback* with the site id whenever a pull rewrites the worktree."""
        self._listeners.append(callback)

    def _worktree_changed(self, site_id: str) -> None:
        for callback in self._listeners:
            callback(site_id)

    # -- Pull -------------------------------------------------------------------

    def sync(self, config: SiteConfig) -> str:
        """Clone or fast-forward the site's clone; return a summary message.

        Raises
        ------
        GitSyncError
            Or one of its subclasses when git fails.  Diverged history raises
            :class:`~sitepress.errors.GitConflictError`.
        """
        handle = self.registry.open(config)
        auth_url = build_authenticated_url(config.repository_url, config.credential)
        with handle.lock:
            repo = handle.repo
            if not repo.is_repo():
                repo.clone(auth_url, config.branch)
                # Keep the stored remote free of credentials
                repo.set_remote_url(config.repository_url)
                return f"Cloned {config.branch} into {repo.path}"

            lost = repo.discard_local_changes()
            if lost:
                logger.warning(
                    "Discarded local changes in %s before pull: %s",
                    config.id, ", ".join(entry[3:] for entry in lost),
                )
                self._worktree_changed(config.id)
            before = repo.head()
            tracking = repo.fetch(auth_url, config.branch)
            if repo.current_branch() != config.branch:
                logger.info("Switching %s to branch %s", config.id, config.branch)
                repo.switch_branch(config.branch, tracking)
            repo.fast_forward(tracking)
            after = repo.head()
            if before == after:
                return "Already up to date"
            self._worktree_changed(config.id)
            return f"Fast-forwarded {before[:7]}..{after[:7]}"

    def ensure_clean_and_pull(self, config: SiteConfig) -> GitOperationResult:
        """Bring the local clone level with the remote branch."""
        try:
            message = self.sync(config)
        except GitSyncError as exc:
            error = redact(str(exc), config.credential)
            logger.error("Pull failed for site %s: %s", config.id, error)
            return GitOperationResult(success=False, error=error, error_code=exc.code)
        logger.info("Site %s synced: %s", config.id, message)
        return GitOperationResult(success=True, message=message)

    # -- Commit -----------------------------------------------------------------

    def commit_and_push(
        self,
        config: SiteConfig,
        paths: list[str],
        message: str,
        author: Principal | None = None,
    ) -> GitOperationResult:
        """Stage exactly *paths*, commit as *author* and push to the branch.

        An empty staged diff is a successful no-op that reports the current
        HEAD.  When the push fails the commit is undone, leaving the changes
        in the working tree.
        """
        handle = self.registry.open(config)
        auth_url = build_authenticated_url(config.repository_url, config.credential)
        name = author.display_name if author else self.bot_name
        email = author.email if author else self.bot_email

        with handle.lock:
            repo = handle.repo
            try:
                if not repo.is_repo():
                    raise GitSyncError(f"Site {config.id} has no local clone at {repo.path}")
                repo.stage(*paths)
                if not repo.has_staged_changes():
                    head = repo.head()
                    logger.debug("Nothing to commit for site %s", config.id)
                    return GitOperationResult(success=True, hash=head, message="Nothing to commit")

                sha = repo.commit(message, name, email)
                try:
                    repo.push(auth_url, config.branch)
                except GitSyncError:
                    repo.undo_last_commit()
                    raise
            except GitSyncError as exc:
                error = redact(str(exc), config.credential)
                logger.error("Commit failed for site %s: %s", config.id, error)
                return GitOperationResult(success=False, error=error, error_code=exc.code)

        logger.info("Committed %s to %s/%s (%d path(s))", sha[:7], config.id, config.branch, len(paths))
        return GitOperationResult(
            success=True,
            hash=sha,
            message=f"Committed and pushed {len(paths)} path(s)",
        )

    # -- Status -----------------------------------------------------------------

    def get_repository_status(self, config: SiteConfig) -> FileOperationResult:
        """Report cleanliness, divergence, changed files and recent commits."""
        handle = self.registry.open(config)
        with handle.lock:
            repo = handle.repo
            try:
                if not repo.is_repo():
                    raise GitSyncError(f"Site {config.id} has no local clone at {repo.path}")
                changes = repo.changed_files()
                ahead, behind = repo.ahead_behind(f"origin/{config.branch}")
                data = {
                    "is_clean": not any(changes.values()),
                    "branch": repo.current_branch(),
                    "ahead": ahead,
                    "behind": behind,
                    **changes,
                    "recent_commits": repo.recent_commits(10),
                }
            except GitSyncError as exc:
                return FileOperationResult.failed(redact(str(exc), config.credential), exc.code)
        return FileOperationResult.ok(data)

    # -- Handles ----------------------------------------------------------------

    def clear_instance(self, site_id: str) -> None:
        """Drop the cached handle of *site_id*."""
        self.registry.evict(site_id)

    def clear_all_instances(self) -> None:
        """Drop every cached handle."""
        self.registry.clear()
