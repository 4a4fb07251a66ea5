"""Tests for the deployment pipeline: build runner, publisher and DeploymentEngine.

Builds are small ``sh`` scripts; publishing pushes to the bare remote from
conftest, so every stage runs against real git.
"""

from __future__ import annotations

import json
import re
import subprocess
import time
from collections.abc import Iterator
from pathlib import Path

import pytest

from sitepress.deployment.builder import ProcessRegistry, build_site, run_command
from sitepress.deployment.engine import DeploymentEngine, new_task_id
from sitepress.errors import BuildError, NotFound
from sitepress.models.deployment import DeploymentStatus, LogLevel, LogSource
from sitepress.models.site import SiteConfig
from sitepress.settings import EngineSettings
from sitepress.vcs.publish import publish_directory
from sitepress.vcs.sync import GitSyncManager

BUILD_SCRIPT = (
    "mkdir -p dist && printf '<h1>Demo</h1>' > dist/index.html "
    "&& touch dist/.nojekyll && echo built"
)


def _ls_branch(remote: Path, branch: str) -> list[str]:
    result = subprocess.run(
        ["git", "ls-tree", "-r", "--name-only", branch],
        cwd=remote, capture_output=True, text=True, check=True,
    )
    return sorted(result.stdout.split())


def _wait_for_log(engine: DeploymentEngine, task_id: str, text: str, timeout: float = 20.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        task = engine.get_task_status(task_id)
        if task is not None and any(text in entry.message for entry in task.logs):
            return
        time.sleep(0.05)
    raise AssertionError(f"log line {text!r} never appeared for {task_id}")


@pytest.fixture()
def engine(sync: GitSyncManager) -> Iterator[DeploymentEngine]:
    engine = DeploymentEngine(sync, EngineSettings(max_workers=2))
    yield engine
    engine.shutdown(wait=True)


@pytest.fixture()
def buildable(site: SiteConfig) -> SiteConfig:
    return site.model_copy(update={"build_command": BUILD_SCRIPT})


# ---------------------------------------------------------------------------
# Build runner
# ---------------------------------------------------------------------------


class TestRunCommand:
    def test_streams_stdout_and_stderr(self, tmp_path: Path):
        lines: list[tuple[LogLevel, str]] = []
        code = run_command(
            ["sh", "-c", "echo out; echo err >&2"], tmp_path,
            lambda level, line: lines.append((level, line)),
        )
        assert code == 0
        assert (LogLevel.INFO, "out") in lines
        assert (LogLevel.WARN, "err") in lines

    def test_shell_string(self, tmp_path: Path):
        lines: list[str] = []
        run_command("echo one && echo two", tmp_path, lambda level, line: lines.append(line))
        assert lines == ["one", "two"]

    def test_non_zero_exit(self, tmp_path: Path):
        with pytest.raises(BuildError) as excinfo:
            run_command("exit 7", tmp_path, lambda level, line: None)
        assert excinfo.value.exit_code == 7
        assert excinfo.value.code == "SP020"

    def test_missing_executable(self, tmp_path: Path):
        with pytest.raises(BuildError, match="could not start"):
            run_command(["sitepress-no-such-binary-xyz"], tmp_path, lambda level, line: None)

    def test_empty_argv(self, tmp_path: Path):
        with pytest.raises(BuildError, match="empty"):
            run_command([], tmp_path, lambda level, line: None)

    def test_process_registered_while_running(self, tmp_path: Path):
        registry = ProcessRegistry()
        seen: list[bool] = []
        run_command(
            "echo tick", tmp_path,
            lambda level, line: seen.append(registry.get("t1") is not None),
            task_id="t1", registry=registry,
        )
        assert seen == [True]
        assert registry.get("t1") is None

    def test_terminate_unknown(self):
        assert not ProcessRegistry().terminate("nope")


class TestBuildSite:
    def test_validate_runs_before_build(self, cloned: SiteConfig):
        site = cloned.model_copy(update={
            "validate_command": "echo validating",
            "build_command": ["sh", "-c", "echo building"],
        })
        lines: list[str] = []
        result = build_site(site, lambda level, line: lines.append(line))
        assert result.success
        assert result.exit_code == 0
        assert lines == ["validating", "building"]

    def test_failed_validation_skips_build(self, cloned: SiteConfig):
        site = cloned.model_copy(update={"validate_command": "exit 4", "build_command": BUILD_SCRIPT})
        with pytest.raises(BuildError, match="Validate command exited with code 4"):
            build_site(site, lambda level, line: None)
        assert not (Path(cloned.local_path) / "dist").exists()


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


class TestPublishDirectory:
    def test_creates_orphan_branch(self, tmp_path: Path, remote: Path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "index.html").write_text("<h1>v1</h1>")
        (out / ".nojekyll").write_text("")

        result = publish_directory(out, remote.as_uri(), branch="gh-pages", message="Deploy v1")

        assert result.success
        assert result.branch == "gh-pages"
        assert _ls_branch(remote, "gh-pages") == [".nojekyll", "index.html"]
        parents = subprocess.run(
            ["git", "rev-list", "--count", "gh-pages"],
            cwd=remote, capture_output=True, text=True, check=True,
        ).stdout.strip()
        assert parents == "1"
        assert "content/index.md" in _ls_branch(remote, "main")

    def test_replaces_previous_tree(self, tmp_path: Path, remote: Path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "old.html").write_text("old")
        publish_directory(out, remote.as_uri())
        (out / "old.html").unlink()
        (out / "new.html").write_text("new")

        publish_directory(out, remote.as_uri())

        assert _ls_branch(remote, "gh-pages") == ["new.html"]

    def test_unchanged_output_is_noop(self, tmp_path: Path, remote: Path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "index.html").write_text("same")
        first = publish_directory(out, remote.as_uri())
        second = publish_directory(out, remote.as_uri())
        assert second.success
        assert second.commit_hash == first.commit_hash

    def test_missing_directory(self, tmp_path: Path, remote: Path):
        with pytest.raises(NotFound):
            publish_directory(tmp_path / "nope", remote.as_uri())


# ---------------------------------------------------------------------------
# Deployment engine
# ---------------------------------------------------------------------------


class TestDeploymentPipeline:
    def test_task_id_format(self):
        assert re.fullmatch(r"deploy_\d+_[0-9a-f]{9}", new_task_id())

    def test_successful_deployment(self, engine: DeploymentEngine, buildable: SiteConfig, remote: Path):
        task_id = engine.create_deployment_task(buildable, triggered_by="u1")
        task = engine.wait(task_id, timeout=60)

        assert task is not None
        assert task.status is DeploymentStatus.COMPLETED, task.error
        assert task.progress == 100
        assert task.triggered_by == "u1"
        assert task.started_at is not None and task.completed_at is not None
        assert task.error is None
        sources = {entry.source for entry in task.logs}
        assert sources == {LogSource.GIT, LogSource.BUILD, LogSource.DEPLOY}
        assert any(entry.message == "built" for entry in task.logs)
        assert _ls_branch(remote, "gh-pages") == [".nojekyll", "index.html"]
        assert "dist/index.html" not in _ls_branch(remote, "main")

    def test_publish_commit_uses_bot_identity(self, sync: GitSyncManager, buildable: SiteConfig, remote: Path):
        engine = DeploymentEngine(sync, EngineSettings(bot_name="Deploy Bot", bot_email="bot@example.com"))
        try:
            engine.wait(engine.create_deployment_task(buildable), timeout=60)
        finally:
            engine.shutdown()
        author = subprocess.run(
            ["git", "log", "-1", "--format=%an <%ae>|%s", "gh-pages"],
            cwd=remote, capture_output=True, text=True, check=True,
        ).stdout.strip()
        assert author.startswith("Deploy Bot <bot@example.com>|Deploy at ")

    def test_build_failure(self, engine: DeploymentEngine, site: SiteConfig):
        failing = site.model_copy(update={"build_command": "echo oops >&2; exit 3"})
        task = engine.wait(engine.create_deployment_task(failing), timeout=60)

        assert task.status is DeploymentStatus.FAILED
        assert task.error == "Build command exited with code 3"
        assert any(e.level is LogLevel.WARN and e.message == "oops" for e in task.logs)
        last = task.logs[-1]
        assert last.level is LogLevel.ERROR
        assert last.source is LogSource.BUILD

    def test_missing_build_tool(self, engine: DeploymentEngine, site: SiteConfig):
        broken = site.model_copy(update={"build_command": ["sitepress-no-such-binary-xyz", "build"]})
        task = engine.wait(engine.create_deployment_task(broken), timeout=60)
        assert task.status is DeploymentStatus.FAILED
        assert "could not start" in task.error

    def test_missing_output_dir(self, engine: DeploymentEngine, site: SiteConfig):
        no_output = site.model_copy(update={"build_command": "echo nothing"})
        task = engine.wait(engine.create_deployment_task(no_output), timeout=60)
        assert task.status is DeploymentStatus.FAILED
        assert task.logs[-1].source is LogSource.DEPLOY
        assert "not found" in task.error

    def test_pull_failure(self, engine: DeploymentEngine, site: SiteConfig, tmp_path: Path):
        unreachable = site.model_copy(update={"repository_url": (tmp_path / "gone.git").as_uri()})
        task = engine.wait(engine.create_deployment_task(unreachable), timeout=60)
        assert task.status is DeploymentStatus.FAILED
        assert task.logs[-1].source is LogSource.GIT
        assert "tok_abc123" not in task.error

    def test_same_site_deployments_serialized(self, engine: DeploymentEngine, site: SiteConfig):
        slow = site.model_copy(update={"build_command": "sleep 0.5"})
        first = engine.create_deployment_task(slow)
        second = engine.create_deployment_task(slow)
        a = engine.wait(first, timeout=60)
        b = engine.wait(second, timeout=60)
        assert a.completed_at is not None and b.started_at is not None
        assert b.started_at >= a.completed_at

    def test_queued_site_does_not_starve_others(
        self, engine: DeploymentEngine, site: SiteConfig, tmp_path: Path,
    ):
        slow = site.model_copy(update={"build_command": "echo started; sleep 30"})
        queued = [engine.create_deployment_task(slow) for _ in range(3)]
        _wait_for_log(engine, queued[0], "started")

        other = site.model_copy(update={
            "id": "other",
            "local_path": str(tmp_path / "other-clone"),
            "build_command": BUILD_SCRIPT,
        })
        task = engine.wait(engine.create_deployment_task(other), timeout=20)
        assert task.status is DeploymentStatus.COMPLETED, task.error

        statuses = [engine.get_task_status(t).status for t in queued]
        assert statuses == [DeploymentStatus.BUILDING, DeploymentStatus.PENDING, DeploymentStatus.PENDING]
        for task_id in queued:
            assert engine.cancel_task(task_id)


class TestCancellation:
    def test_cancel_running_build(self, engine: DeploymentEngine, site: SiteConfig):
        slow = site.model_copy(update={"build_command": "echo started; sleep 30"})
        task_id = engine.create_deployment_task(slow)
        _wait_for_log(engine, task_id, "started")
        assert [t.id for t in engine.get_active_tasks()] == [task_id]

        start = time.monotonic()
        assert engine.cancel_task(task_id)
        task = engine.wait(task_id, timeout=20)

        assert time.monotonic() - start < 15
        assert task.status is DeploymentStatus.FAILED
        assert task.error == "Deployment cancelled by user"
        assert any(
            e.level is LogLevel.WARN and e.message == "Deployment cancelled by user" for e in task.logs
        )
        assert not any(e.level is LogLevel.ERROR for e in task.logs)
        assert engine.get_active_tasks() == []

    def test_cancel_finished_or_unknown(self, engine: DeploymentEngine, site: SiteConfig):
        assert not engine.cancel_task("deploy_0_missing")
        failing = site.model_copy(update={"build_command": "exit 1"})
        task_id = engine.create_deployment_task(failing)
        engine.wait(task_id, timeout=60)
        assert not engine.cancel_task(task_id)


class TestTaskRegistry:
    def test_unknown_task(self, engine: DeploymentEngine):
        assert engine.get_task_status("deploy_0_missing") is None

    def test_snapshots_are_copies(self, engine: DeploymentEngine, site: SiteConfig, tmp_path: Path):
        unreachable = site.model_copy(update={"repository_url": (tmp_path / "gone.git").as_uri()})
        task_id = engine.create_deployment_task(unreachable)
        snapshot = engine.wait(task_id, timeout=60)
        snapshot.logs.clear()
        assert engine.get_task_status(task_id).logs

    def test_list_site_tasks_paging(self, engine: DeploymentEngine, site: SiteConfig, tmp_path: Path):
        unreachable = site.model_copy(update={"repository_url": (tmp_path / "gone.git").as_uri()})
        ids = [engine.create_deployment_task(unreachable) for _ in range(3)]
        for task_id in ids:
            engine.wait(task_id, timeout=60)

        first = engine.list_site_tasks("demo", page=1, limit=2)
        second = engine.list_site_tasks("demo", page=2, limit=2)
        assert first["total"] == 3
        assert len(first["tasks"]) == 2
        assert len(second["tasks"]) == 1
        listed = first["tasks"] + second["tasks"]
        assert {t.id for t in listed} == set(ids)
        assert listed[0].created_at >= listed[-1].created_at
        assert engine.list_site_tasks("other")["total"] == 0

    def test_cleanup_completed_tasks(self, engine: DeploymentEngine, site: SiteConfig, tmp_path: Path):
        unreachable = site.model_copy(update={"repository_url": (tmp_path / "gone.git").as_uri()})
        task_id = engine.create_deployment_task(unreachable)
        engine.wait(task_id, timeout=60)

        assert engine.cleanup_completed_tasks() == 0
        time.sleep(0.01)
        assert engine.cleanup_completed_tasks(max_age_seconds=0) == 1
        assert engine.get_task_status(task_id) is None


class TestBuildOnly:
    def test_success(self, engine: DeploymentEngine, cloned: SiteConfig):
        result = engine.build_only(cloned.model_copy(update={"build_command": "echo hello"}))
        assert result.success
        assert result.exit_code == 0
        assert "hello" in result.logs
        assert engine.list_site_tasks("demo")["total"] == 0

    def test_failure(self, engine: DeploymentEngine, cloned: SiteConfig):
        result = engine.build_only(cloned.model_copy(update={"build_command": "exit 2"}))
        assert not result.success
        assert result.exit_code == 2
        assert result.error == "Build command exited with code 2"
        assert engine.get_active_tasks() == []


class TestBuildEnvironment:
    def test_complete_environment(self, engine: DeploymentEngine, cloned: SiteConfig):
        root = Path(cloned.local_path)
        (root / "package.json").write_text(json.dumps({"scripts": {"build": "vite build"}}))
        (root / "node_modules").mkdir()

        report = engine.check_build_environment(cloned)

        assert report.has_manifest
        assert report.has_build_script
        assert report.has_dependencies
        assert report.build_command == "npm run build"
        assert report.output_dir == "dist"

    def test_bare_checkout(self, engine: DeploymentEngine, cloned: SiteConfig):
        report = engine.check_build_environment(cloned)
        assert not report.has_manifest
        assert not report.has_build_script
        assert not report.has_dependencies

    def test_unreadable_manifest(self, engine: DeploymentEngine, cloned: SiteConfig):
        (Path(cloned.local_path) / "package.json").write_text("{broken")
        report = engine.check_build_environment(cloned)
        assert report.has_manifest
        assert not report.has_build_script

    def test_missing_checkout_never_raises(self, engine: DeploymentEngine, site: SiteConfig):
        report = engine.check_build_environment(site)
        assert not report.has_manifest
