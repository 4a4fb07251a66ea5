"""Shared fixtures: real git remotes in tmp_path, reached through file:// URLs."""

from __future__ import annotations

import sqlite3
import subprocess
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from sitepress.metrics import MetricsCollector
from sitepress.models.site import (
    PrimaryKeyStrategy,
    RelationalFileConfig,
    SiteConfig,
    TableAccessConfig,
)
from sitepress.vcs.sync import GitSyncManager

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def git(*args: str, cwd: Path) -> str:
    """Run git with a fixed test identity and return stdout."""
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=Test User",
            "-c", "user.email=test@sitepress.test",
            "-c", "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd, capture_output=True, text=True, check=True,
    )
    return result.stdout


def _make_database(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE posts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            body TEXT,
            status TEXT,
            secret TEXT
        );
        CREATE TABLE tags (id TEXT PRIMARY KEY, label TEXT);
        CREATE TABLE events (id INTEGER PRIMARY KEY, name TEXT);
        CREATE TABLE slugs (slug TEXT PRIMARY KEY, target TEXT);
        CREATE TABLE internal (id INTEGER PRIMARY KEY, value TEXT);
        INSERT INTO posts (title, body, status, secret) VALUES ('Hello', 'First post', 'published', 's1');
        INSERT INTO posts (title, body, status, secret) VALUES ('Second', 'Another', 'draft', 's2');
        """
    )
    conn.commit()
    conn.close()


def _seed(worktree: Path) -> None:
    files = {
        "README.md": "# Demo site\n",
        "content/index.md": "# Welcome\n\nHello world\n",
        "content/about.md": "# About\n\nWe build sites.\n",
        "content/data.json": '{"title": "Demo"}\n',
        "assets/logo.png": "PNGDATA",
        "private/notes.md": "not editable\n",
        ".gitignore": "dist/\n",
    }
    for rel, text in files.items():
        target = worktree / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    _make_database(worktree / "data" / "site.sqlite")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def remote(tmp_path: Path) -> Path:
    """A bare repository whose ``main`` branch holds a small demo site."""
    bare = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", "-q", str(bare)], check=True, capture_output=True)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=bare)

    seed = tmp_path / "seed"
    seed.mkdir()
    git("init", "-q", cwd=seed)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=seed)
    _seed(seed)
    git("add", "-A", cwd=seed)
    git("commit", "-q", "-m", "Initial site", cwd=seed)
    git("push", "-q", str(bare), "main", cwd=seed)
    return bare


@pytest.fixture
def push_to_remote(tmp_path: Path, remote: Path) -> Callable[[dict[str, str], str], str]:
    """Return a function committing *files* to the remote from another clone."""
    counter = {"n": 0}

    def _push(files: dict[str, str], message: str = "Upstream change") -> str:
        counter["n"] += 1
        other = tmp_path / f"other-{counter['n']}"
        git("clone", "-q", "--branch", "main", remote.as_uri(), str(other), cwd=tmp_path)
        for rel, text in files.items():
            target = other / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        git("add", "-A", cwd=other)
        git("commit", "-q", "-m", message, cwd=other)
        git("push", "-q", "origin", "main", cwd=other)
        return git("rev-parse", "HEAD", cwd=other).strip()

    return _push


@pytest.fixture
def site(tmp_path: Path, remote: Path) -> SiteConfig:
    return SiteConfig(
        id="demo",
        name="Demo Site",
        repository_url=remote.as_uri(),
        credential="tok_abc123",
        local_path=str(tmp_path / "work" / "demo"),
        editable_paths=["content/", "assets/"],
        relational_files=[
            RelationalFileConfig(
                file_path="data/*.sqlite",
                editable_tables=[
                    TableAccessConfig(
                        table_name="posts",
                        editable_columns=["title", "body", "status"],
                        default_values={"status": "draft"},
                        display_name="Blog posts",
                    ),
                    TableAccessConfig(
                        table_name="tags",
                        primary_key_strategy=PrimaryKeyStrategy.RANDOM_TOKEN,
                    ),
                    TableAccessConfig(
                        table_name="events",
                        primary_key_strategy=PrimaryKeyStrategy.TIMESTAMP,
                    ),
                    TableAccessConfig(
                        table_name="slugs",
                        primary_key_strategy=PrimaryKeyStrategy.CUSTOM,
                    ),
                ],
            ),
        ],
    )


@pytest.fixture
def sync() -> GitSyncManager:
    return GitSyncManager()


@pytest.fixture
def cloned(site: SiteConfig, sync: GitSyncManager) -> SiteConfig:
    """The demo site, cloned into its local path."""
    result = sync.ensure_clean_and_pull(site)
    assert result.success, result.error
    return site


@pytest.fixture
def metrics() -> Iterator[MetricsCollector]:
    collector = MetricsCollector()
    yield collector
    collector.close()
