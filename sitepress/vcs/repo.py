"""RepoManager: clone, sync, stage, commit and query a site's working tree.

All git operations use :func:`subprocess.run`; no GitPython dependency.
Failures are classified into the :class:`~sitepress.errors.GitSyncError`
family and credentials are scrubbed from every message.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from sitepress.errors import GitAuthError, GitConflictError, GitNetworkError, GitSyncError
from sitepress.vcs.remote import redact

logger = logging.getLogger(__name__)

# Matched against lower-cased stderr, in this order
_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "invalid username or password",
    "permission denied",
    "http 401",
    "http 403",
    "error: 403",
)
_CONFLICT_MARKERS = (
    "not possible to fast-forward",
    "non-fast-forward",
    "fetch first",
    "[rejected]",
    "diverging branches",
    "merge conflict",
)
_NETWORK_MARKERS = (
    "could not resolve host",
    "unable to access",
    "connection refused",
    "connection timed out",
    "network is unreachable",
    "repository not found",
    "does not appear to be a git repository",
    "could not read from remote repository",
    "does not exist",
    "remote branch",
)


def classify_git_failure(stderr: str) -> type[GitSyncError]:
    """Map git's stderr to the matching :class:`GitSyncError` subclass."""
    text = stderr.lower()
    if any(marker in text for marker in _AUTH_MARKERS):
        return GitAuthError
    if any(marker in text for marker in _CONFLICT_MARKERS):
        return GitConflictError
    if any(marker in text for marker in _NETWORK_MARKERS):
        return GitNetworkError
    return GitSyncError


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    # Never block on an interactive credential prompt
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _run_git(
    *args: str,
    cwd: str | Path | None = None,
    check: bool = True,
    secret: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Execute a git command via subprocess and return the result.

    Parameters
    ----------
    *args:
        Arguments passed after ``git``.
    cwd:
        Working directory for the command.
    check:
        If *True*, raise a :class:`GitSyncError` subclass on non-zero exit.
    secret:
        Credential to scrub from log lines and error messages.
    """
    cmd = ["git", *args]
    shown = redact(" ".join(args), secret)
    logger.debug("git %s (cwd=%s)", shown, cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            env=_git_env(),
        )
    except OSError as exc:
        raise GitSyncError(f"git {shown} could not start: {exc}") from exc
    if check and result.returncode != 0:
        stderr = redact(result.stderr.strip(), secret)
        error_cls = classify_git_failure(stderr)
        raise error_cls(f"git {shown} failed (rc={result.returncode}): {stderr}")
    return result


class RepoManager:
    """Manage the local clone of one site.

    Parameters
    ----------
    path:
        Root directory of the working tree.  May not exist yet.
    secret:
        Credential embedded in remote URLs; scrubbed from all output.
    """

    def __init__(self, path: str | Path, secret: str | None = None) -> None:
        self.path = Path(path).resolve()
        self.secret = secret

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        return _run_git(*args, cwd=self.path, check=check, secret=self.secret)

    # -- Setup ----------------------------------------------------------------

    def is_repo(self) -> bool:
        """Return *True* if the working tree has its own ``.git``."""
        return (self.path / ".git").exists()

    def clone(self, url: str, branch: str) -> Path:
        """Clone *branch* of *url* into :attr:`path`.

        Parent directories are created as needed.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _run_git(
            "clone", "--branch", branch, url, str(self.path),
            secret=self.secret,
        )
        logger.info("Cloned %s -> %s", redact(url, self.secret), self.path)
        return self.path

    def init_repo(self) -> Path:
        """Initialise an empty repository at :attr:`path`."""
        self.path.mkdir(parents=True, exist_ok=True)
        self._git("init", "-q")
        return self.path

    def remote_has_branch(self, url: str, branch: str) -> bool:
        """Return *True* if *url* advertises ``refs/heads/<branch>``."""
        result = self._git("ls-remote", "--heads", url, f"refs/heads/{branch}")
        return bool(result.stdout.strip())

    def checkout(self, branch: str, start_point: str) -> None:
        """Create or reset *branch* at *start_point* and switch to it."""
        self._git("checkout", "-q", "-B", branch, start_point)

    def switch_branch(self, branch: str, start_point: str) -> None:
        """Switch to *branch*, creating it at *start_point* if it does not exist."""
        exists = self._git("rev-parse", "--verify", "-q", f"refs/heads/{branch}", check=False)
        if exists.returncode == 0:
            self._git("checkout", "-q", branch)
        else:
            self._git("checkout", "-q", "-b", branch, start_point)

    def checkout_orphan(self, branch: str) -> None:
        """Switch to a new branch with no history."""
        self._git("checkout", "-q", "--orphan", branch)

    def try_head(self) -> str | None:
        """Return HEAD's hash, or *None* on an unborn branch."""
        result = self._git("rev-parse", "--verify", "-q", "HEAD", check=False)
        return result.stdout.strip() or None

    def set_remote_url(self, url: str, name: str = "origin") -> None:
        """Point remote *name* at *url*."""
        self._git("remote", "set-url", name, url)

    def remote_url(self, name: str = "origin") -> str:
        result = self._git("remote", "get-url", name, check=False)
        return result.stdout.strip()

    # -- Status / info ----------------------------------------------------------

    def status(self) -> str:
        """Return the output of ``git status --porcelain``."""
        return self._git("status", "--porcelain").stdout

    def is_clean(self) -> bool:
        """Return *True* if the working tree has no uncommitted changes."""
        return self.status().strip() == ""

    def current_branch(self) -> str:
        """Return the name of the current branch."""
        return self._git("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def head(self) -> str:
        """Return the full hash of HEAD."""
        return self._git("rev-parse", "HEAD").stdout.strip()

    def changed_files(self) -> dict[str, list[str]]:
        """Group porcelain status entries into modified/created/deleted."""
        groups: dict[str, list[str]] = {"modified": [], "created": [], "deleted": []}
        for line in self.status().splitlines():
            if len(line) < 4:
                continue
            code, name = line[:2], line[3:]
            if " -> " in name:
                name = name.split(" -> ", 1)[1]
            if "?" in code or "A" in code:
                groups["created"].append(name)
            elif "D" in code:
                groups["deleted"].append(name)
            else:
                groups["modified"].append(name)
        return groups

    def ahead_behind(self, upstream: str) -> tuple[int, int]:
        """Return commits ahead of and behind *upstream*, or (0, 0) if unknown."""
        result = self._git(
            "rev-list", "--left-right", "--count", f"HEAD...{upstream}",
            check=False,
        )
        if result.returncode != 0:
            return 0, 0
        ahead, _, behind = result.stdout.strip().partition("\t")
        return int(ahead or 0), int(behind or 0)

    def recent_commits(self, limit: int = 10) -> list[dict[str, str]]:
        """Return the last *limit* commits, newest first."""
        result = self._git(
            "log", f"-{limit}", "--format=%H%x1f%an%x1f%aI%x1f%s",
            check=False,
        )
        commits = []
        for line in result.stdout.splitlines():
            parts = line.split("\x1f")
            if len(parts) == 4:
                commits.append({
                    "hash": parts[0],
                    "author": parts[1],
                    "date": parts[2],
                    "message": parts[3],
                })
        return commits

    # -- Sync -------------------------------------------------------------------

    def discard_local_changes(self) -> list[str]:
        """Hard-reset tracked files and remove untracked ones.

        Returns the porcelain entries that were thrown away.
        """
        lost = [line for line in self.status().splitlines() if line.strip()]
        if lost:
            self._git("reset", "--hard", "HEAD")
            self._git("clean", "-fd")
        return lost

    def fetch(self, url: str, branch: str) -> str:
        """Fetch *branch* of *url* into its ``origin`` tracking ref.

        Returns the tracking ref name.
        """
        tracking = f"refs/remotes/origin/{branch}"
        self._git("fetch", url, f"+refs/heads/{branch}:{tracking}")
        return tracking

    def fast_forward(self, ref: str) -> None:
        """Fast-forward the current branch to *ref*; divergence raises."""
        self._git("merge", "--ff-only", ref)

    # -- Stage / commit / push --------------------------------------------------

    def stage(self, *paths: str | Path) -> None:
        """Stage additions, modifications and deletions under *paths*."""
        str_paths = [str(p) for p in paths]
        self._git("add", "-A", "--", *str_paths)

    def has_staged_changes(self) -> bool:
        result = self._git("diff", "--cached", "--quiet", check=False)
        return result.returncode != 0

    def commit(self, message: str, author_name: str, author_email: str) -> str:
        """Create a commit as the given author.

        Returns the full commit hash.
        """
        self._git(
            "-c", f"user.name={author_name}",
            "-c", f"user.email={author_email}",
            "-c", "commit.gpgsign=false",
            "commit", "-m", message,
            "--author", f"{author_name} <{author_email}>",
        )
        return self.head()

    def push(self, url: str, branch: str) -> None:
        """Push HEAD to *branch* of *url*; never forces."""
        self._git("push", url, f"HEAD:refs/heads/{branch}")
        self._git("update-ref", f"refs/remotes/origin/{branch}", "HEAD")

    def undo_last_commit(self) -> None:
        """Drop the last commit and unstage its changes, keeping them in the worktree."""
        self._git("reset", "-q", "--mixed", "HEAD~1", check=False)
