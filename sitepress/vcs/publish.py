"""Publish a build output directory to a static hosting branch.

The branch is rebuilt in a throwaway repository so the site's own clone is
never touched: fetch the branch if the remote has it (otherwise start an
orphan), replace the tree with the output directory, commit, push.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from pathlib import Path

from sitepress import config as defaults
from sitepress.errors import NotFound
from sitepress.models.deployment import PublishResult
from sitepress.vcs.remote import redact
from sitepress.vcs.repo import RepoManager

logger = logging.getLogger(__name__)


def _clear_worktree(root: Path) -> None:
    for child in root.iterdir():
        if child.name == ".git":
            continue
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def publish_directory(
    source_dir: str | Path,
    remote_url: str,
    branch: str = defaults.HOSTING_BRANCH,
    message: str = "Deploy",
    author_name: str = defaults.BOT_NAME,
    author_email: str = defaults.BOT_EMAIL,
    secret: str | None = None,
) -> PublishResult:
    """Replace the contents of *branch* on *remote_url* with *source_dir*.

    Parameters
    ----------
    source_dir:
        Build output directory.  Dotfiles are published too.
    remote_url:
        Push target, usually already carrying the credential.
    branch:
        Hosting branch name.
    message:
        Commit message.
    author_name, author_email:
        Commit identity.
    secret:
        Credential to scrub from logs and errors.

    Raises
    ------
    NotFound
        If *source_dir* is not a directory.
    GitSyncError
        If any git step fails.
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise NotFound(f"Build output directory not found: {source}")

    start = time.monotonic()
    with tempfile.TemporaryDirectory(prefix="sitepress-publish-") as tmp:
        repo = RepoManager(tmp, secret=secret)
        repo.init_repo()
        if repo.remote_has_branch(remote_url, branch):
            tracking = repo.fetch(remote_url, branch)
            repo.checkout(branch, tracking)
        else:
            logger.info("Hosting branch %s does not exist yet; creating it", branch)
            repo.checkout_orphan(branch)

        _clear_worktree(repo.path)
        shutil.copytree(source, repo.path, dirs_exist_ok=True, ignore=shutil.ignore_patterns(".git"))
        repo.stage(".")

        if not repo.has_staged_changes():
            head = repo.try_head()
            logger.info("Nothing to publish on %s; output unchanged", branch)
            return PublishResult(
                success=True,
                duration=time.monotonic() - start,
                commit_hash=head,
                branch=branch,
            )

        sha = repo.commit(message, author_name, author_email)
        repo.push(remote_url, branch)

    logger.info("Published %s to %s@%s (%s)", source, redact(remote_url, secret), branch, sha[:7])
    return PublishResult(
        success=True,
        duration=time.monotonic() - start,
        commit_hash=sha,
        branch=branch,
    )
