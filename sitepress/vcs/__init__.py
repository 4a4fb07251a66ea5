"""Git layer: local clones, remote sync, and hosting-branch publishing."""

from sitepress.vcs.publish import publish_directory
from sitepress.vcs.remote import build_authenticated_url, redact
from sitepress.vcs.repo import RepoManager
from sitepress.vcs.sync import GitSyncManager, RepositoryRegistry, SiteRepository

__all__ = [
    "GitSyncManager",
    "RepoManager",
    "RepositoryRegistry",
    "SiteRepository",
    "build_authenticated_url",
    "publish_directory",
    "redact",
]
