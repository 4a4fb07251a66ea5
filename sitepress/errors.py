"""Exception taxonomy shared by every SitePress component."""

from __future__ import annotations


class SitePressError(Exception):
    """Base exception for SitePress."""

    code = "SP000"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class AccessDenied(SitePressError):
    """Path, table, or column is outside the site's allow-lists."""

    code = "SP001"


class NotFound(SitePressError):
    """Requested file or row does not exist."""

    code = "SP002"


class AlreadyExists(SitePressError):
    """Target of a create operation already exists."""

    code = "SP003"


class GitSyncError(SitePressError):
    """A git operation against the local clone or the remote failed."""

    code = "SP010"


class GitNetworkError(GitSyncError):
    """Remote unreachable or repository missing."""

    code = "SP011"


class GitAuthError(GitSyncError):
    """Remote rejected the credential."""

    code = "SP012"


class GitConflictError(GitSyncError):
    """Local and remote history diverged, or the push was rejected."""

    code = "SP013"


class BuildError(SitePressError):
    """Build or validation command exited non-zero or could not start."""

    code = "SP020"

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ValidationError(SitePressError):
    """Configuration or content failed validation."""

    code = "SP030"

    def __init__(self, message: str, violations: list[str] | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class StorageError(SitePressError):
    """Filesystem or embedded database I/O failed."""

    code = "SP050"


class TaskCancelled(SitePressError):
    """Raised inside a pipeline stage once its task has been cancelled."""

    code = "SP040"
