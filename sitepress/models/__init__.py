"""Data models: site configuration, result envelopes, deployment records."""

from sitepress.models.deployment import (
    BuildEnvironmentReport,
    BuildResult,
    DeploymentLogEntry,
    DeploymentStatus,
    DeploymentTask,
    LogLevel,
    LogSource,
    PublishResult,
)
from sitepress.models.results import FileOperationResult, GitOperationResult, OperationStatus
from sitepress.models.site import (
    CustomFileTypeConfig,
    ModelFileConfig,
    PrimaryKeyStrategy,
    Principal,
    RelationalFileConfig,
    SiteConfig,
    TableAccessConfig,
)

__all__ = [
    "BuildEnvironmentReport",
    "BuildResult",
    "CustomFileTypeConfig",
    "DeploymentLogEntry",
    "DeploymentStatus",
    "DeploymentTask",
    "FileOperationResult",
    "GitOperationResult",
    "LogLevel",
    "LogSource",
    "ModelFileConfig",
    "OperationStatus",
    "PrimaryKeyStrategy",
    "Principal",
    "PublishResult",
    "RelationalFileConfig",
    "SiteConfig",
    "TableAccessConfig",
]
