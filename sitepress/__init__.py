"""SitePress: git-backed content editing and static site deployment engine."""

__version__ = "0.1.0"

from sitepress.access.guard import is_path_allowed, validate_site_config
from sitepress.content.manager import ContentManager
from sitepress.context import EngineContext
from sitepress.deployment.engine import DeploymentEngine
from sitepress.errors import (
    AccessDenied,
    AlreadyExists,
    BuildError,
    GitAuthError,
    GitConflictError,
    GitNetworkError,
    GitSyncError,
    NotFound,
    SitePressError,
    StorageError,
    ValidationError,
)
from sitepress.metrics import MetricsCollector
from sitepress.models import (
    DeploymentStatus,
    DeploymentTask,
    FileOperationResult,
    GitOperationResult,
    OperationStatus,
    Principal,
    RelationalFileConfig,
    SiteConfig,
    TableAccessConfig,
)
from sitepress.settings import EngineSettings, load_settings
from sitepress.vcs.sync import GitSyncManager

__all__ = [
    "__version__",
    # Entry point
    "EngineContext",
    # Components
    "ContentManager",
    "DeploymentEngine",
    "GitSyncManager",
    "MetricsCollector",
    # Configuration
    "EngineSettings",
    "RelationalFileConfig",
    "SiteConfig",
    "TableAccessConfig",
    "load_settings",
    "is_path_allowed",
    "validate_site_config",
    # Results
    "DeploymentStatus",
    "DeploymentTask",
    "FileOperationResult",
    "GitOperationResult",
    "OperationStatus",
    "Principal",
    # Errors
    "AccessDenied",
    "AlreadyExists",
    "BuildError",
    "GitAuthError",
    "GitConflictError",
    "GitNetworkError",
    "GitSyncError",
    "NotFound",
    "SitePressError",
    "StorageError",
    "ValidationError",
]
