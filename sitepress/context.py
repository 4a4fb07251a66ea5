"""EngineContext: the single entry point that owns SitePress's shared state.

Usage::

    from sitepress import EngineContext, SiteConfig, Principal

    ctx = EngineContext.from_project(".")
    ctx.git.ensure_clean_and_pull(site)
    ctx.content.write_text(site, "content/index.md", "# Hello", author=alice)
    task_id = ctx.deployments.create_deployment_task(site, triggered_by=alice.id)
    ctx.deployments.get_task_status(task_id)
    ctx.close()

The context owns the three keyed stores (git handles, SQLite connections,
deployment tasks); nothing in the package keeps module-level singletons.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sitepress.access.guard import validate_site_config
from sitepress.content.manager import ContentManager
from sitepress.content.relational import ConnectionRegistry
from sitepress.deployment.engine import DeploymentEngine
from sitepress.errors import ValidationError
from sitepress.metrics import MetricsCollector
from sitepress.models.site import SiteConfig
from sitepress.settings import EngineSettings, configure_logging, load_settings
from sitepress.vcs.sync import GitSyncManager, RepositoryRegistry

logger = logging.getLogger(__name__)


class EngineContext:
    """Wire the git, content and deployment components together.

    Parameters
    ----------
    settings:
        Engine settings.  Defaults apply when omitted.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or EngineSettings()
        self.metrics = MetricsCollector(self.settings.metrics_db)
        self.repositories = RepositoryRegistry()
        self.connections = ConnectionRegistry()
        self.git = GitSyncManager(
            self.repositories,
            bot_name=self.settings.bot_name,
            bot_email=self.settings.bot_email,
        )
        self.content = ContentManager(self.git, self.metrics, self.connections)
        self.deployments = DeploymentEngine(self.git, self.settings)
        logger.info("SitePress engine ready (env=%s)", self.settings.environment)

    @classmethod
    def from_project(cls, project_path: str | Path = ".", setup_logging: bool = True) -> EngineContext:
        """Build a context from layered configuration under *project_path*."""
        settings = load_settings(project_path)
        if setup_logging:
            configure_logging(settings.log_level)
        return cls(settings)

    def register_site(self, config: SiteConfig) -> None:
        """Validate *config* and open its git handle.

        Raises
        ------
        ValidationError
            Listing every violation found.
        """
        violations = validate_site_config(config)
        if violations:
            raise ValidationError(f"Invalid configuration for site {config.id}", violations)
        self.repositories.open(config)

    def release_site(self, site_id: str) -> None:
        """Drop cached handles after a site's configuration changed or was removed."""
        self.connections.close(site_id)
        self.repositories.evict(site_id)

    def close(self) -> None:
        """Stop deployments and release every handle."""
        self.deployments.shutdown(wait=True)
        self.connections.close_all()
        self.repositories.clear()
        self.metrics.close()

    def __enter__(self) -> EngineContext:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
