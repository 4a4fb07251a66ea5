"""Deployment pipeline: pull, build, publish."""

from sitepress.deployment.builder import ProcessRegistry, build_site, run_command
from sitepress.deployment.engine import DeploymentEngine
from sitepress.deployment.environment import check_build_environment

__all__ = [
    "DeploymentEngine",
    "ProcessRegistry",
    "build_site",
    "check_build_environment",
    "run_command",
]
