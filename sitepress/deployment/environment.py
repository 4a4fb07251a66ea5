"""Best-effort probe of a site's build prerequisites."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sitepress.config import (
    BUILD_DEPENDENCY_DIR,
    BUILD_MANIFEST_FILE,
    DEFAULT_BUILD_COMMAND,
)
from sitepress.models.deployment import BuildEnvironmentReport
from sitepress.models.site import SiteConfig

logger = logging.getLogger(__name__)


def check_build_environment(config: SiteConfig) -> BuildEnvironmentReport:
    """Report on the manifest, its build script and installed dependencies.

    Never raises; unreadable files count as missing.
    """
    root = Path(config.local_path).expanduser()
    manifest = root / BUILD_MANIFEST_FILE

    has_build_script = False
    if manifest.is_file():
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
            scripts = data.get("scripts") if isinstance(data, dict) else None
            has_build_script = isinstance(scripts, dict) and "build" in scripts
        except (OSError, ValueError):
            logger.warning("Could not read %s", manifest, exc_info=True)

    return BuildEnvironmentReport(
        has_manifest=manifest.is_file(),
        has_build_script=has_build_script,
        has_dependencies=(root / BUILD_DEPENDENCY_DIR).is_dir(),
        build_command=config.build_command or DEFAULT_BUILD_COMMAND,
        output_dir=config.build_output_dir,
    )
