"""Environment profiles layered into typed engine settings.

Sources, lowest precedence first: field defaults, the profile named by
``SITEPRESS_ENV``, ``.sitepress/config.json``, ``SITEPRESS_*`` lines of
``.env`` and finally the process environment.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from sitepress import config as defaults
from sitepress.errors import ValidationError

logger = logging.getLogger(__name__)

_PREFIX = "SITEPRESS_"

_PROFILES: dict[str, dict[str, str]] = {
    "development": {"SITEPRESS_LOG_LEVEL": "DEBUG"},
    "production": {"SITEPRESS_LOG_LEVEL": "WARNING"},
    "testing": {
        "SITEPRESS_LOG_LEVEL": "DEBUG",
        "SITEPRESS_MAX_WORKERS": "2",
        "SITEPRESS_METRICS_DB": ":memory:",
    },
}


class EngineSettings(BaseModel):
    """Typed engine settings; each field reads from its ``SITEPRESS_*`` key."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    environment: str = Field("development", alias="SITEPRESS_ENV")
    log_level: str = Field("INFO", alias="SITEPRESS_LOG_LEVEL")
    hosting_branch: str = Field(defaults.HOSTING_BRANCH, alias="SITEPRESS_HOSTING_BRANCH")
    bot_name: str = Field(defaults.BOT_NAME, alias="SITEPRESS_BOT_NAME")
    bot_email: str = Field(defaults.BOT_EMAIL, alias="SITEPRESS_BOT_EMAIL")
    max_workers: int = Field(defaults.DEFAULT_MAX_WORKERS, ge=1, alias="SITEPRESS_MAX_WORKERS")
    task_retention_seconds: float = Field(
        defaults.DEFAULT_TASK_RETENTION_SECONDS, ge=0, alias="SITEPRESS_TASK_RETENTION_SECONDS",
    )
    metrics_db: str = Field(":memory:", alias="SITEPRESS_METRICS_DB")

    @classmethod
    def keys(cls) -> dict[str, str]:
        """Map every ``SITEPRESS_*`` key to its default, as a string."""
        return {field.alias: str(field.default) for field in cls.model_fields.values()}

    @classmethod
    def from_mapping(cls, values: dict[str, str]) -> EngineSettings:
        """Validate merged ``SITEPRESS_*`` values.

        Raises
        ------
        ValidationError
            Listing unknown keys and values of the wrong type.
        """
        try:
            return cls.model_validate(values)
        except pydantic.ValidationError as exc:
            violations = [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
            ]
            raise ValidationError("Invalid SitePress settings", violations) from exc


def _read_json(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        logger.warning("Could not read %s", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return {}
    return {key: str(value) for key, value in data.items()}


def _read_dotenv(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.is_file():
        return values
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        # .env is often shared with other tools
        if key.startswith(_PREFIX):
            values[key] = value
    return values


def load_config(project_path: str | Path = ".") -> dict[str, str]:
    """Return the merged ``SITEPRESS_*`` values for *project_path*."""
    root = Path(project_path)
    known = EngineSettings.keys()
    merged = dict(known)
    profile = os.environ.get("SITEPRESS_ENV", known["SITEPRESS_ENV"])
    merged["SITEPRESS_ENV"] = profile
    merged.update(_PROFILES.get(profile, {}))
    merged.update(_read_json(root / ".sitepress" / "config.json"))
    merged.update(_read_dotenv(root / ".env"))
    merged.update({key: os.environ[key] for key in known if key in os.environ})
    return merged


def load_settings(project_path: str | Path = ".") -> EngineSettings:
    """Return typed settings for *project_path*."""
    return EngineSettings.from_mapping(load_config(project_path))


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for SitePress processes."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
