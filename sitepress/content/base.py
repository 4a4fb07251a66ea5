"""Shared plumbing for content stores: guard, I/O, metrics, envelope."""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sitepress.access.guard import require_path_allowed
from sitepress.errors import NotFound, SitePressError, StorageError
from sitepress.metrics import MetricsCollector
from sitepress.models.results import FileOperationResult
from sitepress.models.site import SiteConfig

logger = logging.getLogger(__name__)


def site_root(config: SiteConfig) -> Path:
    """Return the working-tree root of *config*, with ``~`` expanded."""
    return Path(config.local_path).expanduser()


def file_info(full_path: Path, rel_path: str) -> dict[str, Any]:
    """Return path, size and timestamps of an existing file."""
    stat = full_path.stat()
    return {
        "path": rel_path,
        "size": stat.st_size,
        "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    }


class BaseStore:
    """Base class for stores that act on files inside a site's working tree.

    Parameters
    ----------
    metrics:
        Optional collector; every operation records one row in it.
    """

    def __init__(self, metrics: MetricsCollector | None = None) -> None:
        self.metrics = metrics

    # -- Paths ------------------------------------------------------------------

    def resolve(self, config: SiteConfig, path: str) -> tuple[str, Path]:
        """Guard *path* and return it normalized together with its absolute path."""
        rel = require_path_allowed(config, path)
        return rel, site_root(config) / rel

    def resolve_existing(self, config: SiteConfig, path: str) -> tuple[str, Path]:
        rel, full = self.resolve(config, path)
        if not full.is_file():
            raise NotFound(f"File does not exist: {rel}")
        return rel, full

    # -- Execution ----------------------------------------------------------------

    def _execute(
        self,
        config: SiteConfig,
        kind: str,
        path: str,
        operation: Callable[[], Any],
    ) -> FileOperationResult:
        """Run *operation* and wrap its outcome in a result envelope.

        Domain errors and I/O errors become failed results; anything else
        propagates.
        """
        start = time.monotonic()
        try:
            data = operation()
        except SitePressError as exc:
            self._record(config, kind, path, start, success=False, error_code=exc.code)
            logger.warning("%s %s:%s failed: %s", kind, config.id, path, exc)
            return FileOperationResult.failed(str(exc), exc.code)
        except FileNotFoundError as exc:
            self._record(config, kind, path, start, success=False, error_code=NotFound.code)
            logger.warning("%s %s:%s failed: %s", kind, config.id, path, exc)
            return FileOperationResult.failed(f"File does not exist: {path}", NotFound.code)
        except OSError as exc:
            self._record(config, kind, path, start, success=False, error_code=StorageError.code)
            logger.error("%s %s:%s failed: %s", kind, config.id, path, exc)
            return FileOperationResult.failed(str(exc), StorageError.code)

        size = data.get("size") if isinstance(data, dict) else None
        elapsed = self._record(config, kind, path, start, success=True, size=size)
        logger.info("%s %s:%s ok (%.1f ms)", kind, config.id, path, elapsed)
        return FileOperationResult.ok(data)

    def _record(
        self,
        config: SiteConfig,
        kind: str,
        path: str,
        start: float,
        success: bool,
        size: int | None = None,
        error_code: str | None = None,
    ) -> float:
        elapsed = (time.monotonic() - start) * 1000
        if self.metrics is not None:
            self.metrics.record(
                config.id, kind, path,
                size=size, duration_ms=elapsed, success=success, error_code=error_code,
            )
        return elapsed

    # -- Shared file operations ---------------------------------------------------

    def _transfer(self, config: SiteConfig, source: str, target: str, move: bool) -> dict[str, Any]:
        src_rel, src_full = self.resolve_existing(config, source)
        dst_rel, dst_full = self.resolve(config, target)
        dst_full.parent.mkdir(parents=True, exist_ok=True)
        if move:
            src_full.replace(dst_full)
        else:
            shutil.copy2(src_full, dst_full)
        info = file_info(dst_full, dst_rel)
        return {
            "source_path": src_rel,
            "target_path": dst_rel,
            "size": info["size"],
            "last_modified": info["last_modified"],
        }

    def _delete(self, config: SiteConfig, path: str) -> dict[str, Any]:
        rel, full = self.resolve_existing(config, path)
        full.unlink()
        return {"path": rel, "deleted": True}

    def copy(self, config: SiteConfig, source: str, target: str) -> FileOperationResult:
        """Copy *source* to *target*; both paths must be editable."""
        return self._execute(config, "copy", source, lambda: self._transfer(config, source, target, move=False))

    def move(self, config: SiteConfig, source: str, target: str) -> FileOperationResult:
        """Move *source* to *target*; both paths must be editable."""
        return self._execute(config, "move", source, lambda: self._transfer(config, source, target, move=True))

    def delete(self, config: SiteConfig, path: str) -> FileOperationResult:
        """Delete an existing file."""
        return self._execute(config, "delete", path, lambda: self._delete(config, path))
