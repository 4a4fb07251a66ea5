"""AssetStore: binary files such as images, documents and media."""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from typing import Any

from sitepress.access.guard import (
    determine_file_type,
    is_path_allowed,
    normalize_path,
    require_path_allowed,
)
from sitepress.content.base import BaseStore, file_info, site_root
from sitepress.models.results import FileOperationResult
from sitepress.models.site import SiteConfig

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp", ".ico"})
DOCUMENT_EXTENSIONS = frozenset({".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt"})

# Types the stdlib table lacks on some platforms
_EXTRA_MIME_TYPES = {
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".svg": "image/svg+xml",
    ".md": "text/markdown",
}


def guess_mime_type(path: str) -> str:
    """Return the MIME type of *path*, ``application/octet-stream`` if unknown."""
    ext = posixpath.splitext(path)[1].lower()
    if ext in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[ext]
    mime, _ = mimetypes.guess_type("file" + ext)
    return mime or "application/octet-stream"


class AssetStore(BaseStore):
    """Binary assets inside a site's editable paths."""

    def _upload(self, config: SiteConfig, path: str, payload: bytes) -> dict[str, Any]:
        rel, full = self.resolve(config, path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(payload)
        return file_info(full, rel)

    def _info(self, config: SiteConfig, path: str) -> dict[str, Any]:
        rel, full = self.resolve_existing(config, path)
        ext = posixpath.splitext(rel)[1].lower()
        return {
            **file_info(full, rel),
            "extension": ext,
            "mime_type": guess_mime_type(rel),
            "is_image": ext in IMAGE_EXTENSIONS,
            "is_document": ext in DOCUMENT_EXTENSIONS,
        }

    def _read_bytes(self, config: SiteConfig, path: str) -> dict[str, Any]:
        rel, full = self.resolve_existing(config, path)
        return {**file_info(full, rel), "content": full.read_bytes()}

    def _list(self, config: SiteConfig, directory: str) -> list[dict[str, Any]]:
        root = site_root(config)
        base = root / directory if directory else root
        assets: list[dict[str, Any]] = []
        if not base.is_dir():
            return assets
        for full in sorted(base.rglob("*")):
            if not full.is_file() or ".git" in full.relative_to(root).parts:
                continue
            rel = full.relative_to(root).as_posix()
            if not is_path_allowed(config, rel):
                continue
            if determine_file_type(rel, config) not in ("asset", "image", "document", "audio", "video"):
                continue
            info = file_info(full, rel)
            info["mime_type"] = guess_mime_type(rel)
            assets.append(info)
        return assets

    def upload(self, config: SiteConfig, path: str, payload: bytes) -> FileOperationResult:
        """Write *payload* to *path*, overwriting any existing file."""
        return self._execute(config, "upload", path, lambda: self._upload(config, path, payload))

    def upload_many(self, config: SiteConfig, assets: dict[str, bytes]) -> dict[str, FileOperationResult]:
        """Upload several assets; each gets its own result."""
        return {path: self.upload(config, path, payload) for path, payload in assets.items()}

    def read_bytes(self, config: SiteConfig, path: str) -> FileOperationResult:
        """Return the raw bytes of an asset under ``data["content"]``."""
        return self._execute(config, "read", path, lambda: self._read_bytes(config, path))

    def info(self, config: SiteConfig, path: str) -> FileOperationResult:
        """Return size, timestamps, MIME type and image/document flags."""
        return self._execute(config, "info", path, lambda: self._info(config, path))

    def list_assets(self, config: SiteConfig, directory: str = "") -> FileOperationResult:
        """List editable binary files under *directory*, recursively."""
        def run() -> list[dict[str, Any]]:
            rel = normalize_path(directory).rstrip("/")
            if rel:
                require_path_allowed(config, rel + "/")
            return self._list(config, rel)

        return self._execute(config, "list", directory, run)
