"""Pure access checks of paths, tables and columns against a site config.

Nothing here touches the filesystem.  Content stores call these functions
before any I/O; configuration layers call :func:`validate_site_config`.
"""

from __future__ import annotations

import fnmatch
import logging
import posixpath
import re
from collections.abc import Iterable

from sitepress.errors import AccessDenied
from sitepress.models.site import (
    ModelFileConfig,
    RelationalFileConfig,
    SiteConfig,
    TableAccessConfig,
)

logger = logging.getLogger(__name__)

_URL_PATTERNS = (
    re.compile(r"^https?://[^\s/]+/\S+$"),
    re.compile(r"^ssh://[^\s/]+/\S+$"),
    re.compile(r"^[\w.-]+@[\w.-]+:\S+$"),  # scp-style git@host:owner/repo
    re.compile(r"^file:///\S+$"),
)

_CREDENTIAL_FORBIDDEN = re.compile(r"[\s@:/]")

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:/")

RELATIONAL_EXTENSIONS = frozenset({".db", ".sqlite", ".sqlite3"})
TEXT_EXTENSIONS = frozenset({".md", ".markdown", ".json", ".txt", ".yaml", ".yml"})
ASSET_EXTENSIONS = frozenset({
    # images
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp", ".ico",
    # documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    # audio / video
    ".mp3", ".wav", ".ogg", ".mp4", ".avi", ".mov", ".webm",
    # other
    ".zip", ".css", ".js",
})

_BUILTIN_TYPES: dict[str, str] = {
    ".md": "markdown", ".markdown": "markdown",
    ".json": "json",
    ".sqlite": "sqlite", ".sqlite3": "sqlite", ".db": "sqlite",
    ".yml": "yaml", ".yaml": "yaml",
    ".txt": "text",
    ".js": "javascript", ".ts": "javascript", ".jsx": "javascript", ".tsx": "javascript",
    ".css": "stylesheet", ".scss": "stylesheet", ".less": "stylesheet",
    ".html": "html", ".htm": "html",
    ".xml": "xml",
    ".jpg": "image", ".jpeg": "image", ".png": "image", ".gif": "image",
    ".svg": "image", ".webp": "image",
    ".pdf": "document",
    ".mp3": "audio", ".wav": "audio", ".ogg": "audio",
    ".mp4": "video", ".webm": "video", ".avi": "video",
}

TEXT_TYPES = frozenset({
    "markdown", "json", "yaml", "text", "javascript", "stylesheet", "html", "xml",
})


# -- Configuration validation ----------------------------------------------


def validate_site_config(config: SiteConfig) -> list[str]:
    """Return a list of configuration violations (empty when valid)."""
    errors: list[str] = []

    if not config.id.strip():
        errors.append("Site id must not be empty")
    if not config.name.strip():
        errors.append("Site name must not be empty")

    if not config.repository_url.strip():
        errors.append("Repository URL must not be empty")
    elif not any(p.match(config.repository_url) for p in _URL_PATTERNS):
        errors.append(f"Repository URL is malformed: {config.repository_url}")

    if not config.credential:
        errors.append("Credential must not be empty")
    elif _CREDENTIAL_FORBIDDEN.search(config.credential):
        errors.append("Credential format is invalid")

    if not config.local_path.strip():
        errors.append("Local path must not be empty")

    for index, rel in enumerate(config.relational_files, start=1):
        if not rel.file_path.strip():
            errors.append(f"Relational file {index} has an empty file path")
        if not rel.editable_tables:
            errors.append(f"Relational file {index} must list at least one editable table")
        for t_index, table in enumerate(rel.editable_tables, start=1):
            if not table.table_name.strip():
                errors.append(f"Relational file {index} table {t_index} is missing a table name")

    for index, model_file in enumerate(config.model_files, start=1):
        if not model_file.file_path.strip():
            errors.append(f"Model file {index} has an empty file path")
        if ":" not in model_file.model:
            errors.append(f"Model file {index} model reference must look like 'module:Class'")

    for index, custom in enumerate(config.custom_file_types, start=1):
        if not custom.name.strip():
            errors.append(f"Custom file type {index} is missing a name")
        if not custom.extensions:
            errors.append(f"Custom file type {index} must list at least one extension")

    return errors


# -- Paths -------------------------------------------------------------------


def normalize_path(path: str) -> str:
    """Use forward slashes and drop leading ``./`` segments."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _is_unsafe(path: str) -> bool:
    if path.startswith("/") or _DRIVE_PREFIX.match(path):
        return True
    return ".." in path.split("/")


def _matches_prefix(path: str, prefix: str) -> bool:
    prefix = normalize_path(prefix)
    if prefix.endswith("/"):
        return path.startswith(prefix)
    return path == prefix or path.startswith(prefix + "/")


def _match_segments(parts: list[str], pattern: list[str]) -> bool:
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_match_segments(parts[i:], rest) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatch.fnmatchcase(parts[0], head) and _match_segments(parts[1:], rest)


def match_glob(path: str, pattern: str) -> bool:
    """Match *path* against a glob where ``*`` stays inside one segment.

    Only a ``**`` segment spans directories, as with :meth:`pathlib.Path.glob`.
    """
    path, pattern = normalize_path(path), normalize_path(pattern)
    if path == pattern:
        return True
    return _match_segments(path.split("/"), pattern.split("/"))


def is_path_allowed(config: SiteConfig, path: str) -> bool:
    """Return True if *path* lies inside the site's editable surface.

    An empty allow-list leaves the tree unrestricted.  Absolute paths and
    ``..`` segments are always refused.
    """
    normalized = normalize_path(path)
    if _is_unsafe(normalized):
        return False
    if not config.editable_paths:
        return True
    return any(_matches_prefix(normalized, prefix) for prefix in config.editable_paths)


def require_path_allowed(config: SiteConfig, path: str) -> str:
    """Return the normalized *path* or raise :class:`AccessDenied`."""
    if not is_path_allowed(config, path):
        raise AccessDenied(f"Access denied: {path} is outside the editable paths")
    return normalize_path(path)


# -- Relational access -------------------------------------------------------


def resolve_relational_file_config(config: SiteConfig, path: str) -> RelationalFileConfig:
    """Find the relational file config whose path or glob matches *path*."""
    normalized = normalize_path(path)
    if not _is_unsafe(normalized):
        for rel in config.relational_files:
            if match_glob(normalized, rel.file_path):
                return rel
    raise AccessDenied(f"Access denied: {path} is not a configured relational file")


def resolve_table_access(file_config: RelationalFileConfig, table_name: str) -> TableAccessConfig:
    """Return the access config for *table_name* or raise :class:`AccessDenied`."""
    for table in file_config.editable_tables:
        if table.table_name == table_name:
            return table
    raise AccessDenied(f"Access denied: table {table_name} is not editable")


def resolve_column_access(table_config: TableAccessConfig, columns: Iterable[str]) -> None:
    """Reject a write touching columns outside a non-empty editable list."""
    allowed = table_config.editable_columns
    if not allowed:
        return
    denied = [col for col in columns if col not in allowed]
    if denied:
        raise AccessDenied(f"Access denied: columns not editable: {', '.join(denied)}")


def resolve_model_file_config(config: SiteConfig, path: str) -> ModelFileConfig | None:
    """Return the model file config matching *path*, if any."""
    normalized = normalize_path(path)
    for model_file in config.model_files:
        if match_glob(normalized, model_file.file_path):
            return model_file
    return None


# -- File types --------------------------------------------------------------


def _extension(path: str) -> str:
    return posixpath.splitext(normalize_path(path))[1].lower()


def classify_file_type(path: str) -> str:
    """Classify *path* as ``text``, ``asset``, ``relational`` or ``unknown``."""
    ext = _extension(path)
    if ext in RELATIONAL_EXTENSIONS:
        return "relational"
    if ext in TEXT_EXTENSIONS:
        return "text"
    if ext in ASSET_EXTENSIONS:
        return "asset"
    return "unknown"


def determine_file_type(path: str, config: SiteConfig | None = None) -> str:
    """Return the fine-grained type name of *path*.

    Custom file types configured on the site win over the built-in table;
    anything unrecognised is an ``asset``.
    """
    ext = _extension(path)
    if config is not None:
        for custom in config.custom_file_types:
            if any(ext == "." + e.lower().lstrip(".") for e in custom.extensions):
                return custom.name
    return _BUILTIN_TYPES.get(ext, "asset")


def is_text_file_type(type_name: str, config: SiteConfig | None = None) -> bool:
    """Return True if files of *type_name* hold editable text."""
    if config is not None:
        for custom in config.custom_file_types:
            if custom.name == type_name:
                return bool(custom.is_text)
    return type_name in TEXT_TYPES
