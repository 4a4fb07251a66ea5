"""DirectoryIndexer: enumerate, tree-view and linearly search editable files."""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Any

from sitepress.access.guard import (
    determine_file_type,
    is_path_allowed,
    is_text_file_type,
    match_glob,
    normalize_path,
    require_path_allowed,
)
from sitepress.config import DEFAULT_SEARCH_EXTENSIONS
from sitepress.content.base import BaseStore, file_info, site_root
from sitepress.errors import NotFound
from sitepress.models.results import FileOperationResult
from sitepress.models.site import SiteConfig

logger = logging.getLogger(__name__)


def _walk_files(root: Path, start: Path) -> list[Path]:
    """Return regular files under *start*, skipping any ``.git`` directory."""
    if start.is_file():
        return [start]
    if not start.is_dir():
        return []
    return [
        p for p in start.rglob("*")
        if p.is_file() and ".git" not in p.relative_to(root).parts
    ]


class DirectoryIndexer(BaseStore):
    """Read-only views over a site's editable surface."""

    def _entry(self, config: SiteConfig, full: Path, rel: str, relational: bool = False) -> dict[str, Any]:
        info = file_info(full, rel)
        info["type"] = "sqlite" if relational else determine_file_type(rel, config)
        info["relational"] = relational
        return info

    def _collect(self, config: SiteConfig) -> list[dict[str, Any]]:
        root = site_root(config)
        entries: dict[str, dict[str, Any]] = {}

        prefixes = [normalize_path(p).rstrip("/") for p in config.editable_paths] or [""]
        for prefix in prefixes:
            start = root / prefix if prefix else root
            for full in _walk_files(root, start):
                rel = full.relative_to(root).as_posix()
                if is_path_allowed(config, rel):
                    entries[rel] = self._entry(config, full, rel)

        if config.relational_files:
            for full in _walk_files(root, root):
                rel = full.relative_to(root).as_posix()
                if any(match_glob(rel, r.file_path) for r in config.relational_files):
                    entries[rel] = self._entry(config, full, rel, relational=True)

        return [entries[key] for key in sorted(entries)]

    def list_editable_files(self, config: SiteConfig) -> FileOperationResult:
        """List every editable file plus existing relational files, sorted by path."""
        return self._execute(config, "list", "", lambda: self._collect(config))

    def _tree(self, config: SiteConfig, root: Path, directory: Path) -> dict[str, Any] | None:
        rel_dir = directory.relative_to(root).as_posix() if directory != root else ""
        children: list[dict[str, Any]] = []
        for child in directory.iterdir():
            if child.name == ".git":
                continue
            rel = child.relative_to(root).as_posix()
            if child.is_dir():
                subtree = self._tree(config, root, child)
                if subtree is not None:
                    children.append(subtree)
            elif child.is_file() and is_path_allowed(config, rel):
                entry = self._entry(config, child, rel)
                entry["name"] = child.name
                children.append(entry)

        if not children and rel_dir and not is_path_allowed(config, rel_dir + "/"):
            return None
        children.sort(key=lambda c: (c["type"] != "directory", c["name"]))
        return {
            "name": directory.name if rel_dir else "root",
            "path": rel_dir,
            "type": "directory",
            "children": children,
        }

    def build_directory_tree(self, config: SiteConfig, sub_path: str = "") -> FileOperationResult:
        """Return a nested view of *sub_path*; directories first, then by name.

        Directories holding nothing editable are pruned.
        """
        def run() -> dict[str, Any]:
            root = site_root(config)
            rel = normalize_path(sub_path).rstrip("/")
            if rel:
                require_path_allowed(config, rel + "/")
            start = root / rel if rel else root
            if not start.is_dir():
                raise NotFound(f"Directory does not exist: {rel or '.'}")
            tree = self._tree(config, root, start)
            return tree or {"name": start.name, "path": rel, "type": "directory", "children": []}

        return self._execute(config, "tree", sub_path, run)

    def _search(self, config: SiteConfig, term: str, extensions: tuple[str, ...]) -> dict[str, Any]:
        root = site_root(config)
        needle = term.lower()
        wanted = {("." + e.lower().lstrip(".")) for e in extensions}
        candidates = [
            entry for entry in self._collect(config)
            if not entry["relational"]
            and posixpath.splitext(entry["path"])[1].lower() in wanted
            and is_text_file_type(entry["type"], config)
        ]

        results = []
        for entry in candidates:
            try:
                content = (root / entry["path"]).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                logger.debug("Skipping unreadable file %s during search", entry["path"], exc_info=True)
                continue
            matches = []
            for number, line in enumerate(content.split("\n"), start=1):
                index = line.lower().find(needle)
                if index != -1:
                    matches.append({"line": number, "content": line.strip(), "index": index})
            if matches:
                results.append({"path": entry["path"], "matches": matches})

        return {
            "search_term": term,
            "total_files": len(candidates),
            "matching_files": len(results),
            "results": results,
        }

    def search_file_content(
        self,
        config: SiteConfig,
        term: str,
        extensions: tuple[str, ...] | list[str] = DEFAULT_SEARCH_EXTENSIONS,
    ) -> FileOperationResult:
        """Case-insensitive line search over editable text files."""
        return self._execute(config, "search", "", lambda: self._search(config, term, tuple(extensions)))

    def _stats(self, config: SiteConfig, path: str) -> dict[str, Any]:
        rel, full = self.resolve(config, path)
        if not full.exists():
            raise NotFound(f"File does not exist: {rel}")
        info = file_info(full, rel)
        info["type"] = "directory" if full.is_dir() else determine_file_type(rel, config)
        info["extension"] = posixpath.splitext(rel)[1].lower()
        return info

    def file_stats(self, config: SiteConfig, path: str) -> FileOperationResult:
        """Return size, type, extension and modification time of *path*."""
        return self._execute(config, "stat", path, lambda: self._stats(config, path))
