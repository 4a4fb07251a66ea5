"""TextDocumentStore: read and write UTF-8 documents (Markdown, JSON, YAML...)."""

from __future__ import annotations

import importlib
import json
import logging
from typing import Any

import pydantic

from sitepress.access.guard import determine_file_type, resolve_model_file_config
from sitepress.content.base import BaseStore, file_info
from sitepress.errors import AccessDenied, AlreadyExists, ValidationError
from sitepress.models.results import FileOperationResult
from sitepress.models.site import ModelFileConfig, SiteConfig

logger = logging.getLogger(__name__)


def load_model(reference: str) -> type[pydantic.BaseModel]:
    """Import the pydantic model named by ``"package.module:ClassName"``."""
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ValidationError(f"Model reference must look like 'module:Class': {reference}")
    try:
        module = importlib.import_module(module_name)
        model = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ValidationError(f"Cannot load model {reference}: {exc}") from exc
    if not (isinstance(model, type) and issubclass(model, pydantic.BaseModel)):
        raise ValidationError(f"{reference} is not a pydantic model")
    return model


def validate_model_document(model_file: ModelFileConfig, content: str) -> None:
    """Raise :class:`ValidationError` unless *content* satisfies the bound model."""
    model = load_model(model_file.model)
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON: {exc}") from exc
    try:
        model.model_validate(payload)
    except pydantic.ValidationError as exc:
        violations = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationError(
            f"Document does not match {model_file.display_name or model.__name__}: "
            + "; ".join(violations),
            violations=violations,
        ) from exc


class TextDocumentStore(BaseStore):
    """Text documents inside a site's editable paths."""

    def _read(self, config: SiteConfig, path: str) -> dict[str, Any]:
        rel, full = self.resolve_existing(config, path)
        try:
            content = full.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(f"{rel} is not valid UTF-8 text: {exc.reason}") from exc
        return {
            **file_info(full, rel),
            "content": content,
            "type": determine_file_type(rel, config),
        }

    def _write(self, config: SiteConfig, path: str, content: str, create: bool) -> dict[str, Any]:
        rel, full = self.resolve(config, path)
        if create and full.exists():
            raise AlreadyExists(f"File already exists: {rel}")
        if rel.lower().endswith(".json"):
            model_file = resolve_model_file_config(config, rel)
            if model_file is not None:
                validate_model_document(model_file, content)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content, encoding="utf-8")
        return file_info(full, rel)

    def read(self, config: SiteConfig, path: str) -> FileOperationResult:
        """Return the content and metadata of a document."""
        return self._execute(config, "read", path, lambda: self._read(config, path))

    def write(self, config: SiteConfig, path: str, content: str) -> FileOperationResult:
        """Create or overwrite a document, creating parent directories.

        JSON documents bound to a model are validated before anything is
        written.
        """
        return self._execute(config, "write", path, lambda: self._write(config, path, content, create=False))

    def create(self, config: SiteConfig, path: str, content: str = "") -> FileOperationResult:
        """Like :meth:`write`, but fail if the document already exists."""
        return self._execute(config, "create", path, lambda: self._write(config, path, content, create=True))

    def exists(self, config: SiteConfig, path: str) -> bool:
        """Return *True* if *path* is editable and names an existing file."""
        try:
            _, full = self.resolve(config, path)
        except AccessDenied:
            return False
        return full.is_file()

    def read_many(self, config: SiteConfig, paths: list[str]) -> dict[str, FileOperationResult]:
        """Read several documents; each gets its own result."""
        return {path: self.read(config, path) for path in paths}
