"""Immutable descriptor of one managed repository and its editable surface.

A site is an external git repository plus the declared editable surface of
its working tree: path prefixes for documents and assets, SQLite files with
table/column allow-lists, JSON documents bound to pydantic models, and
custom file types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

from sitepress.config import DEFAULT_BUILD_OUTPUT_DIR, DEFAULT_CONTENT_BRANCH

# A command is either a shell string or an explicit argument vector
Command = Union[str, list[str]]


class PrimaryKeyStrategy(str, Enum):
    """How a primary key is filled when an insert does not supply one."""

    AUTO_INCREMENT = "auto_increment"
    RANDOM_TOKEN = "random_token"
    TIMESTAMP = "timestamp"
    CUSTOM = "custom"


class TableAccessConfig(BaseModel):
    """Access rules for one table inside a relational file."""

    model_config = ConfigDict(frozen=True)

    table_name: str
    editable_columns: list[str] | None = None
    readable_columns: list[str] | None = None
    default_values: dict[str, Any] | None = None
    primary_key_strategy: PrimaryKeyStrategy = PrimaryKeyStrategy.AUTO_INCREMENT
    display_name: str | None = None


class RelationalFileConfig(BaseModel):
    """A SQLite file (path or glob) and its editable tables."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    editable_tables: list[TableAccessConfig] = Field(default_factory=list)


class ModelFileConfig(BaseModel):
    """JSON documents validated against a pydantic model before writing.

    ``model`` is an import reference of the form ``"package.module:ClassName"``.
    """

    model_config = ConfigDict(frozen=True)

    file_path: str
    model: str
    display_name: str | None = None


class CustomFileTypeConfig(BaseModel):
    """Site-specific file type keyed by extension."""

    model_config = ConfigDict(frozen=True)

    name: str
    extensions: list[str] = Field(default_factory=list)
    display_name: str | None = None
    is_text: bool | None = None


class SiteConfig(BaseModel):
    """Immutable snapshot of a site's configuration.

    The credential arrives already decrypted; no SitePress component
    mutates or persists the snapshot.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    repository_url: str
    credential: str = Field(default="", repr=False)
    local_path: str
    branch: str = DEFAULT_CONTENT_BRANCH
    build_command: Command | None = None
    build_output_dir: str = DEFAULT_BUILD_OUTPUT_DIR
    validate_command: Command | None = None
    editable_paths: list[str] = Field(default_factory=list)
    relational_files: list[RelationalFileConfig] = Field(default_factory=list)
    model_files: list[ModelFileConfig] = Field(default_factory=list)
    custom_file_types: list[CustomFileTypeConfig] = Field(default_factory=list)


class Principal(BaseModel):
    """The user on whose behalf a change is committed."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    email: str
