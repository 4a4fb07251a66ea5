"""Access control over a site's editable surface."""

from sitepress.access.guard import (
    classify_file_type,
    determine_file_type,
    is_path_allowed,
    is_text_file_type,
    normalize_path,
    require_path_allowed,
    resolve_column_access,
    resolve_model_file_config,
    resolve_relational_file_config,
    resolve_table_access,
    validate_site_config,
)

__all__ = [
    "classify_file_type",
    "determine_file_type",
    "is_path_allowed",
    "is_text_file_type",
    "normalize_path",
    "require_path_allowed",
    "resolve_column_access",
    "resolve_model_file_config",
    "resolve_relational_file_config",
    "resolve_table_access",
    "validate_site_config",
]
