"""Content stores over a site's editable working tree."""

from sitepress.content.assets import AssetStore
from sitepress.content.index import DirectoryIndexer
from sitepress.content.manager import ContentManager
from sitepress.content.relational import ConnectionRegistry, RelationalRecordStore
from sitepress.content.text import TextDocumentStore

__all__ = [
    "AssetStore",
    "ConnectionRegistry",
    "ContentManager",
    "DirectoryIndexer",
    "RelationalRecordStore",
    "TextDocumentStore",
]
