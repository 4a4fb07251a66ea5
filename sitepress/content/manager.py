"""ContentManager: one entry point for content reads and committed writes.

Every mutation runs its store operation first; on success the touched paths
are committed and pushed under the acting principal.  Both steps run under
the site's repository lock, so a pull cannot land between them.  A failed commit turns
the result into ``partial``: the change is on disk but not on the remote.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sitepress.access.guard import normalize_path
from sitepress.config import DEFAULT_ROW_LIMIT, DEFAULT_SEARCH_EXTENSIONS
from sitepress.content.assets import AssetStore
from sitepress.content.index import DirectoryIndexer
from sitepress.content.relational import ConnectionRegistry, RelationalRecordStore
from sitepress.content.text import TextDocumentStore
from sitepress.metrics import MetricsCollector
from sitepress.models.results import FileOperationResult, OperationStatus
from sitepress.models.site import Principal, SiteConfig
from sitepress.vcs.sync import GitSyncManager

logger = logging.getLogger(__name__)


class ContentManager:
    """Facade over the text, asset, relational and index stores.

    Parameters
    ----------
    git:
        Sync manager used to commit and push every mutation.
    metrics:
        Collector shared by all stores.
    connections:
        SQLite connection registry for the relational store.
    """

    def __init__(
        self,
        git: GitSyncManager,
        metrics: MetricsCollector | None = None,
        connections: ConnectionRegistry | None = None,
    ) -> None:
        self.git = git
        self.metrics = metrics
        self.text = TextDocumentStore(metrics)
        self.assets = AssetStore(metrics)
        self.relational = RelationalRecordStore(metrics, connections)
        self.index = DirectoryIndexer(metrics)
        git.add_sync_listener(self._release_connections)

    def _release_connections(self, site_id: str) -> None:
        # A pull replaces database files under any open connection
        self.relational.close_connection(site_id)

    @contextmanager
    def _site_locked(self, config: SiteConfig) -> Iterator[None]:
        with self.git.registry.open(config).lock:
            yield

    # -- Commit plumbing ----------------------------------------------------------

    def _commit(
        self,
        config: SiteConfig,
        result: FileOperationResult,
        paths: list[str],
        message: str,
        author: Principal | None,
    ) -> FileOperationResult:
        if not result.success:
            return result
        outcome = self.git.commit_and_push(
            config, [normalize_path(p) for p in paths], message, author,
        )
        if outcome.success:
            return result.model_copy(update={"commit_hash": outcome.hash})
        logger.warning("Change saved but not committed for site %s: %s", config.id, outcome.error)
        return FileOperationResult(
            status=OperationStatus.PARTIAL,
            data=result.data,
            error_code=outcome.error_code,
            commit_error=outcome.error,
        )

    # -- Text documents -----------------------------------------------------------

    def read_text(self, config: SiteConfig, path: str) -> FileOperationResult:
        return self.text.read(config, path)

    def read_many(self, config: SiteConfig, paths: list[str]) -> dict[str, FileOperationResult]:
        return self.text.read_many(config, paths)

    def text_exists(self, config: SiteConfig, path: str) -> bool:
        return self.text.exists(config, path)

    def write_text(
        self,
        config: SiteConfig,
        path: str,
        content: str,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.text.write(config, path, content)
            return self._commit(config, result, [path], message or f"Update {path}", author)

    def create_text(
        self,
        config: SiteConfig,
        path: str,
        content: str = "",
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.text.create(config, path, content)
            return self._commit(config, result, [path], message or f"Create {path}", author)

    def delete_text(
        self,
        config: SiteConfig,
        path: str,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.text.delete(config, path)
            return self._commit(config, result, [path], message or f"Delete {path}", author)

    def copy_text(
        self,
        config: SiteConfig,
        source: str,
        target: str,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.text.copy(config, source, target)
            return self._commit(config, result, [target], message or f"Copy {source} to {target}", author)

    def move_text(
        self,
        config: SiteConfig,
        source: str,
        target: str,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.text.move(config, source, target)
            return self._commit(config, result, [source, target], message or f"Move {source} to {target}", author)

    # -- Assets -------------------------------------------------------------------

    def upload_asset(
        self,
        config: SiteConfig,
        path: str,
        payload: bytes,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.assets.upload(config, path, payload)
            return self._commit(config, result, [path], message or f"Upload {path}", author)

    def upload_assets(
        self,
        config: SiteConfig,
        assets: dict[str, bytes],
        author: Principal | None = None,
        message: str | None = None,
    ) -> dict[str, FileOperationResult]:
        """Upload several assets and commit the successful ones together."""
        with self._site_locked(config):
            results = self.assets.upload_many(config, assets)
            uploaded = [path for path, result in results.items() if result.success]
            if not uploaded:
                return results
            summary = FileOperationResult.ok({"paths": uploaded})
            committed = self._commit(
                config, summary, uploaded,
                message or f"Upload {len(uploaded)} asset(s)", author,
            )
        for path in uploaded:
            if committed.is_partial:
                results[path] = FileOperationResult(
                    status=OperationStatus.PARTIAL,
                    data=results[path].data,
                    error_code=committed.error_code,
                    commit_error=committed.commit_error,
                )
            else:
                results[path] = results[path].model_copy(update={"commit_hash": committed.commit_hash})
        return results

    def delete_asset(
        self,
        config: SiteConfig,
        path: str,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.assets.delete(config, path)
            return self._commit(config, result, [path], message or f"Delete {path}", author)

    def move_asset(
        self,
        config: SiteConfig,
        source: str,
        target: str,
        author: Principal | None = None,
        message: str | None = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.assets.move(config, source, target)
            return self._commit(config, result, [source, target], message or f"Move {source} to {target}", author)

    def asset_info(self, config: SiteConfig, path: str) -> FileOperationResult:
        return self.assets.info(config, path)

    def list_assets(self, config: SiteConfig, directory: str = "") -> FileOperationResult:
        return self.assets.list_assets(config, directory)

    # -- Relational records -------------------------------------------------------

    def list_tables(self, config: SiteConfig, path: str) -> FileOperationResult:
        return self.relational.list_tables(config, path)

    def get_table_data(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        limit: int = DEFAULT_ROW_LIMIT,
        offset: int = 0,
    ) -> FileOperationResult:
        return self.relational.get_table_data(config, path, table, limit, offset)

    def insert_row(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        data: dict[str, Any],
        author: Principal | None = None,
        message: str | None = None,
        row_id: Any = None,
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.relational.insert_row(config, path, table, data, row_id=row_id)
            return self._commit(config, result, [path], message or f"Add row to {table}", author)

    def update_row(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        row_id: Any,
        data: dict[str, Any],
        author: Principal | None = None,
        message: str | None = None,
        id_column: str = "id",
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.relational.update_row(config, path, table, row_id, data, id_column)
            return self._commit(config, result, [path], message or f"Update row {row_id} in {table}", author)

    def delete_row(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        row_id: Any,
        author: Principal | None = None,
        message: str | None = None,
        id_column: str = "id",
    ) -> FileOperationResult:
        with self._site_locked(config):
            result = self.relational.delete_row(config, path, table, row_id, id_column)
            return self._commit(config, result, [path], message or f"Delete row {row_id} from {table}", author)

    def close_connection(self, site_id: str, path: str | None = None) -> int:
        return self.relational.close_connection(site_id, path)

    def close_all(self) -> int:
        return self.relational.close_all()

    # -- Index --------------------------------------------------------------------

    def list_editable_files(self, config: SiteConfig) -> FileOperationResult:
        return self.index.list_editable_files(config)

    def directory_tree(self, config: SiteConfig, sub_path: str = "") -> FileOperationResult:
        return self.index.build_directory_tree(config, sub_path)

    def search(
        self,
        config: SiteConfig,
        term: str,
        extensions: tuple[str, ...] | list[str] = DEFAULT_SEARCH_EXTENSIONS,
    ) -> FileOperationResult:
        return self.index.search_file_content(config, term, extensions)

    def file_stats(self, config: SiteConfig, path: str) -> FileOperationResult:
        return self.index.file_stats(config, path)
