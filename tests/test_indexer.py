"""Tests for DirectoryIndexer: listing, tree view, search and stats."""

from __future__ import annotations

from pathlib import Path

from sitepress.content.index import DirectoryIndexer
from sitepress.errors import AccessDenied, NotFound
from sitepress.models.site import CustomFileTypeConfig, SiteConfig


class TestListEditableFiles:
    def test_sorted_listing_with_relational(self, cloned: SiteConfig):
        result = DirectoryIndexer().list_editable_files(cloned)
        assert result.success
        paths = [entry["path"] for entry in result.data]
        assert paths == [
            "assets/logo.png",
            "content/about.md",
            "content/data.json",
            "content/index.md",
            "data/site.sqlite",
        ]
        by_path = {entry["path"]: entry for entry in result.data}
        assert by_path["data/site.sqlite"]["relational"]
        assert by_path["data/site.sqlite"]["type"] == "sqlite"
        assert by_path["content/index.md"]["type"] == "markdown"
        assert by_path["assets/logo.png"]["type"] == "image"

    def test_relational_glob_stays_in_its_directory(self, cloned: SiteConfig):
        nested = Path(cloned.local_path) / "data" / "nested" / "other.sqlite"
        nested.parent.mkdir()
        nested.write_bytes(b"")
        paths = [entry["path"] for entry in DirectoryIndexer().list_editable_files(cloned).data]
        assert "data/site.sqlite" in paths
        assert "data/nested/other.sqlite" not in paths

    def test_unrestricted_site_lists_everything_but_git(self, cloned: SiteConfig):
        open_site = cloned.model_copy(update={"editable_paths": []})
        paths = [entry["path"] for entry in DirectoryIndexer().list_editable_files(open_site).data]
        assert "README.md" in paths
        assert "private/notes.md" in paths
        assert not any(p.startswith(".git/") for p in paths)

    def test_custom_type_applied(self, cloned: SiteConfig):
        site = cloned.model_copy(update={
            "custom_file_types": [CustomFileTypeConfig(name="page", extensions=["md"], is_text=True)],
        })
        by_path = {e["path"]: e for e in DirectoryIndexer().list_editable_files(site).data}
        assert by_path["content/index.md"]["type"] == "page"


class TestDirectoryTree:
    def test_root_tree(self, cloned: SiteConfig):
        tree = DirectoryIndexer().build_directory_tree(cloned).data
        assert tree["name"] == "root"
        assert tree["type"] == "directory"
        names = [child["name"] for child in tree["children"]]
        assert names == ["assets", "content"]

        content = tree["children"][1]
        assert content["path"] == "content"
        assert [c["name"] for c in content["children"]] == ["about.md", "data.json", "index.md"]

    def test_directories_before_files(self, cloned: SiteConfig):
        (Path(cloned.local_path) / "content" / "zz").mkdir()
        (Path(cloned.local_path) / "content" / "zz" / "deep.md").write_text("deep")
        content = DirectoryIndexer().build_directory_tree(cloned, "content").data
        assert content["children"][0]["name"] == "zz"
        assert content["children"][0]["type"] == "directory"
        assert content["children"][0]["children"][0]["path"] == "content/zz/deep.md"

    def test_empty_editable_directory_kept(self, cloned: SiteConfig):
        (Path(cloned.local_path) / "content" / "drafts").mkdir()
        content = DirectoryIndexer().build_directory_tree(cloned, "content").data
        assert "drafts" in [c["name"] for c in content["children"]]

    def test_denied_sub_path(self, cloned: SiteConfig):
        assert DirectoryIndexer().build_directory_tree(cloned, "private").error_code == AccessDenied.code

    def test_missing_sub_path(self, cloned: SiteConfig):
        assert DirectoryIndexer().build_directory_tree(cloned, "content/nope").error_code == NotFound.code


class TestSearch:
    def test_case_insensitive_matches(self, cloned: SiteConfig):
        data = DirectoryIndexer().search_file_content(cloned, "HELLO").data
        assert data["search_term"] == "HELLO"
        assert data["total_files"] == 3
        assert data["matching_files"] == 1
        result = data["results"][0]
        assert result["path"] == "content/index.md"
        assert result["matches"] == [{"line": 3, "content": "Hello world", "index": 0}]

    def test_match_index_within_line(self, cloned: SiteConfig):
        data = DirectoryIndexer().search_file_content(cloned, "welcome").data
        assert data["results"][0]["matches"][0]["index"] == 2

    def test_extension_filter(self, cloned: SiteConfig):
        data = DirectoryIndexer().search_file_content(cloned, "demo", extensions=["json"]).data
        assert data["total_files"] == 1
        assert [r["path"] for r in data["results"]] == ["content/data.json"]

    def test_no_matches(self, cloned: SiteConfig):
        data = DirectoryIndexer().search_file_content(cloned, "zebra").data
        assert data["matching_files"] == 0
        assert data["results"] == []

    def test_private_files_not_searched(self, cloned: SiteConfig):
        data = DirectoryIndexer().search_file_content(cloned, "not editable").data
        assert data["matching_files"] == 0


class TestFileStats:
    def test_file(self, cloned: SiteConfig):
        data = DirectoryIndexer().file_stats(cloned, "content/index.md").data
        assert data["type"] == "markdown"
        assert data["extension"] == ".md"
        assert data["size"] > 0

    def test_directory(self, cloned: SiteConfig):
        (Path(cloned.local_path) / "content" / "posts").mkdir()
        assert DirectoryIndexer().file_stats(cloned, "content/posts").data["type"] == "directory"

    def test_missing_and_denied(self, cloned: SiteConfig):
        indexer = DirectoryIndexer()
        assert indexer.file_stats(cloned, "content/nope.md").error_code == NotFound.code
        assert indexer.file_stats(cloned, "private/notes.md").error_code == AccessDenied.code
