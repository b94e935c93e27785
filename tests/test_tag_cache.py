"""Unit tests for tag_cache.py: index building, report rendering and staleness."""

import json
from typing import Dict
from unittest.mock import MagicMock

import pytest

from errors import ErrorCode, ObsidianError
from tag_cache import TAGS_URI, TagCache, build_tag_index, glob_query, render_tag_report

VAULT: Dict[str, str] = {
    "a.md": "---\ntags: [x, y]\n---\nA",
    "b.md": "---\ntags: ['#x']\n---\nB",
    "c.md": "No front matter",
    "d.md": "---\ntags: 'y, z'\n---\nD",
}


def serve_vault(client: MagicMock, vault: Dict[str, str]) -> None:
    client.search_json.return_value = [{"filename": name, "result": True} for name in vault]

    async def get_file_contents(path: str) -> str:
        if path not in vault:
            raise ObsidianError("File not found", ErrorCode.NOT_FOUND)
        return vault[path]

    client.get_file_contents.side_effect = get_file_contents


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Index and report
# ---------------------------------------------------------------------------


class TestBuildTagIndex:
    """Tests for build_tag_index."""

    @pytest.mark.asyncio
    async def test_collects_tags(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, VAULT)
        index = await build_tag_index(mock_client, glob_query("**/*.md"))
        assert index == {"x": {"a.md", "b.md"}, "y": {"a.md", "d.md"}, "z": {"d.md"}}
        mock_client.search_json.assert_awaited_once_with({"glob": ["**/*.md", {"var": "path"}]})

    @pytest.mark.asyncio
    async def test_skips_failing_file(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, {"a.md": VAULT["a.md"]})
        mock_client.search_json.return_value.append({"filename": "gone.md", "result": True})
        index = await build_tag_index(mock_client, glob_query("**/*.md"))
        assert index == {"x": {"a.md"}, "y": {"a.md"}}

    @pytest.mark.asyncio
    async def test_bare_hash_tags_are_dropped(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, {
            "a.md": "---\ntags: ['#', '', real]\n---\n",
            "b.md": "---\ntags: '#, other'\n---\n",
        })
        index = await build_tag_index(mock_client, glob_query("**/*.md"))
        assert index == {"real": {"a.md"}, "other": {"b.md"}}

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self, mock_client: MagicMock) -> None:
        mock_client.search_json.side_effect = ObsidianError("down", ErrorCode.CONNECTION_REFUSED)
        with pytest.raises(ObsidianError):
            await build_tag_index(mock_client, glob_query("**/*.md"))


class TestRenderTagReport:
    """Tests for render_tag_report."""

    def test_scenario(self) -> None:
        index = {"x": {"b.md", "a.md"}, "y": {"a.md"}}
        assert render_tag_report(index, 42) == {
            "tags": [
                {"name": "x", "count": 2, "files": ["a.md", "b.md"]},
                {"name": "y", "count": 1, "files": ["a.md"]},
            ],
            "metadata": {"totalOccurrences": 3, "uniqueTags": 2, "scannedFiles": 2, "lastUpdate": 42},
        }

    def test_ties_sorted_by_name(self) -> None:
        report = render_tag_report({"b": {"1.md"}, "a": {"2.md"}, "c": {"1.md", "2.md"}}, None)
        assert [t["name"] for t in report["tags"]] == ["c", "a", "b"]

    def test_empty(self) -> None:
        report = render_tag_report({}, None)
        assert report["tags"] == []
        assert report["metadata"]["scannedFiles"] == 0


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestTagCache:
    """Tests for TagCache refresh behavior."""

    @pytest.mark.asyncio
    async def test_initializes_on_first_read(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, VAULT)
        cache = TagCache(mock_client, clock=FakeClock())
        assert not cache.initialized
        report = await cache.get_report()
        assert cache.initialized
        assert report["metadata"]["uniqueTags"] == 3
        assert isinstance(report["metadata"]["lastUpdate"], int)

    @pytest.mark.asyncio
    async def test_fresh_cache_is_reused(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, VAULT)
        clock = FakeClock()
        cache = TagCache(mock_client, clock=clock)
        await cache.get_report()
        clock.now += 4.9
        await cache.get_report()
        assert mock_client.search_json.await_count == 1

    @pytest.mark.asyncio
    async def test_stale_cache_is_rebuilt(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, VAULT)
        clock = FakeClock()
        cache = TagCache(mock_client, clock=clock)
        await cache.get_report()

        serve_vault(mock_client, {"new.md": "---\ntags: [fresh]\n---\n"})
        clock.now += 5.1
        report = await cache.get_report()
        assert mock_client.search_json.await_count == 2
        assert [t["name"] for t in report["tags"]] == ["fresh"]

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_index(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, VAULT)
        clock = FakeClock()
        cache = TagCache(mock_client, clock=clock)
        await cache.get_report()

        mock_client.search_json.side_effect = ObsidianError("down", ErrorCode.CONNECTION_REFUSED)
        clock.now += 10
        with pytest.raises(ObsidianError):
            await cache.get_report()
        assert set(cache._index) == {"x", "y", "z"}

    @pytest.mark.asyncio
    async def test_get_content_is_json(self, mock_client: MagicMock) -> None:
        serve_vault(mock_client, VAULT)
        cache = TagCache(mock_client, clock=FakeClock())
        content = json.loads(await cache.get_content())
        assert content["tags"][0]["name"] == "x"

    def test_resource_description(self, mock_client: MagicMock) -> None:
        resource = TagCache(mock_client).resource_description()
        assert str(resource.uri).rstrip("/") == TAGS_URI
        assert resource.mimeType == "application/json"
