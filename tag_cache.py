"""Vault-wide tag index built from note front matter.

The index maps a tag (without ``#``) to the notes whose front matter lists
it. It is never updated in place: every refresh scans all markdown files
and swaps in a new map.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from mcp.types import Resource

from properties import parse_properties, strip_tag_prefix
from rest_client import ObsidianClient

TAGS_URI = "obsidian://tags"
UPDATE_INTERVAL = 5.0

logger = logging.getLogger("obsidian_rest_mcp.tags")

TagIndex = Dict[str, Set[str]]


def glob_query(pattern: str) -> Dict[str, Any]:
    """JsonLogic query matching vault paths against ``pattern``."""
    return {"glob": [pattern.replace("\\", "/"), {"var": "path"}]}


def _extract_tags(properties: Dict[str, Any]) -> List[str]:
    tags = properties.get("tags")
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",")]
    if not isinstance(tags, list):
        return []
    names = (strip_tag_prefix(str(t).strip()).strip() for t in tags if t is not None)
    return [name for name in names if name]


async def build_tag_index(client: ObsidianClient, query: Dict[str, Any]) -> TagIndex:
    """Scan every file matched by ``query`` and collect its front matter tags.

    A file that cannot be fetched is logged and skipped. A failing search
    query propagates.
    """
    results = await client.search_json(query)
    index: TagIndex = {}
    for result in results:
        filename = result.get("filename") if isinstance(result, dict) else None
        if not filename:
            continue
        try:
            content = await client.get_file_contents(filename)
        except Exception as e:
            logger.error("Failed to process file %s: %s", filename, e)
            continue
        for tag in _extract_tags(parse_properties(content)):
            index.setdefault(tag, set()).add(filename)
    return index


def render_tag_report(index: TagIndex, last_update: Optional[int]) -> Dict[str, Any]:
    tags = sorted(
        ({"name": name, "count": len(files), "files": sorted(files)} for name, files in index.items()),
        key=lambda entry: (-entry["count"], entry["name"]),
    )
    scanned: Set[str] = set()
    for files in index.values():
        scanned.update(files)
    return {
        "tags": tags,
        "metadata": {
            "totalOccurrences": sum(len(files) for files in index.values()),
            "uniqueTags": len(index),
            "scannedFiles": len(scanned),
            "lastUpdate": last_update,
        },
    }


class TagCache:
    """Lazily refreshed tag index exposed as the ``obsidian://tags`` resource.

    Args:
        client: Backend client used for the scan.
        update_interval: Seconds after which the index is rebuilt on read.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        client: ObsidianClient,
        update_interval: float = UPDATE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.update_interval = update_interval
        self._clock = clock
        self._index: TagIndex = {}
        self._initialized = False
        self._refreshed_at = 0.0
        self._last_update: Optional[int] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Rebuild the index from a full scan of ``**/*.md``."""
        logger.info("Initializing tag cache")
        index = await build_tag_index(self.client, glob_query("**/*.md"))
        self._index = index
        self._initialized = True
        self._refreshed_at = self._clock()
        self._last_update = int(time.time() * 1000)
        logger.info("Tag cache initialized with %d unique tags", len(index))

    def is_stale(self) -> bool:
        return not self._initialized or self._clock() - self._refreshed_at > self.update_interval

    async def get_report(self) -> Dict[str, Any]:
        if not self._initialized:
            logger.info("Tag cache not initialized, initializing now")
            await self.initialize()
        elif self.is_stale():
            logger.debug("Tag cache needs update, refreshing...")
            await self.initialize()
        report = render_tag_report(self._index, self._last_update)
        logger.debug("Returning tag report with %d tags", len(report["tags"]))
        return report

    async def get_content(self) -> str:
        return json.dumps(await self.get_report(), indent=2)

    def resource_description(self) -> Resource:
        return Resource(
            uri=TAGS_URI,
            name="Obsidian Tags",
            description="List of all tags used across the Obsidian vault with their usage counts",
            mimeType="application/json",
        )
