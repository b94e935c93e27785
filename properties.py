"""YAML front matter properties: parse, validate, merge and write back.

There are two validation tiers:

* ``parse_properties`` is lenient. It never raises; schema problems in a
  note's existing front matter are logged and the parsed mapping is
  returned as-is.
* ``validate_properties`` is strict and only used for update inputs, which
  must match ``PropertyUpdate`` exactly.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union
from urllib.parse import urlsplit

import frontmatter
import yaml
from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationError

from rest_client import ObsidianClient
from validation import describe_error

logger = logging.getLogger("obsidian_rest_mcp.properties")

# Leading front matter block; the body between the fences may be empty.
FRONTMATTER_BLOCK = re.compile(r"\A---\r?\n(?:(.*?)\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
TIMESTAMP_FIELDS = ("created", "modified")

_yaml = frontmatter.YAMLHandler()


def _check_uri(value: str) -> str:
    parts = urlsplit(value)
    if not parts.scheme or not (parts.netloc or parts.path) or " " in value:
        raise ValueError(f"Invalid URI: {value}")
    return value


Uri = Annotated[str, AfterValidator(_check_uri)]
Status = Literal["draft", "in-progress", "review", "complete"]


class PropertyUpdate(BaseModel):
    """Properties a caller may set. Timestamps are dropped before validation."""

    model_config = ConfigDict(extra="forbid", strict=True)

    title: Optional[str] = None
    author: Optional[str] = None
    type: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    status: Optional[List[Status]] = None
    version: Optional[str] = None
    platform: Optional[str] = None
    repository: Optional[Uri] = None
    dependencies: Optional[List[str]] = None
    sources: Optional[List[str]] = None
    urls: Optional[List[Uri]] = None
    papers: Optional[List[str]] = None
    custom: Optional[Dict[str, Any]] = None


class NoteProperties(PropertyUpdate):
    """Schema for properties read from a note; unknown keys are allowed."""

    model_config = ConfigDict(extra="allow", strict=False)

    modified: Optional[Union[datetime, str]] = None


def strip_tag_prefix(tag: str) -> str:
    return tag[1:] if tag.startswith("#") else tag


def _normalize_tags(properties: Dict[str, Any]) -> Dict[str, Any]:
    tags = properties.get("tags")
    if isinstance(tags, list):
        properties["tags"] = [strip_tag_prefix(t) if isinstance(t, str) else t for t in tags]
    return properties


def parse_properties(content: str) -> Dict[str, Any]:
    """Extract front matter properties from note content.

    Missing or unparseable front matter yields an empty mapping.
    """
    match = FRONTMATTER_BLOCK.match(content)
    if not match:
        logger.debug("No front matter found in content")
        return {}
    try:
        loaded = _yaml.load(match.group(1) or "")
    except yaml.YAMLError as e:
        logger.warning("Ignoring malformed YAML front matter: %s", e)
        return {}
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        logger.warning("Ignoring front matter that is not a mapping (%s)", type(loaded).__name__)
        return {}

    properties = _normalize_tags(dict(loaded))
    try:
        NoteProperties.model_validate(properties)
    except ValidationError as e:
        logger.warning(
            "Property validation warnings: %s", "; ".join(describe_error(err) for err in e.errors())
        )
    return properties


def generate_properties(properties: Mapping[str, Any]) -> str:
    """Serialize properties to a front matter block, ``None`` values dropped."""
    clean = {key: value for key, value in properties.items() if value is not None}
    body = _yaml.export(clean, sort_keys=False)
    return f"---{os.linesep}{body}{os.linesep}---{os.linesep}"


def validate_properties(properties: Any) -> List[str]:
    """Strictly check update input. Returns every violation (empty when valid).

    ``created``/``modified`` are system-managed and ignored rather than rejected.
    """
    if not isinstance(properties, Mapping):
        return ["properties: must be an object"]
    settable = {key: value for key, value in properties.items() if key not in TIMESTAMP_FIELDS}
    try:
        PropertyUpdate.model_validate(settable)
    except ValidationError as e:
        return [describe_error(err) for err in e.errors()]
    return []


def _union(current: List[Any], new: List[Any]) -> List[Any]:
    merged: List[Any] = []
    for item in list(current) + list(new):
        if item not in merged:
            merged.append(item)
    return merged


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def merge_properties(
    existing: Mapping[str, Any], updates: Mapping[str, Any], replace: bool = False
) -> Dict[str, Any]:
    """Merge ``updates`` into ``existing``.

    Lists are unioned (or replaced when ``replace`` is set), ``custom`` is
    shallow-merged, everything else is overwritten. ``created``/``modified``
    from ``updates`` are ignored and ``modified`` is always set to now.
    """
    merged = dict(existing)
    for key, value in updates.items():
        if value is None or key in TIMESTAMP_FIELDS:
            continue
        current = merged.get(key)
        if isinstance(value, list) and isinstance(current, list):
            merged[key] = list(value) if replace else _union(current, value)
        elif key == "custom" and isinstance(value, Mapping):
            base = current if isinstance(current, Mapping) else {}
            merged[key] = {**base, **value}
        else:
            merged[key] = value

    merged["modified"] = now_iso()
    return merged


class PropertyManager:
    """Reads and writes note properties through the REST client.

    Both operations report failures in the returned mapping instead of
    raising.
    """

    def __init__(self, client: ObsidianClient):
        self.client = client

    async def get_properties(self, filepath: str) -> Dict[str, Any]:
        try:
            logger.debug("Getting properties from file: %s", filepath)
            content = await self.client.get_file_contents(filepath)
            return {
                "success": True,
                "message": "Properties retrieved successfully",
                "properties": parse_properties(content),
            }
        except Exception as e:
            logger.error("Failed to get properties from %s: %s", filepath, e)
            return {
                "success": False,
                "message": f"Failed to get properties: {e}",
                "errors": [str(e)],
            }

    async def update_properties(
        self, filepath: str, new_properties: Mapping[str, Any], replace: bool = False
    ) -> Dict[str, Any]:
        errors = validate_properties(new_properties)
        if errors:
            logger.warning("Invalid properties for %s: %s", filepath, errors)
            return {"success": False, "message": "Invalid properties", "errors": errors}

        try:
            logger.debug("Updating properties for file: %s", filepath)
            content = await self.client.get_file_contents(filepath)
            existing = parse_properties(content)
            updates = _normalize_tags(dict(new_properties))
            merged = merge_properties(existing, updates, replace)

            body = FRONTMATTER_BLOCK.sub("", content, count=1)
            await self.client.update_content(filepath, generate_properties(merged) + body)
            logger.debug("Successfully updated properties for %s", filepath)
            return {
                "success": True,
                "message": "Properties updated successfully",
                "properties": merged,
            }
        except Exception as e:
            logger.error("Failed to update properties for %s: %s", filepath, e)
            return {
                "success": False,
                "message": f"Failed to update properties: {e}",
                "errors": [str(e)],
            }
