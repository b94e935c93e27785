"""MCP tool handlers, one per vault capability."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Type

from mcp.types import TextContent, Tool
from pydantic import BaseModel, ConfigDict, Field

from properties import PropertyManager
from rest_client import ObsidianClient
from tag_cache import TagCache, build_tag_index, glob_query, render_tag_report
from validation import VaultPath

logger = logging.getLogger("obsidian_rest_mcp.tools")

# Above this many matching files, find_in_file only reports names and counts.
FILE_ONLY_THRESHOLD = 5


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------

class ToolInput(BaseModel):
    """Common config: unknown arguments are rejected, no type coercion."""
    model_config = ConfigDict(extra="forbid", strict=True)


class FilePathInput(ToolInput):
    filepath: VaultPath = Field(
        ..., description="Path to the file (relative to vault root)", min_length=1
    )


class DirPathInput(ToolInput):
    dirpath: VaultPath = Field(
        ...,
        description="Path to list files from (relative to your vault root). "
        "Note that empty directories will not be returned.",
        min_length=1,
    )


class FindInFileInput(ToolInput):
    query: str = Field(
        ...,
        description="Text pattern to search for. Can include tags, keywords, or phrases.",
        min_length=1,
    )
    context_length: int = Field(
        default=10,
        alias="contextLength",
        description="Number of characters to include before and after each match for context",
        ge=0,
    )


class ContentInput(FilePathInput):
    content: str = Field(..., description="Markdown content", min_length=1)


class ComplexSearchInput(ToolInput):
    query: Dict[str, Any] = Field(
        ...,
        description='JsonLogic query object. Example: {"glob": ["*.md", {"var": "path"}]} '
        "matches all markdown files",
    )


class UpdatePropertiesInput(FilePathInput):
    properties: Dict[str, Any] = Field(..., description="Properties to update")
    replace: bool = Field(
        default=False, description="If true, arrays will be replaced instead of merged"
    )


class GetTagsInput(ToolInput):
    path: Optional[VaultPath] = Field(
        default=None, description="Optional path to limit tag search to specific folder"
    )


# ---------------------------------------------------------------------------
# Base handler
# ---------------------------------------------------------------------------

class ToolHandler:
    """One named tool. Subclasses set the class attributes and implement ``run``."""

    name: str = ""
    description: str = ""
    input_model: Type[ToolInput] = ToolInput
    examples: List[Dict[str, Any]] = []

    def __init__(self, client: ObsidianClient):
        self.client = client

    def tool(self) -> Tool:
        description = self.description
        if self.examples:
            lines = [
                f"- {example['description']}: {json.dumps(example['args'])}"
                for example in self.examples
            ]
            description += "\n\nExamples:\n" + "\n".join(lines)
        return Tool(
            name=self.name,
            description=description,
            inputSchema=self.input_model.model_json_schema(),
        )

    async def run(self, params: Any) -> Any:
        raise NotImplementedError

    def create_response(self, payload: Any) -> List[TextContent]:
        if isinstance(payload, str):
            text = payload
        elif isinstance(payload, (list, tuple)) and payload and all(isinstance(i, str) for i in payload):
            text = "\n".join(payload)
        else:
            text = json.dumps(payload, indent=2, default=str)
        return [TextContent(type="text", text=text)]


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class ListFilesInVaultHandler(ToolHandler):
    name = "obsidian_list_files_in_vault"
    description = (
        "Lists all files and directories in the root directory of your Obsidian vault. "
        "Returns a hierarchical structure of files and folders, including metadata like file type."
    )
    examples = [{"description": "List all files in vault", "args": {}}]

    async def run(self, params: ToolInput) -> Any:
        return await self.client.list_files_in_vault()


class ListFilesInDirHandler(ToolHandler):
    name = "obsidian_list_files_in_dir"
    description = (
        "Lists all files and directories that exist in a specific Obsidian directory. "
        "Useful for exploring vault organization and finding specific files."
    )
    input_model = DirPathInput
    examples = [{"description": "List files in Documents folder", "args": {"dirpath": "Documents"}}]

    async def run(self, params: DirPathInput) -> Any:
        return await self.client.list_files_in_dir(params.dirpath)


class GetFileContentsHandler(ToolHandler):
    name = "obsidian_get_file_contents"
    description = (
        "Return the content of a single file in your vault. Returns the raw content "
        "including any YAML frontmatter."
    )
    input_model = FilePathInput
    examples = [
        {"description": "Get content of a markdown note", "args": {"filepath": "Projects/research.md"}}
    ]

    async def run(self, params: FilePathInput) -> str:
        return await self.client.get_file_contents(params.filepath)


class AppendContentHandler(ToolHandler):
    name = "obsidian_append_content"
    description = "Append content to a new or existing file in the vault."
    input_model = ContentInput
    examples = [
        {
            "description": "Append a new task",
            "args": {"filepath": "tasks.md", "content": "- [ ] New task to complete"},
        }
    ]

    async def run(self, params: ContentInput) -> Dict[str, Any]:
        await self.client.append_content(params.filepath, params.content)
        return {"success": True, "message": f"Successfully appended content to {params.filepath}"}


class PatchContentHandler(ToolHandler):
    name = "obsidian_patch_content"
    description = "Update the entire content of an existing note or create a new one."
    input_model = ContentInput
    examples = [
        {
            "description": "Update a note's content",
            "args": {"filepath": "project.md", "content": "# Project Notes\n\nUpdated content"},
        }
    ]

    async def run(self, params: ContentInput) -> Dict[str, Any]:
        await self.client.update_content(params.filepath, params.content)
        return {"success": True, "message": f"Successfully updated content in {params.filepath}"}


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class FindInFileHandler(ToolHandler):
    name = "obsidian_find_in_file"
    description = (
        "Full-text search across all files in the vault. Returns matching files with surrounding "
        "context for each match. For results with more than 5 matching files, returns only file "
        "names and match counts."
    )
    input_model = FindInFileInput
    examples = [
        {"description": "Search for a specific term", "args": {"query": "neural networks", "contextLength": 20}},
        {"description": "Search with default context", "args": {"query": "#todo"}},
    ]

    async def run(self, params: FindInFileInput) -> Dict[str, Any]:
        results = await self.client.search(params.query, params.context_length)

        if len(results) > FILE_ONLY_THRESHOLD:
            logger.debug("Found %d files with matches, returning file-only format", len(results))
            return {
                "message": f"Found {len(results)} files with matches. Showing file names only:",
                "results": [
                    {"filename": r.get("filename"), "matchCount": len(r.get("matches") or [])}
                    for r in results
                ],
            }

        formatted = []
        for r in results:
            matches = []
            for m in r.get("matches") or []:
                context = m.get("context", "")
                start, end = m["match"]["start"], m["match"]["end"]
                matches.append({
                    "context": context,
                    "match": {"text": context[start:end], "position": {"start": start, "end": end}},
                })
            formatted.append({"filename": r.get("filename"), "matches": matches, "score": r.get("score")})
        return {"message": f"Found {len(results)} file(s) with matches:", "results": formatted}


class ComplexSearchHandler(ToolHandler):
    name = "obsidian_complex_search"
    description = (
        "File path pattern matching using JsonLogic queries. Supported operations:\n"
        '- glob: Pattern matching for paths (e.g., "*.md")\n'
        '- Variable access: {"var": "path"}\n\n'
        "For full-text content search use obsidian_find_in_file instead."
    )
    input_model = ComplexSearchInput
    examples = [
        {
            "description": "Find markdown files in Projects folder",
            "args": {"query": {"glob": ["Projects/*.md", {"var": "path"}]}},
        }
    ]

    async def run(self, params: ComplexSearchInput) -> Dict[str, Any]:
        results = await self.client.search_json(params.query)
        formatted = []
        for r in results:
            if "matches" in r:
                formatted.append({"filename": r.get("filename"), "matches": r["matches"], "score": r.get("score")})
            else:
                formatted.append({"filename": r.get("filename"), "result": r.get("result")})
        logger.debug("Complex search found %d results", len(results))
        return {"message": f"Found {len(results)} result(s)", "results": formatted}


# ---------------------------------------------------------------------------
# Properties and tags
# ---------------------------------------------------------------------------

class GetPropertiesHandler(ToolHandler):
    name = "obsidian_get_properties"
    description = (
        "Get properties (title, tags, status, etc.) from an Obsidian note's YAML frontmatter. "
        "Returns all available properties including custom fields."
    )
    input_model = FilePathInput
    examples = [{"description": "Get properties from a note", "args": {"filepath": "Projects/Project A.md"}}]

    def __init__(self, client: ObsidianClient, properties: PropertyManager):
        super().__init__(client)
        self.properties = properties

    async def run(self, params: FilePathInput) -> Dict[str, Any]:
        return await self.properties.get_properties(params.filepath)


class UpdatePropertiesHandler(ToolHandler):
    name = "obsidian_update_properties"
    description = (
        "Update properties in an Obsidian note's YAML frontmatter. Merges arrays "
        "(tags, type, status), merges custom fields and sets the modified timestamp. Valid fields:\n"
        "- status: ['draft', 'in-progress', 'review', 'complete']\n"
        "- tags, type, dependencies, sources, papers: arrays of strings\n"
        "- urls: array of URIs; repository: URI\n"
        "- title, author, version, platform: strings; custom: object"
    )
    input_model = UpdatePropertiesInput
    examples = [
        {
            "description": "Update basic metadata",
            "args": {"filepath": "note.md", "properties": {"title": "My Note", "author": "John Doe"}},
        },
        {
            "description": "Update tags and status with replace",
            "args": {
                "filepath": "note.md",
                "properties": {"tags": ["#research", "#ai"], "status": ["in-progress"]},
                "replace": True,
            },
        },
    ]

    def __init__(self, client: ObsidianClient, properties: PropertyManager):
        super().__init__(client)
        self.properties = properties

    async def run(self, params: UpdatePropertiesInput) -> Dict[str, Any]:
        logger.debug(
            "Updating %d properties for %s (replace=%s)",
            len(params.properties), params.filepath, params.replace,
        )
        return await self.properties.update_properties(params.filepath, params.properties, params.replace)


class GetTagsHandler(ToolHandler):
    name = "obsidian_get_tags"
    description = (
        "Get all tags used across the Obsidian vault with their usage counts. "
        "Optionally filter tags within a specific folder."
    )
    input_model = GetTagsInput
    examples = [
        {"description": "Get all tags in vault", "args": {}},
        {"description": "Get tags in Projects folder", "args": {"path": "Projects"}},
    ]

    def __init__(self, client: ObsidianClient, tag_cache: TagCache):
        super().__init__(client)
        self.tag_cache = tag_cache

    async def run(self, params: GetTagsInput) -> Dict[str, Any]:
        if not params.path:
            return await self.tag_cache.get_report()
        folder = params.path.strip("/")
        logger.debug("Getting tags in path: %s", folder)
        index = await build_tag_index(self.client, glob_query(f"{folder}/**/*.md"))
        return render_tag_report(index, int(time.time() * 1000))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def create_tool_handlers(
    client: ObsidianClient, properties: PropertyManager, tag_cache: TagCache
) -> List[ToolHandler]:
    return [
        ListFilesInVaultHandler(client),
        ListFilesInDirHandler(client),
        GetFileContentsHandler(client),
        FindInFileHandler(client),
        AppendContentHandler(client),
        PatchContentHandler(client),
        ComplexSearchHandler(client),
        GetPropertiesHandler(client, properties),
        UpdatePropertiesHandler(client, properties),
        GetTagsHandler(client, tag_cache),
    ]


def create_tool_handler_map(handlers: Sequence[ToolHandler]) -> Dict[str, ToolHandler]:
    return {handler.name: handler for handler in handlers}
