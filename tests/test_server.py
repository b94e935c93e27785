"""Unit tests for server.py: context lifecycle and MCP request wiring."""

import json
from unittest.mock import MagicMock

import mcp.types as types
import pytest

from errors import ErrorCode, ObsidianError
from server import ServerContext, create_server
from settings import Settings
from tag_cache import TAGS_URI
from tokens import TokenBudgeter


@pytest.fixture
def context(settings: Settings, mock_client: MagicMock, budgeter: TokenBudgeter) -> ServerContext:
    return ServerContext(settings, client=mock_client, budgeter=budgeter)


def call_request(name: str, arguments: dict) -> types.CallToolRequest:
    return types.CallToolRequest(
        method="tools/call", params=types.CallToolRequestParams(name=name, arguments=arguments)
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestServerContext:
    """Tests for ServerContext construction and cleanup."""

    def test_wires_components(self, context: ServerContext) -> None:
        assert len(context.handlers) == 10
        assert context.dispatcher.timeout_ms == 60000
        assert context.rate_limiter.max_requests == 200
        assert list(context.resources) == [TAGS_URI]

    @pytest.mark.asyncio
    async def test_aclose_releases_everything_once(
        self, context: ServerContext, mock_client: MagicMock
    ) -> None:
        context.start()
        assert context.rate_limiter._sweeper is not None
        await context.aclose()
        await context.aclose()
        assert context.rate_limiter._sweeper is None
        mock_client.aclose.assert_awaited_once()
        with pytest.raises(RuntimeError):
            context.budgeter.count_tokens("x")


# ---------------------------------------------------------------------------
# MCP handlers
# ---------------------------------------------------------------------------


class TestMcpHandlers:
    """Tests for the request handlers registered on the low-level server."""

    @pytest.mark.asyncio
    async def test_list_tools(self, context: ServerContext) -> None:
        server = create_server(context)
        result = await server.request_handlers[types.ListToolsRequest](
            types.ListToolsRequest(method="tools/list")
        )
        names = {tool.name for tool in result.root.tools}
        assert "obsidian_update_properties" in names
        assert len(names) == 10

    @pytest.mark.asyncio
    async def test_call_tool(self, context: ServerContext, mock_client: MagicMock) -> None:
        mock_client.get_file_contents.return_value = "# Hi"
        server = create_server(context)
        result = await server.request_handlers[types.CallToolRequest](
            call_request("obsidian_get_file_contents", {"filepath": "a.md"})
        )
        assert result.root.isError is False
        assert result.root.content[0].text == "# Hi"

    @pytest.mark.asyncio
    async def test_call_tool_error_carries_kind_and_code(
        self, context: ServerContext, mock_client: MagicMock
    ) -> None:
        server = create_server(context)
        result = await server.request_handlers[types.CallToolRequest](
            call_request("obsidian_get_file_contents", {"filepath": "a.md", "extra": 1})
        )
        assert result.root.isError is True
        text = result.root.content[0].text
        assert "BadRequest (40000)" in text
        assert "Unknown field: extra" in text
        mock_client.get_file_contents.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_resources(self, context: ServerContext) -> None:
        server = create_server(context)
        result = await server.request_handlers[types.ListResourcesRequest](
            types.ListResourcesRequest(method="resources/list")
        )
        [resource] = result.root.resources
        assert str(resource.uri).rstrip("/") == TAGS_URI

    @pytest.mark.asyncio
    async def test_read_tags_resource(self, context: ServerContext, mock_client: MagicMock) -> None:
        mock_client.search_json.return_value = [{"filename": "a.md", "result": True}]
        mock_client.get_file_contents.return_value = "---\ntags: [x]\n---\n"
        server = create_server(context)
        result = await server.request_handlers[types.ReadResourceRequest](
            types.ReadResourceRequest(method="resources/read", params=types.ReadResourceRequestParams(uri=TAGS_URI))
        )
        [contents] = result.root.contents
        assert contents.mimeType == "application/json"
        assert json.loads(contents.text)["tags"] == [{"name": "x", "count": 1, "files": ["a.md"]}]

    @pytest.mark.asyncio
    async def test_read_unknown_resource(self, context: ServerContext) -> None:
        server = create_server(context)
        with pytest.raises(ObsidianError) as exc_info:
            await server.request_handlers[types.ReadResourceRequest](
                types.ReadResourceRequest(
                    method="resources/read", params=types.ReadResourceRequestParams(uri="obsidian://nope")
                )
            )
        assert exc_info.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_read_resource_failure(self, context: ServerContext, mock_client: MagicMock) -> None:
        mock_client.search_json.side_effect = RuntimeError("boom")
        server = create_server(context)
        with pytest.raises(ObsidianError) as exc_info:
            await server.request_handlers[types.ReadResourceRequest](
                types.ReadResourceRequest(method="resources/read", params=types.ReadResourceRequestParams(uri=TAGS_URI))
            )
        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
        assert exc_info.value.message == "Failed to read resource"
