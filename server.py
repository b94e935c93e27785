"""Obsidian REST MCP Server - expose the Obsidian Local REST API as MCP tools."""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Iterable, List, Optional

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool
from pydantic import ValidationError

from dispatch import ToolDispatcher
from errors import ErrorCode, ObsidianError
from properties import PropertyManager
from rate_limit import RateLimiter
from rest_client import VERSION, ObsidianClient
from settings import Settings, configure_logging, load_settings
from tag_cache import TAGS_URI, TagCache
from tokens import TokenBudgeter
from tool_handlers import create_tool_handlers

SERVER_NAME = "obsidian-rest-mcp"

logger = logging.getLogger("obsidian_rest_mcp.server")


# ---------------------------------------------------------------------------
# Server context
# ---------------------------------------------------------------------------

class ServerContext:
    """Owns every long-lived component of one server instance.

    Args:
        settings: Loaded settings.
        client: Backend client; built from ``settings`` when omitted.
        budgeter: Token budgeter; built from ``settings`` when omitted.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[ObsidianClient] = None,
        budgeter: Optional[TokenBudgeter] = None,
    ):
        self.settings = settings
        self.client = client or ObsidianClient(settings)
        self.budgeter = budgeter or TokenBudgeter(settings.max_tokens)
        self.rate_limiter = RateLimiter(settings.rate_limit_window_ms, settings.rate_limit_max_requests)
        self.properties = PropertyManager(self.client)
        self.tag_cache = TagCache(self.client)
        self.handlers = create_tool_handlers(self.client, self.properties, self.tag_cache)
        self.dispatcher = ToolDispatcher(
            self.handlers, self.rate_limiter, self.budgeter, settings.tool_timeout_ms
        )
        self.resources = {TAGS_URI: self.tag_cache}
        self._closed = False

    def start(self) -> None:
        self.rate_limiter.start()

    async def aclose(self) -> None:
        """Release the sweep task, the tokenizer and the HTTP client."""
        if self._closed:
            return
        self._closed = True
        logger.info("Cleaning up server resources")
        await self.rate_limiter.close()
        self.budgeter.close()
        await self.client.aclose()


# ---------------------------------------------------------------------------
# MCP wiring
# ---------------------------------------------------------------------------

def create_server(context: ServerContext) -> Server:
    server = Server(SERVER_NAME, version=VERSION)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return context.dispatcher.list_tools()

    # Arguments are validated by the dispatcher after the rate limit check.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        return await context.dispatcher.dispatch(name, arguments)

    @server.list_resources()
    async def list_resources() -> List[Resource]:
        return [cache.resource_description() for cache in context.resources.values()]

    @server.read_resource()
    async def read_resource(uri: Any) -> Iterable[ReadResourceContents]:
        uri_str = str(uri)
        cache = context.resources.get(uri_str.rstrip("/"))
        if cache is None:
            raise ObsidianError(f"Resource not found: {uri_str}", ErrorCode.NOT_FOUND)
        try:
            text = await cache.get_content()
        except Exception as e:
            logger.error("Failed to read resource %s: %s", uri_str, e)
            raise ObsidianError(
                "Failed to read resource", ErrorCode.INTERNAL_ERROR, {"uri": uri_str, "originalError": str(e)}
            ) from e
        return [ReadResourceContents(content=text, mime_type="application/json")]

    return server


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _serve(server: Server) -> None:
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


async def run(settings: Settings) -> None:
    """Serve over stdio until the client disconnects or SIGINT/SIGTERM arrives."""
    context = ServerContext(settings)
    try:
        context.start()
        server = create_server(context)
        serve_task = asyncio.create_task(_serve(server))

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, serve_task.cancel)
            except NotImplementedError:
                pass

        logger.info("Obsidian REST MCP server running on stdio (%s)", settings.base_url)
        try:
            await serve_task
        except asyncio.CancelledError:
            logger.info("Shutdown signal received")
    finally:
        await context.aclose()


def main() -> None:
    try:
        settings = load_settings()
    except (ObsidianError, ValidationError) as e:
        configure_logging()
        logger.error("Failed to start server: %s", e)
        sys.exit(1)

    configure_logging(settings.log_level)
    try:
        asyncio.run(run(settings))
    except Exception as e:
        logger.error("Failed to start server: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
