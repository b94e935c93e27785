"""Tool call pipeline: resolve, rate limit, validate, run with a timeout, budget the response."""

import asyncio
import logging
import time
import traceback
from typing import Any, Dict, List, Optional, Sequence

from mcp.types import TextContent, Tool

from errors import ErrorCode, ObsidianError
from rate_limit import RateLimiter
from tokens import TokenBudgeter
from tool_handlers import ToolHandler, create_tool_handler_map
from validation import mask_sensitive, validate_arguments

DEFAULT_TOOL_TIMEOUT_MS = 60000
NO_CONTENT_MESSAGE = "Operation completed successfully"

logger = logging.getLogger("obsidian_rest_mcp.dispatch")


class ToolDispatcher:
    """Runs a tool call through every pipeline stage in order.

    Unknown tools, rate limit denials and invalid arguments are rejected
    before the handler (and so the backend) is touched.

    Args:
        handlers: Registered tool handlers.
        rate_limiter: Per-tool fixed-window limiter.
        budgeter: Token budgeter applied to every text block.
        timeout_ms: Maximum handler run time; the handler is cancelled on expiry.
    """

    def __init__(
        self,
        handlers: Sequence[ToolHandler],
        rate_limiter: RateLimiter,
        budgeter: TokenBudgeter,
        timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS,
    ):
        self.handlers = create_tool_handler_map(handlers)
        self.rate_limiter = rate_limiter
        self.budgeter = budgeter
        self.timeout_ms = timeout_ms

    def list_tools(self) -> List[Tool]:
        return [handler.tool() for handler in self.handlers.values()]

    async def dispatch(self, name: str, args: Optional[Dict[str, Any]]) -> List[TextContent]:
        logger.debug("Received tool call: %s", name)
        started = time.perf_counter()

        handler = self.handlers.get(name)
        if handler is None:
            logger.warning("Unknown tool requested: %s", name)
            raise ObsidianError(f"Unknown tool: {name}", ErrorCode.NOT_FOUND)

        self.rate_limiter.enforce(name)
        params = validate_arguments(handler.input_model, args)
        logger.info("Executing tool %s with args: %s", name, mask_sensitive(args or {}))

        try:
            contents = await self._run(handler, params)
        except ObsidianError as e:
            logger.error(
                "Tool %s failed after %.0fms: %s", name, (time.perf_counter() - started) * 1000, e
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("Tool %s completed in %.0fms", name, elapsed_ms)
        return [self._budget(name, content) for content in contents]

    async def _run(self, handler: ToolHandler, params: Any) -> List[TextContent]:
        try:
            payload = await asyncio.wait_for(handler.run(params), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise ObsidianError(
                f"Tool '{handler.name}' timed out after {self.timeout_ms}ms", ErrorCode.TIMEOUT
            ) from None
        except ObsidianError as e:
            if e.code == ErrorCode.SUCCESS_NO_CONTENT:
                return [TextContent(type="text", text=NO_CONTENT_MESSAGE)]
            raise
        except Exception as e:
            raise ObsidianError(
                f"Tool '{handler.name}' execution failed: {e}",
                ErrorCode.INTERNAL_ERROR,
                {"originalError": repr(e), "stack": traceback.format_exc()},
            ) from e
        return handler.create_response(payload)

    def _budget(self, name: str, content: TextContent) -> TextContent:
        truncated = self.budgeter.truncate(content.text)
        if truncated == content.text:
            return content
        logger.debug(
            "[%s] Response truncated: original tokens=%d, truncated tokens=%d",
            name,
            self.budgeter.count_tokens(content.text),
            self.budgeter.count_tokens(truncated),
        )
        return TextContent(type="text", text=truncated)
