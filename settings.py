"""Runtime configuration loaded from the environment (and an optional .env file)."""

import logging
import os
import sys
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from errors import ErrorCode, ObsidianError

DEFAULT_MAX_LENGTH = 50 * 1024 * 1024

# env var -> settings field
ENV_FIELDS = {
    "OBSIDIAN_API_KEY": "api_key",
    "VERIFY_SSL": "verify_ssl",
    "OBSIDIAN_PROTOCOL": "protocol",
    "OBSIDIAN_HOST": "host",
    "OBSIDIAN_PORT": "port",
    "REQUEST_TIMEOUT": "request_timeout_ms",
    "MAX_CONTENT_LENGTH": "max_content_length",
    "MAX_BODY_LENGTH": "max_body_length",
    "RATE_LIMIT_WINDOW_MS": "rate_limit_window_ms",
    "RATE_LIMIT_MAX_REQUESTS": "rate_limit_max_requests",
    "MAX_TOKENS": "max_tokens",
    "TOOL_TIMEOUT_MS": "tool_timeout_ms",
    "LOG_LEVEL": "log_level",
}

MISSING_API_KEY_MESSAGE = (
    "Missing API key. To fix this:\n"
    "1. Install the 'Local REST API' plugin in Obsidian\n"
    "2. Enable the plugin in Obsidian Settings\n"
    "3. Copy your API key from Obsidian Settings > Local REST API\n"
    "4. Set the OBSIDIAN_API_KEY environment variable"
)


class Settings(BaseModel):
    """Validated server settings. Values from the environment are strings and get coerced."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    api_key: str = Field(..., min_length=1, description="Local REST API bearer token")
    verify_ssl: bool = Field(default=False, description="Reject self-signed backend certificates")
    protocol: Literal["http", "https"] = "https"
    host: str = "127.0.0.1"
    port: int = Field(default=27124, ge=1, le=65535)
    request_timeout_ms: int = Field(default=5000, gt=0)
    max_content_length: int = Field(default=DEFAULT_MAX_LENGTH, gt=0)
    max_body_length: int = Field(default=DEFAULT_MAX_LENGTH, gt=0)
    rate_limit_window_ms: int = Field(default=15 * 60 * 1000, gt=0)
    rate_limit_max_requests: int = Field(default=200, gt=0)
    max_tokens: int = Field(default=20000, gt=0)
    tool_timeout_ms: int = Field(default=60000, gt=0)
    log_level: str = "INFO"

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables.

    When ``environ`` is omitted, a ``.env`` file in the working directory is
    loaded first (existing variables win) and ``os.environ`` is used.

    Raises:
        ObsidianError: UNAUTHORIZED if OBSIDIAN_API_KEY is missing.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    values = {}
    for env_var, field in ENV_FIELDS.items():
        raw = environ.get(env_var)
        if raw is not None and raw != "":
            values[field] = raw

    if "api_key" not in values:
        raise ObsidianError(MISSING_API_KEY_MESSAGE, ErrorCode.UNAUTHORIZED)
    return Settings(**values)


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout carries the MCP stdio transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
