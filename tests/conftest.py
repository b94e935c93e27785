"""Shared fixtures for the test suite."""

from typing import Any, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from rest_client import ObsidianClient
from settings import Settings
from tokens import TokenBudgeter


class CharEncoding:
    """One token per character; stands in for a tiktoken encoding."""

    def encode(self, text: str, disallowed_special: Any = "all") -> List[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: List[int]) -> str:
        return "".join(chr(t) for t in tokens)


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", protocol="http", port=27123)


@pytest.fixture
def budgeter() -> TokenBudgeter:
    return TokenBudgeter(max_tokens=20000, encoding=CharEncoding())


@pytest.fixture
def mock_client() -> MagicMock:
    """ObsidianClient double whose async methods are AsyncMocks."""
    client = MagicMock(spec=ObsidianClient)
    for name in (
        "list_files_in_vault",
        "list_files_in_dir",
        "get_file_contents",
        "append_content",
        "update_content",
        "search",
        "search_json",
        "aclose",
    ):
        setattr(client, name, AsyncMock())
    return client


@pytest.fixture
def encoding() -> CharEncoding:
    return CharEncoding()


@pytest.fixture
def byte_encoding() -> Any:
    """Real tiktoken encoding, one token per byte, with ``<|endoftext|>`` registered."""
    import tiktoken

    return tiktoken.Encoding(
        name="test_bytes",
        pat_str=r"[\s\S]",
        mergeable_ranks={bytes([i]): i for i in range(256)},
        special_tokens={"<|endoftext|>": 256},
    )
