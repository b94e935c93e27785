"""Low-level async wrapper for the Obsidian Local REST API."""

import json
import logging
import ssl
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from errors import ErrorCode, ObsidianError, error_code_from_status
from settings import Settings
from validation import validate_file_path

VERSION = "1.0.0"
JSONLOGIC_CONTENT_TYPE = "application/vnd.olrapi.jsonlogic+json"
NOTE_JSON_CONTENT_TYPE = "application/vnd.olrapi.note+json"
MARKDOWN_CONTENT_TYPE = "text/markdown"
PERIODS = ("daily", "weekly", "monthly", "quarterly", "yearly")

logger = logging.getLogger("obsidian_rest_mcp.client")


def ssl_error_message(error: Exception) -> str:
    return (
        "SSL certificate verification failed. You have two options:\n\n"
        "Option 1 - Enable HTTP (not recommended for production):\n"
        "1. Go to Obsidian Settings > Local REST API\n"
        '2. Enable "Enable Non-encrypted (HTTP) Server"\n'
        "3. Set OBSIDIAN_PROTOCOL=http (and OBSIDIAN_PORT=27123)\n\n"
        "Option 2 - Configure HTTPS (recommended):\n"
        "1. Go to Obsidian Settings > Local REST API\n"
        "2. Under 'How to Access', copy the certificate\n"
        "3. Add the certificate to your system's trusted certificates\n"
        "   For development only: set VERIFY_SSL=false\n\n"
        f"Original error: {error}"
    )


def connection_refused_message(host: str, port: int) -> str:
    return (
        "Connection refused. To fix this:\n"
        "1. Ensure Obsidian is running\n"
        "2. Verify the 'Local REST API' plugin is enabled in Obsidian Settings\n"
        f"3. Check that you're using the correct host ({host}) and port ({port})\n"
        "4. Make sure the protocol (http/https) matches the plugin settings"
    )


AUTH_FAILED_MESSAGE = (
    "Authentication failed. To fix this:\n"
    "1. Go to Obsidian Settings > Local REST API\n"
    "2. Copy your API key from the settings\n"
    "3. Update OBSIDIAN_API_KEY with the new key\n"
    "Note: The API key changes when you regenerate certificates"
)


def _is_ssl_failure(error: Exception) -> bool:
    cause = error.__cause__ or error.__context__
    if isinstance(cause, ssl.SSLError):
        return True
    return "CERTIFICATE_VERIFY_FAILED" in str(error)


class ObsidianClient:
    """Thin async client for the Local REST API plugin.

    Every method raises ObsidianError on failure; nothing is retried.

    Args:
        settings: Connection settings (base URL, key, limits).
        transport: Optional httpx transport, used by tests.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        if not settings.verify_ssl:
            logger.warning(
                "SSL verification is disabled. This works for the self-signed certificate of the "
                "Local REST API plugin but is not recommended outside local development."
            )
        self._http = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={
                "Authorization": f"Bearer {settings.api_key}",
                "Accept": "application/json",
                "User-Agent": f"obsidian-rest-mcp/{VERSION}",
            },
            verify=settings.verify_ssl,
            timeout=settings.request_timeout_ms / 1000,
            follow_redirects=True,
            max_redirects=5,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if content is not None and len(content.encode("utf-8")) > self.settings.max_body_length:
            raise ObsidianError(
                f"Request body exceeds {self.settings.max_body_length} bytes",
                ErrorCode.PAYLOAD_TOO_LARGE,
            )
        try:
            response = await self._http.request(method, url, params=params, content=content, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response) from e
        except httpx.TimeoutException as e:
            raise ObsidianError(f"Request to Obsidian timed out: {method} {url}", ErrorCode.TIMEOUT) from e
        except httpx.ConnectError as e:
            if _is_ssl_failure(e):
                raise ObsidianError(ssl_error_message(e), ErrorCode.SSL_ERROR) from e
            raise ObsidianError(
                connection_refused_message(self.settings.host, self.settings.port),
                ErrorCode.CONNECTION_REFUSED,
                {"originalError": str(e)},
            ) from e
        except httpx.HTTPError as e:
            raise ObsidianError(str(e) or type(e).__name__, ErrorCode.INTERNAL_ERROR) from e

        if len(response.content) > self.settings.max_content_length:
            raise ObsidianError(
                f"Response body exceeds {self.settings.max_content_length} bytes",
                ErrorCode.PAYLOAD_TOO_LARGE,
            )
        return response

    def _status_error(self, response: httpx.Response) -> ObsidianError:
        if response.status_code == 401:
            return ObsidianError(AUTH_FAILED_MESSAGE, ErrorCode.UNAUTHORIZED)
        body: Any = None
        try:
            body = response.json()
        except ValueError:
            pass
        if isinstance(body, dict):
            code = body.get("errorCode") or error_code_from_status(response.status_code)
            message = body.get("message") or f"HTTP {response.status_code} {response.reason_phrase}"
            return ObsidianError(message, int(code), body)
        return ObsidianError(
            f"HTTP {response.status_code} {response.reason_phrase}",
            error_code_from_status(response.status_code),
        )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            raise ObsidianError("Obsidian returned no content", ErrorCode.SUCCESS_NO_CONTENT)
        try:
            return response.json()
        except ValueError as e:
            raise ObsidianError(f"Invalid JSON from Obsidian: {e}", ErrorCode.INTERNAL_ERROR) from e

    @staticmethod
    def _vault_url(path: str, directory: bool = False) -> str:
        url = f"/vault/{quote(path.strip('/') if directory else path, safe='/')}"
        return url + "/" if directory else url

    @staticmethod
    def _require_content(content: str) -> None:
        if not content or not isinstance(content, str):
            raise ObsidianError("Invalid content: Content must be a non-empty string", ErrorCode.BAD_REQUEST)

    @staticmethod
    def _require_period(period: str) -> None:
        if period not in PERIODS:
            raise ObsidianError(
                f"Invalid period '{period}'. Expected one of: {', '.join(PERIODS)}",
                ErrorCode.BAD_REQUEST,
            )

    # ------------------------------------------------------------------
    # Vault files
    # ------------------------------------------------------------------

    async def list_files_in_vault(self) -> List[Any]:
        logger.debug("Listing all files in vault")
        response = await self._request("GET", "/vault/")
        return self._json(response).get("files", [])

    async def list_files_in_dir(self, dirpath: str) -> List[Any]:
        validate_file_path(dirpath)
        logger.debug("Listing files in directory: %s", dirpath)
        response = await self._request("GET", self._vault_url(dirpath, directory=True))
        return self._json(response).get("files", [])

    async def get_file_contents(self, filepath: str) -> str:
        validate_file_path(filepath)
        logger.debug("Getting contents of file: %s", filepath)
        response = await self._request("GET", self._vault_url(filepath))
        return response.text

    async def append_content(self, filepath: str, content: str) -> None:
        validate_file_path(filepath)
        self._require_content(content)
        logger.debug("Appending content to file: %s", filepath)
        await self._request(
            "POST", self._vault_url(filepath), content=content,
            headers={"Content-Type": MARKDOWN_CONTENT_TYPE},
        )

    async def update_content(self, filepath: str, content: str) -> None:
        validate_file_path(filepath)
        self._require_content(content)
        logger.debug("Updating content of file: %s", filepath)
        await self._request(
            "PUT", self._vault_url(filepath), content=content,
            headers={"Content-Type": MARKDOWN_CONTENT_TYPE},
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str, context_length: int = 100) -> List[Dict[str, Any]]:
        logger.debug("Searching for %r with context length %d", query, context_length)
        response = await self._request(
            "POST", "/search/simple/", params={"query": query, "contextLength": context_length}
        )
        return self._json(response)

    async def search_json(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a JsonLogic query (glob, var, and, or, in, not, ...) against vault files."""
        logger.debug("Executing JSON search with query: %s", json.dumps(query))
        response = await self._request(
            "POST", "/search/", content=json.dumps(query),
            headers={"Content-Type": JSONLOGIC_CONTENT_TYPE, "Accept": NOTE_JSON_CONTENT_TYPE},
        )
        return self._json(response)

    # ------------------------------------------------------------------
    # Server, active note, periodic notes
    # ------------------------------------------------------------------

    async def get_status(self) -> Dict[str, Any]:
        logger.debug("Getting server status")
        return self._json(await self._request("GET", "/"))

    async def get_active_file(self) -> Dict[str, Any]:
        logger.debug("Getting active file")
        response = await self._request("GET", "/active/", headers={"Accept": NOTE_JSON_CONTENT_TYPE})
        return self._json(response)

    async def update_active_file(self, content: str) -> None:
        self._require_content(content)
        logger.debug("Updating active file")
        await self._request("PUT", "/active/", content=content, headers={"Content-Type": MARKDOWN_CONTENT_TYPE})

    async def get_periodic_note(self, period: str) -> Dict[str, Any]:
        self._require_period(period)
        logger.debug("Getting %s periodic note", period)
        response = await self._request(
            "GET", f"/periodic/{period}/", headers={"Accept": NOTE_JSON_CONTENT_TYPE}
        )
        return self._json(response)

    async def update_periodic_note(self, period: str, content: str) -> None:
        self._require_period(period)
        self._require_content(content)
        logger.debug("Updating %s periodic note", period)
        await self._request(
            "PUT", f"/periodic/{period}/", content=content,
            headers={"Content-Type": MARKDOWN_CONTENT_TYPE},
        )

    async def aclose(self) -> None:
        await self._http.aclose()
