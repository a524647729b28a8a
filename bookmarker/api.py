"""HTTP client for the bookmark server's REST API.

Ordinary HTTP and network failures never raise: they come back as
``{"status": <code>, "statusText": <text>}`` with ``-1`` standing in for
failures that produced no HTTP status. There are no retries.
"""
import asyncio
import base64
import logging
import time
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import urlencode

import httpx

from bookmarker.config import get_config
from bookmarker.lru import TTLCache
from bookmarker.storage import KeyValueStore

logger = logging.getLogger(__name__)

BOOKMARK_ENDPOINT = "index.php/apps/bookmarks/public/rest/v2/bookmark"
TAG_ENDPOINT = "index.php/apps/bookmarks/public/rest/v2/tag"
FOLDER_ENDPOINT = "index.php/apps/bookmarks/public/rest/v2/folder"


def error_result(status: int, status_text: str) -> Dict[str, Any]:
    """Build the error-shaped result returned for failed calls."""
    return {"status": status, "statusText": status_text}


def is_error_result(result: Any) -> bool:
    """True if ``result`` is an error response from the server or :meth:`ApiClient.call`."""
    if not isinstance(result, dict):
        return False
    if result.get("status") == "error":
        return True
    return "statusText" in result and result.get("status") != "success"


class ApiClient:
    """Authenticated calls against the configured bookmark server."""

    def __init__(
        self,
        store: KeyValueStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the client.

        Args:
            store: Store holding the server URL, credentials and options
            transport: Optional httpx transport (used by tests)
            clock: Monotonic clock for the settings cache
        """
        network = get_config().network
        self._store = store
        self._transport = transport
        self._user_agent = network.user_agent
        self._default_timeout = network.request_timeout
        self._settings = TTLCache(network.settings_cache_ttl, clock=clock)

    def clear_cache(self) -> None:
        """Forget the cached timeout and authorization header."""
        self._settings.invalidate()

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        data: Union[str, Dict[str, Any]] = "",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Perform an API call.

        Args:
            endpoint: Path below the server URL
            method: HTTP method
            data: Query string or dict of parameters. A dict with 'host'
                targets that server instead of the stored one; 'loginflow'
                suppresses the Authorization header.
            cancel_event: Setting this event aborts the request

        Returns:
            Parsed JSON on success, otherwise an error-shaped dict
        """
        if isinstance(data, dict):
            params = {k: v for k, v in data.items() if k not in ("host", "loginflow")}
            query = urlencode(params)
            needs_auth = not data.get("loginflow")
        else:
            query = data
            needs_auth = True

        if isinstance(data, dict) and "host" in data:
            server = data["host"]
            auth_header = await self._authentication() if needs_auth else None
        else:
            server, auth_header = await asyncio.gather(
                self._store.load("credentials", "server"),
                self._authentication() if needs_auth else _none(),
            )

        server = server or ""
        if server and not server.endswith("/"):
            server += "/"

        headers = {
            "OCS-APIREQUEST": "true",
            "User-Agent": self._user_agent,
            "Accept": "application/json",
        }
        if auth_header:
            headers["Authorization"] = auth_header

        url = f"{server}{endpoint}?{query}" if query else f"{server}{endpoint}"
        timeout = await self._network_timeout()

        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                headers=headers,
                transport=self._transport,
            ) as client:
                # one deadline for the whole exchange, body included
                request = asyncio.ensure_future(
                    asyncio.wait_for(client.request(method, url), timeout)
                )

                if cancel_event is not None:
                    waiter = asyncio.ensure_future(cancel_event.wait())
                    done, _ = await asyncio.wait(
                        {request, waiter}, return_when=asyncio.FIRST_COMPLETED
                    )
                    waiter.cancel()
                    if request not in done:
                        request.cancel()
                        await asyncio.wait({request})
                        logger.debug("Request to %s aborted", endpoint)
                        return error_result(-1, "Request aborted")

                response = await request

                if response.is_success:
                    return response.json()

                return error_result(response.status_code, response.reason_phrase)

        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.warning("Timeout calling %s: %s", endpoint, e)
            return error_result(-1, f"Request timed out after {timeout}s")
        except httpx.HTTPError as e:
            logger.warning("HTTP error calling %s: %s", endpoint, e)
            return error_result(-1, str(e) or e.__class__.__name__)
        except ValueError as e:
            logger.warning("Invalid JSON from %s: %s", endpoint, e)
            return error_result(-1, "Invalid JSON response")

    async def _network_timeout(self) -> float:
        hit, timeout = self._settings.lookup("timeout")
        if hit:
            return timeout

        value = await self._store.get_option("input_networkTimeout")
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            timeout = 0.0
        # False, 0 and garbage all mean "not configured"
        if isinstance(value, bool) or timeout <= 0:
            timeout = self._default_timeout

        self._settings.put("timeout", timeout)
        return timeout

    async def _authentication(self) -> Optional[str]:
        hit, header = self._settings.lookup("auth")
        if hit:
            return header

        credentials = await self._store.load("credentials", "loginname", "appPassword")
        loginname = credentials.get("loginname")
        password = credentials.get("appPassword")

        header = None
        if loginname is not None and password is not None:
            token = base64.b64encode(f"{loginname}:{password}".encode()).decode()
            header = f"Basic {token}"

        self._settings.put("auth", header)
        return header


async def _none() -> None:
    return None
