"""User notifications for save results and cache refreshes."""
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from bookmarker.api import is_error_result
from bookmarker.storage import KeyValueStore

logger = logging.getLogger(__name__)

TITLE = "Bookmarker"

Sink = Callable[["Notification"], Union[None, Awaitable[None]]]


@dataclass
class Notification:
    """A message to be shown to the user."""
    kind: str  # 'error', 'success' or 'cache_refreshed'
    title: str
    message: str
    require_interaction: bool = False


def log_sink(notification: Notification) -> None:
    """Default sink: write notifications to the log."""
    level = logging.ERROR if notification.kind == "error" else logging.INFO
    logger.log(level, "%s: %s", notification.title, notification.message)


def _error_message(response: Dict[str, Any]) -> str:
    status = response.get("status")
    text = response.get("statusText") or "unknown error"
    if isinstance(status, int) and not isinstance(status, bool):
        return f"Error {status}: {text}"
    return f"Error: {text}"


class Notifier:
    """Routes notifications to a sink, honouring the success-message option."""

    def __init__(self, store: KeyValueStore, sink: Optional[Sink] = None):
        self._store = store
        self._sink = sink or log_sink

    async def notify_user(self, response: Any) -> Optional[Notification]:
        """Tell the user how saving a bookmark went.

        Error responses are always shown and require interaction; success
        messages can be switched off with ``cbx_successMessage``.

        Returns:
            The notification that was sent, or None if suppressed
        """
        if is_error_result(response):
            notification = Notification(
                kind="error",
                title=TITLE,
                message=_error_message(response),
                require_interaction=True,
            )
        else:
            if not await self._store.get_option("cbx_successMessage"):
                return None
            notification = Notification(
                kind="success",
                title=TITLE,
                message="Bookmark successfully saved!",
            )

        await self._deliver(notification)
        return notification

    async def cache_refreshed(self) -> Notification:
        """Tell the user that tags and folders were reloaded from the server."""
        notification = Notification(
            kind="cache_refreshed",
            title=TITLE,
            message="Cache refreshed",
        )
        await self._deliver(notification)
        return notification

    async def _deliver(self, notification: Notification) -> None:
        try:
            result = self._sink(notification)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Failed to deliver %s notification: %s", notification.kind, e)
