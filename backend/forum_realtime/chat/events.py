"""Inbound event dispatch with acknowledgements.

Client frames look like ``{"event": "...", "data": ..., "ackId": ...}``.
Handlers return an ack payload (or None for plain success) and signal
failure by raising ``ChatError``. When a frame carries an ``ackId`` the
outcome is always sent back; frames without one are fire-and-forget and
failures are only logged.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import ValidationError

from .errors import ChatError, InvalidPayload
from .manager import Connection, ConnectionManager
from .schemas import ChatEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[Optional[dict]]]


class EventDispatcher:
    """Routes event names to handler coroutines."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections
        self._handlers: Dict[str, Handler] = {}

    def on(self, event: Union[ChatEvent, str], handler: Handler) -> None:
        name = event.value if isinstance(event, ChatEvent) else event
        self._handlers[name] = handler

    @property
    def events(self) -> list:
        return sorted(self._handlers)

    async def dispatch(self, connection: Connection, frame: dict) -> dict:
        """Run the handler for one frame and send the ack if requested.

        Returns:
            The ack payload (also when no ack was requested).
        """
        event = frame.get("event")
        data = frame.get("data")
        ack_id = frame.get("ackId")

        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            logger.warning(f"[Events] Unknown event {event!r} from {connection.id}")
            result = {"success": False, "error": "unknown-event"}
        else:
            result = await self._run(handler, connection, event, data)

        if ack_id is not None:
            await self._connections.send_ack(connection, ack_id, result)
        return result

    async def _run(self, handler: Handler, connection: Connection, event: str, data: Any) -> dict:
        try:
            result = await handler(connection, data)
        except ValidationError as exc:
            logger.warning(f"[Events] Invalid payload for {event}: {exc.errors()}")
            return InvalidPayload().to_ack()
        except ChatError as exc:
            logger.info(f"[Events] {event} rejected for {connection.id}: {exc.code}")
            return exc.to_ack()
        except Exception:
            logger.exception(f"[Events] {event} failed for {connection.id}")
            return {"success": False, "error": "server-error"}
        return result if result is not None else {"success": True}
