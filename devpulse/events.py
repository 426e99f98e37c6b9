import asyncio
import json
from typing import Any, List, Optional, Set

from loguru import logger
from starlette.websockets import WebSocketState

from .config import settings


def _serialize(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _is_open(connection: Any) -> bool:
    return (
        getattr(connection, "client_state", None) == WebSocketState.CONNECTED
        and getattr(connection, "application_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
    )


class ConnectionRegistry:
    """
    Live set of observer connections with fan-out broadcast.

    Membership changes and the snapshot taken by ``broadcast`` share one lock,
    so connections arriving or leaving mid-broadcast never corrupt the set.
    The lock is never held across an await, so ``dispatch`` can take its
    snapshot synchronously.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self._connections: Set[Any] = set()
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self._send_timeout = settings.broadcast_send_timeout if send_timeout is None else send_timeout

    @property
    def count(self) -> int:
        return len(self._connections)

    async def register(self, connection: Any) -> None:
        async with self._lock:
            self._connections.add(connection)
            total = len(self._connections)
        logger.info(f"Observer connected (total: {total})")

    async def unregister(self, connection: Any) -> None:
        async with self._lock:
            if connection not in self._connections:
                return
            self._connections.discard(connection)
            total = len(self._connections)
        logger.info(f"Observer disconnected (total: {total})")

    def _open_connections(self) -> List[Any]:
        return [conn for conn in self._connections if _is_open(conn)]

    async def broadcast(self, payload: Any) -> int:
        """Send ``payload`` to every open connection. Returns the number of successful sends.

        Non-open connections are skipped but stay registered; only an explicit
        ``unregister`` removes them. Send failures are logged per connection
        and never raised.
        """
        async with self._lock:
            targets = self._open_connections()
        return await self._fan_out(_serialize(payload), targets)

    async def _fan_out(self, message: str, targets: List[Any]) -> int:
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._send(conn, message) for conn in targets),
            return_exceptions=True,
        )
        delivered = 0
        for result in results:
            if result is True:
                delivered += 1
            elif isinstance(result, BaseException):
                logger.warning(f"Broadcast send raised unexpectedly: {result!r}")
        return delivered

    async def _send(self, connection: Any, message: str) -> bool:
        try:
            await asyncio.wait_for(connection.send_text(message), timeout=self._send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Observer send timed out after {self._send_timeout}s; skipping")
        except Exception as exc:
            logger.warning(f"Failed to send to observer: {exc}")
        return False

    def dispatch(self, payload: Any) -> asyncio.Task:
        """Schedule a broadcast without waiting for it to finish.

        Recipients are fixed when this is called: connections registered
        afterwards do not receive this payload.
        """
        # No await between the snapshot and create_task, so membership cannot change in between
        targets = self._open_connections()
        task = asyncio.create_task(self._fan_out(_serialize(payload), targets))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled broadcast to complete."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


connection_registry = ConnectionRegistry()
