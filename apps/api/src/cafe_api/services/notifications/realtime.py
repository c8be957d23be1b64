"""Real-time push channel implementations for notification fan-out."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Set
from uuid import UUID

from loguru import logger


class RealtimeChannel(Protocol):
    """Fire-and-forget push primitive; may no-op when the user is offline."""

    async def push_to_user(self, user_id: UUID, payload: dict[str, Any]) -> int:
        ...


class JsonConnection(Protocol):
    """Subset of ``starlette.websockets.WebSocket`` used for pushes."""

    async def send_json(self, data: Any, mode: str = "text") -> None:
        ...


class ConnectionRegistry:
    """Tracks live connections per user between connect and disconnect."""

    def __init__(self) -> None:
        self._connections: Dict[str, Set[JsonConnection]] = defaultdict(set)

    async def register(self, user_id: UUID, connection: JsonConnection) -> None:
        self._connections[str(user_id)].add(connection)
        logger.debug("Realtime connection registered", user_id=str(user_id))

    async def deregister(self, user_id: UUID, connection: JsonConnection) -> None:
        bucket = self._connections.get(str(user_id))
        if bucket is None:
            return
        bucket.discard(connection)
        if not bucket:
            del self._connections[str(user_id)]
        logger.debug("Realtime connection deregistered", user_id=str(user_id))

    def connection_count(self, user_id: UUID | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(str(user_id), ()))
        return sum(len(bucket) for bucket in self._connections.values())

    async def push_to_user(self, user_id: UUID, payload: dict[str, Any]) -> int:
        """Send ``payload`` to every live connection of ``user_id``; returns deliveries."""

        targets = list(self._connections.get(str(user_id), ()))
        if not targets:
            return 0

        delivered = 0
        stale: list[JsonConnection] = []
        for connection in targets:
            try:
                await connection.send_json({"event": "notification", "data": payload})
            except Exception as exc:  # noqa: BLE001 - any transport failure drops the socket
                logger.warning(
                    "Realtime push failed; dropping connection",
                    user_id=str(user_id),
                    error=str(exc),
                )
                stale.append(connection)
            else:
                delivered += 1

        for connection in stale:
            await self.deregister(user_id, connection)
        return delivered


@dataclass
class InMemoryRealtimeChannel:
    """Records pushes for inspection in tests."""

    pushed: List[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def push_to_user(self, user_id: UUID, payload: dict[str, Any]) -> int:
        self.pushed.append((str(user_id), payload))
        return 1


_REGISTRY = ConnectionRegistry()


def get_connection_registry() -> ConnectionRegistry:
    return _REGISTRY


__all__ = [
    "ConnectionRegistry",
    "InMemoryRealtimeChannel",
    "JsonConnection",
    "RealtimeChannel",
    "get_connection_registry",
]
