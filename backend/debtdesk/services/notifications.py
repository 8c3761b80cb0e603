"""
Notification Dispatcher — best-effort push of delegation lifecycle events.

Two pieces, both constructed explicitly by the application and passed by
handle (``app.state``):

- ``ConnectionManager``: the open WebSocket connections of each employee.
  One employee may hold several (one per browser session).
- ``NotificationDispatcher``: an in-process publish/subscribe registry keyed
  by event type. The connection push is just its default subscriber.

Delivery is at-least-once to whatever is connected at publish time and is
silently dropped otherwise; there is no offline queue. Clients treat an event
as a hint to re-fetch their cases and delegations, never as data to apply.
Publishing never raises: a failing subscriber is logged and skipped, so a
notification problem can never undo or block the state change behind it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from debtdesk.middleware.metrics import notifications_total, push_connections_open

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    DELEGATION_EXPIRED = "DELEGATION_EXPIRED"
    DELEGATION_REVOKED = "DELEGATION_REVOKED"


# Clients send the user back to their own case list on either event.
MY_CASES_ACTION = {"type": "REDIRECT_TO_MYCASES", "url": "/mycases"}


@dataclass(frozen=True)
class DelegationEvent:
    type: EventType
    delegatee: str
    case_ids: tuple[str, ...]
    occurred_at: datetime
    actor: str | None = None

    @property
    def case_count(self) -> int:
        return len(self.case_ids)

    def to_message(self) -> dict[str, Any]:
        """Wire shape pushed to the client."""
        stamp = self.occurred_at.isoformat()
        data: dict[str, Any] = {"caseIds": list(self.case_ids)}
        if len(self.case_ids) == 1:
            data["caseId"] = self.case_ids[0]
        if self.type == EventType.DELEGATION_EXPIRED:
            title = "Ủy quyền đã hết hạn"
            text = f"{self.case_count} hồ sơ ủy quyền của bạn đã hết hạn và không còn quyền truy cập"
            data["expiredCaseCount"] = self.case_count
            data["expiredAt"] = stamp
        else:
            title = "Ủy quyền đã bị thu hồi"
            text = f"{self.case_count} hồ sơ ủy quyền của bạn đã bị thu hồi và không còn quyền truy cập"
            data["revokedCaseCount"] = self.case_count
            data["revokedAt"] = stamp
            data["revokedBy"] = self.actor
        return {
            "type": self.type.value,
            "title": title,
            "message": text,
            "data": data,
            "timestamp": stamp,
            "action": dict(MY_CASES_ACTION),
        }


class PushConnection(Protocol):
    async def send_json(self, data: Any) -> None: ...


EventHandler = Callable[[DelegationEvent], Awaitable[Any]]


class ConnectionManager:
    """Open push connections per employee code."""

    def __init__(self) -> None:
        self._connections: defaultdict[str, set[PushConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, employee_code: str, conn: PushConnection) -> None:
        async with self._lock:
            conns = self._connections[employee_code]
            if conn not in conns:
                conns.add(conn)
                push_connections_open.inc()
        logger.info("Push connection opened for %s (%d open)",
                    employee_code, len(self._connections[employee_code]))

    async def unregister(self, employee_code: str, conn: PushConnection) -> None:
        async with self._lock:
            conns = self._connections.get(employee_code)
            if conns is None or conn not in conns:
                return
            conns.discard(conn)
            push_connections_open.dec()
            if not conns:
                del self._connections[employee_code]
        logger.info("Push connection closed for %s", employee_code)

    def connection_count(self, employee_code: str | None = None) -> int:
        if employee_code is not None:
            return len(self._connections.get(employee_code, ()))
        return sum(len(c) for c in self._connections.values())

    async def send_to(self, employee_code: str, message: dict[str, Any]) -> int:
        """
        Send ``message`` to every open connection of ``employee_code``.

        Returns the number of connections that accepted it. Connections that
        fail are dropped from the registry.
        """
        async with self._lock:
            targets = list(self._connections.get(employee_code, ()))
        if not targets:
            return 0

        delivered = 0
        for conn in targets:
            try:
                await conn.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping dead push connection for %s: %s", employee_code, exc)
                await self.unregister(employee_code, conn)
        return delivered

    async def close_all(self) -> None:
        async with self._lock:
            push_connections_open.dec(self.connection_count())
            self._connections.clear()


class NotificationDispatcher:
    """In-process pub/sub registry for delegation lifecycle events."""

    def __init__(self, connections: ConnectionManager | None = None) -> None:
        self._handlers: defaultdict[EventType, list[EventHandler]] = defaultdict(list)
        self.connections = connections
        if connections is not None:
            for event_type in EventType:
                self.subscribe(event_type, self._push_to_delegatee)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event: DelegationEvent) -> int:
        """
        Run every subscriber of ``event.type``.

        Returns how many subscribers completed without raising. Never raises.
        """
        completed = 0
        for handler in list(self._handlers.get(event.type, ())):
            try:
                await handler(event)
                completed += 1
            except Exception as exc:
                logger.error(
                    "Notification handler failed for %s -> %s: %s",
                    event.type.value, event.delegatee, exc, exc_info=True,
                )
        return completed

    async def _push_to_delegatee(self, event: DelegationEvent) -> int:
        delivered = await self.connections.send_to(event.delegatee, event.to_message())
        outcome = "sent" if delivered else "dropped"
        notifications_total.labels(type=event.type.value, outcome=outcome).inc()
        if delivered:
            logger.info("Sent %s to %s (%d cases, %d connections)",
                        event.type.value, event.delegatee, event.case_count, delivered)
        else:
            logger.debug("No open connection for %s; %s dropped", event.delegatee, event.type.value)
        return delivered

