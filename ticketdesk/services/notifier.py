"""
Live push to connected dashboards.

One ConnectionManager per process (kept on app.state). Each connection is tagged with
the authenticated user, their role and at most one ticket they are looking at. Nothing
is persisted or replayed: a client that is not connected misses the event.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ticketdesk import settings
from ticketdesk.util.logger import get_logger

log = get_logger("notifier")

AGENT_ROLES = ("agent", "manager")


@dataclass(eq=False)
class Connection:
    websocket: Any
    user_id: str
    role: str
    ticket_id: Optional[str] = None

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


@dataclass
class ConnectionManager:
    send_timeout: float = field(default_factory=lambda: settings.WS_SEND_TIMEOUT)

    def __post_init__(self):
        self._connections: List[Connection] = []
        self._lock = asyncio.Lock()

    async def register(self, websocket, user_id: str, role: str) -> Connection:
        conn = Connection(websocket=websocket, user_id=str(user_id), role=role)
        async with self._lock:
            self._connections.append(conn)
        log.info("ws_connected", {"user_id": conn.user_id, "role": role, "live": len(self._connections)})
        return conn

    async def disconnect(self, conn: Connection) -> None:
        async with self._lock:
            if conn in self._connections:
                self._connections.remove(conn)
        log.info("ws_disconnected", {"user_id": conn.user_id, "live": len(self._connections)})

    async def join(self, conn: Connection, ticket_id: str) -> None:
        async with self._lock:
            conn.ticket_id = str(ticket_id)

    async def leave(self, conn: Connection) -> None:
        async with self._lock:
            conn.ticket_id = None

    async def snapshot(self) -> List[Connection]:
        async with self._lock:
            return list(self._connections)

    # ---------- fan-out ----------
    async def _send_all(self, targets: List[Connection], message: Dict[str, Any]) -> int:
        async def _one(conn: Connection) -> bool:
            try:
                await asyncio.wait_for(conn.send(message), timeout=self.send_timeout)
                return True
            except Exception as e:
                log.warning("ws_send_failed", {"user_id": conn.user_id, "type": message.get("type"),
                                               "error": repr(e)})
                return False

        if not targets:
            return 0
        results = await asyncio.gather(*(_one(c) for c in targets))
        return sum(1 for ok in results if ok)

    async def broadcast_to_ticket(self, ticket_id: str, message: Dict[str, Any],
                                  exclude_user_id: Optional[str] = None) -> int:
        ticket_id = str(ticket_id)
        targets = [
            c for c in await self.snapshot()
            if c.ticket_id == ticket_id and (exclude_user_id is None or c.user_id != str(exclude_user_id))
        ]
        return await self._send_all(targets, message)

    async def broadcast_to_role(self, role: str, message: Dict[str, Any]) -> int:
        targets = [c for c in await self.snapshot() if c.role == role]
        return await self._send_all(targets, message)

    # ---------- domain events ----------
    async def notify_new_ticket(self, ticket: Dict[str, Any]) -> int:
        message = {"type": "new_ticket", "ticket": ticket}
        sent = 0
        for role in AGENT_ROLES:
            sent += await self.broadcast_to_role(role, message)
        return sent

    async def notify_new_message(self, ticket_id: str, message: Dict[str, Any],
                                 exclude_user_id: Optional[str] = None) -> int:
        return await self.broadcast_to_ticket(
            ticket_id, {"type": "new_message", "ticketId": str(ticket_id), "message": message},
            exclude_user_id=exclude_user_id,
        )

    async def notify_ticket_update(self, ticket_id: str, update: Dict[str, Any]) -> int:
        return await self.broadcast_to_ticket(
            ticket_id, {"type": "ticket_update", "ticketId": str(ticket_id), "update": update},
        )
