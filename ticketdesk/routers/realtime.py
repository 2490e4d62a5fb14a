# ticketdesk/routers/realtime.py
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ticketdesk.auth import decode_token, InvalidToken
from ticketdesk.util.logger import get_logger

log = get_logger("realtime")
router = APIRouter()

POLICY_VIOLATION = 1008


@router.websocket("/ws")
async def ws(websocket: WebSocket):
    """
    client -> server: join_ticket {ticketId}, leave_ticket, typing {ticketId, isTyping}
    server -> client: connection, new_ticket, new_message, ticket_update, typing
    """
    try:
        user = decode_token(websocket.query_params.get("token") or "")
    except InvalidToken as e:
        log.warning("ws_rejected", {"reason": str(e)})
        await websocket.close(code=POLICY_VIOLATION)
        return

    manager = websocket.app.state.notifier
    await websocket.accept()
    conn = await manager.register(websocket, user["user_id"], user["role"])
    try:
        await websocket.send_json({"type": "connection", "status": "connected", "userId": conn.user_id})
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                log.warning("ws_bad_json", {"user_id": conn.user_id})
                continue
            if not isinstance(msg, dict):
                log.warning("ws_bad_message", {"user_id": conn.user_id})
                continue

            kind = msg.get("type")
            if kind == "join_ticket" and msg.get("ticketId"):
                await manager.join(conn, msg["ticketId"])
            elif kind == "leave_ticket":
                await manager.leave(conn)
            elif kind == "typing":
                ticket_id = msg.get("ticketId") or conn.ticket_id
                if not ticket_id:
                    continue
                await manager.broadcast_to_ticket(ticket_id, {
                    "type": "typing",
                    "ticketId": str(ticket_id),
                    "userId": conn.user_id,
                    "isTyping": bool(msg.get("isTyping", True)),
                }, exclude_user_id=conn.user_id)
            else:
                log.info("ws_unknown_message", {"user_id": conn.user_id, "type": kind})
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(conn)
