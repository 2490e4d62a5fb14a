# ticketdesk/services/inbound.py
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from ticketdesk import schemas
from ticketdesk.providers.base import parse_upsert, parse_status
from ticketdesk.services import storage
from ticketdesk.services.conversation import resolve_conversation
from ticketdesk.services.ingestion import ingest_inbound, apply_delivery_status
from ticketdesk.util.logger import get_logger

log = get_logger("inbound")

UPSERT_EVENTS = {"message.upsert", "messages.upsert"}
STATUS_EVENTS = {"message.status", "messages.update"}


def _normalize_event(name: Optional[str]) -> str:
    # some servers send MESSAGES_UPSERT
    return (name or "").strip().lower().replace("_", ".")


async def handle_upsert(db: Session, data: Dict[str, Any], instance_key: str,
                        notifier=None, now: Optional[datetime] = None) -> Dict[str, Any]:
    event = parse_upsert(data, instance_key)
    if event is None:
        log.info("upsert_ignored", {"instance": instance_key, "reason": "no sender/id or group"})
        return {"handled": False}
    if event.from_me:
        log.info("upsert_ignored", {"instance": instance_key, "reason": "fromMe",
                                    "provider_message_id": event.provider_message_id})
        return {"handled": False}

    existing = storage.get_message_by_provider_id(db, event.provider_message_id)
    if existing is not None:
        # redelivery: no contact, ticket or notification side effects
        log.info("upsert_duplicate", {"instance": instance_key, "provider_message_id": event.provider_message_id,
                                      "message_id": existing.id})
        return {"handled": True, "ticket_id": existing.ticket_id, "message_id": existing.id,
                "created_ticket": False, "created_message": False}

    res = resolve_conversation(db, event, now=now)
    msg, created = ingest_inbound(db, event, res.ticket)

    if notifier is not None:
        if res.created_ticket:
            await notifier.notify_new_ticket(schemas.dump(schemas.TicketOut, res.ticket))
        if created:
            await notifier.notify_new_message(res.ticket.id, schemas.dump(schemas.MessageOut, msg))

    return {
        "handled": True,
        "ticket_id": res.ticket.id,
        "message_id": msg.id,
        "created_ticket": res.created_ticket,
        "created_message": created,
    }


def handle_status(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    event = parse_status(data)
    if event is None:
        log.info("status_ignored", {"reason": "no message id"})
        return {"handled": False}
    msg = apply_delivery_status(db, event.provider_message_id, event.code)
    return {"handled": msg is not None, "message_id": msg.id if msg else None}


async def process_webhook(db: Session, payload: Dict[str, Any], instance_key: str,
                          notifier=None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    One Evolution webhook delivery:
      {"event": "message.upsert", "instance": "...", "data": {...}}
    Unknown event types are logged and ignored. Errors propagate; the router decides
    what to answer the provider.
    """
    name = _normalize_event(payload.get("event"))
    data = payload.get("data") or {}
    if isinstance(data, list):
        # batched deliveries carry a list of items
        results = []
        for item in data:
            results.append(await process_webhook(db, {"event": name, "data": item}, instance_key, notifier, now))
        return {"handled": any(r.get("handled") for r in results), "items": results}

    if name in UPSERT_EVENTS:
        return await handle_upsert(db, data, instance_key, notifier, now)
    if name in STATUS_EVENTS:
        return handle_status(db, data)

    log.info("webhook_event_ignored", {"instance": instance_key, "event": payload.get("event")})
    return {"handled": False}
