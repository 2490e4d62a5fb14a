from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketdesk.errors import InvalidRequest
from ticketdesk.providers.base import InboundEvent, STATUS_CODES
from ticketdesk.services import storage
from ticketdesk.services.lifecycle import stamp_first_response, refresh_sla
from ticketdesk.storage.models import (
    Message, Ticket, MessageDirection, MessageStatus, MessageType,
)
from ticketdesk.util.logger import get_logger

log = get_logger("ingestion")

# delivery status only moves forward; failed may only replace sent
_RANK = {MessageStatus.sent: 0, MessageStatus.delivered: 1, MessageStatus.read: 2}


def ingest_inbound(db: Session, event: InboundEvent, ticket: Ticket) -> Tuple[Message, bool]:
    """
    Persist one inbound provider message on the ticket, exactly once per provider id.
    Returns (message, created); a redelivered event returns the stored message.
    """
    existing = storage.get_message_by_provider_id(db, event.provider_message_id)
    if existing:
        log.info("inbound_duplicate", {"provider_message_id": event.provider_message_id, "message_id": existing.id})
        return existing, False

    body = event.body
    msg = Message(
        ticket_id=ticket.id,
        direction=MessageDirection.inbound,
        type=body.kind,
        content=body.content(),
        media_url=body.media_url,
        media_metadata=body.media_metadata(),
        sender_id=ticket.contact_id,
        provider_message_id=event.provider_message_id,
        status=MessageStatus.delivered,
        is_internal=False,
    )
    db.add(msg)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = storage.get_message_by_provider_id(db, event.provider_message_id)
        if existing is None:
            raise
        return existing, False

    db.refresh(msg)
    log.info("inbound_ingested", {"message_id": msg.id, "ticket_id": ticket.id, "type": msg.type.value})
    return msg, True


async def ingest_outbound(db: Session, ticket_id: str, author_user_id: str, content: str,
                          type: str = "text", is_internal: bool = False, media_url: Optional[str] = None,
                          dispatcher=None, now: Optional[datetime] = None,
                          instance_key: Optional[str] = None) -> Message:
    """
    Record an agent-authored message, then hand non-internal ones to the dispatcher.
    The stored message is what counts: a failed dispatch is logged, the message keeps
    status "sent" and nothing is raised. Storage failures do propagate.
    """
    now = now or datetime.now()
    if not content or not content.strip():
        raise InvalidRequest("content is required")
    try:
        kind = MessageType(type or "text")
    except ValueError:
        raise InvalidRequest(f"Unknown message type: {type!r}")

    ticket = storage.get_ticket(db, ticket_id)
    msg = Message(
        ticket_id=ticket.id,
        direction=MessageDirection.outbound,
        type=kind,
        content=content,
        media_url=media_url,
        sender_id=author_user_id,
        status=MessageStatus.sent,
        is_internal=bool(is_internal),
        created_at=now,
    )
    db.add(msg)
    if not msg.is_internal:
        stamp_first_response(ticket, now)
        refresh_sla(db, ticket, now)
    db.commit()
    db.refresh(msg)

    if msg.is_internal:
        log.info("internal_note_saved", {"message_id": msg.id, "ticket_id": ticket.id})
        return msg

    if dispatcher is None:
        log.warning("outbound_not_dispatched", {"message_id": msg.id, "reason": "no dispatcher"})
        return msg

    address = ticket.contact.whatsapp_number if ticket.contact else None
    if not address:
        log.warning("outbound_not_dispatched", {"message_id": msg.id, "reason": "ticket has no contact address"})
        return msg

    result = await dispatcher.dispatch(db, address, msg.content, kind, media_url, instance_key=instance_key)
    if result:
        provider_id = getattr(result, "provider_id", None)
        if provider_id:
            # status callbacks are correlated by this id
            msg.provider_message_id = provider_id
            db.commit()
            db.refresh(msg)
        log.info("outbound_dispatched", {"message_id": msg.id, "ticket_id": ticket.id, "provider_id": provider_id})
    else:
        log.warning("outbound_dispatch_failed", {"message_id": msg.id, "ticket_id": ticket.id, "to": address})
    return msg


def apply_delivery_status(db: Session, provider_message_id: str, code) -> Optional[Message]:
    """
    Correlate a provider status callback with the stored message. `code` is a provider
    status code (1/2/3 or a string ack) or a MessageStatus.
    """
    if isinstance(code, MessageStatus):
        target = code
    else:
        target = STATUS_CODES.get(code) if isinstance(code, (int, str)) else None
    if target is None:
        log.warning("status_code_unknown", {"provider_message_id": provider_message_id, "code": code})
        return None
    msg = storage.get_message_by_provider_id(db, provider_message_id)
    if msg is None:
        log.info("status_for_unknown_message", {"provider_message_id": provider_message_id})
        return None

    current = msg.status
    if target == MessageStatus.failed:
        advance = current == MessageStatus.sent
    else:
        advance = current != MessageStatus.failed and _RANK[target] > _RANK[current]
    if not advance:
        return msg

    msg.status = target
    db.commit()
    db.refresh(msg)
    log.info("message_status_updated", {"message_id": msg.id, "status": target.value})
    return msg
