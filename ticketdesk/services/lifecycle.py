"""
Ticket state machine.

By default any status can be set from any status, as agents have always been able to
do. With STRICT_STATUS_TRANSITIONS=1 the ALLOWED table is enforced and a disallowed
change raises InvalidTransition. Lifecycle timestamps are stamped once and never
overwritten; sla_breached is derived here and never cleared.
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple, Dict, Any

from sqlalchemy.orm import Session

from ticketdesk import settings
from ticketdesk.errors import InvalidRequest, InvalidTransition, NotFound
from ticketdesk.services import storage
from ticketdesk.services.numbering import insert_numbered
from ticketdesk.storage.models import Ticket, TicketStatus, TicketPriority, SlaPolicy
from ticketdesk.util.logger import get_logger

log = get_logger("lifecycle")

S = TicketStatus

ALLOWED = {
    S.open: {S.in_progress, S.pending_customer, S.pending_third_party, S.resolved, S.cancelled},
    S.in_progress: {S.pending_customer, S.pending_third_party, S.resolved, S.cancelled},
    S.pending_customer: {S.in_progress, S.pending_third_party, S.resolved, S.cancelled},
    S.pending_third_party: {S.in_progress, S.pending_customer, S.resolved, S.cancelled},
    S.resolved: {S.closed, S.in_progress},
    S.closed: set(),
    S.cancelled: set(),
}

UPDATABLE = {
    "title", "description", "status", "priority", "assigned_agent_id",
    "team_id", "category_id", "sla_policy_id", "metadata",
}

CREATABLE = UPDATABLE | {"customer_id", "contact_id", "channel"}


def _as_status(value) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError:
        raise InvalidRequest(f"Unknown ticket status: {value!r}")


def _as_priority(value) -> TicketPriority:
    try:
        return TicketPriority(value)
    except ValueError:
        raise InvalidRequest(f"Unknown ticket priority: {value!r}")


def check_transition(current: TicketStatus, target: TicketStatus, strict: Optional[bool] = None) -> None:
    strict = settings.STRICT_STATUS_TRANSITIONS if strict is None else strict
    if not strict or current == target:
        return
    if target not in ALLOWED[current]:
        raise InvalidTransition(current.value, target.value)


def apply_status(ticket: Ticket, target: TicketStatus, now: datetime) -> bool:
    """Set status and stamp resolved_at / closed_at once. Returns True if the status changed."""
    changed = ticket.status != target
    ticket.status = target
    if target == S.resolved and ticket.resolved_at is None:
        ticket.resolved_at = now
    if target == S.closed and ticket.closed_at is None:
        ticket.closed_at = now
    return changed


def stamp_first_response(ticket: Ticket, now: datetime) -> bool:
    if ticket.first_response_at is not None:
        return False
    ticket.first_response_at = now
    return True


def evaluate_sla(ticket: Ticket, policy: Optional[SlaPolicy], now: datetime) -> bool:
    """Flip sla_breached to True when a target is exceeded. Returns True on the flip."""
    if ticket.sla_breached or policy is None or ticket.created_at is None:
        return False

    finished = ticket.resolved_at or ticket.closed_at
    # work that has finished is judged at its finish time, not at a later edit
    first_ref = ticket.first_response_at or finished or now
    breached = first_ref - ticket.created_at > timedelta(minutes=policy.first_response_target)

    if ticket.status != S.cancelled:
        res_ref = finished or now
        breached = breached or res_ref - ticket.created_at > timedelta(minutes=policy.resolution_target)

    if breached:
        ticket.sla_breached = True
        log.info("sla_breached", {"ticket_id": ticket.id, "number": ticket.number, "policy": policy.name})
    return breached


def refresh_sla(db: Session, ticket: Ticket, now: datetime) -> bool:
    return evaluate_sla(ticket, storage.sla_policy_for(db, ticket), now)


def create_ticket(db: Session, data: Dict[str, Any], now: Optional[datetime] = None) -> Ticket:
    """Agent-created ticket. The contact must exist and belong to the customer."""
    now = now or datetime.now()
    unknown = set(data) - CREATABLE
    if unknown:
        raise InvalidRequest(f"Unknown ticket fields: {', '.join(sorted(unknown))}")
    if not data.get("title"):
        raise InvalidRequest("title is required")

    customer = storage.get_customer(db, data.get("customer_id") or "")
    contact = storage.get_contact(db, data.get("contact_id") or "")
    if contact.customer_id != customer.id:
        raise InvalidRequest("contact does not belong to customer")
    if data.get("sla_policy_id") and not db.get(SlaPolicy, data["sla_policy_id"]):
        raise NotFound("SlaPolicy", data["sla_policy_id"])

    ticket = Ticket(
        title=data["title"],
        description=data.get("description"),
        status=_as_status(data.get("status") or S.open),
        priority=_as_priority(data.get("priority") or TicketPriority.normal),
        customer_id=customer.id,
        contact_id=contact.id,
        assigned_agent_id=data.get("assigned_agent_id"),
        team_id=data.get("team_id"),
        category_id=data.get("category_id"),
        sla_policy_id=data.get("sla_policy_id"),
        channel=data.get("channel") or "whatsapp",
        meta=data.get("metadata"),
    )
    return insert_numbered(db, ticket, now)


def update_ticket(db: Session, ticket_id: str, changes: Dict[str, Any],
                  now: Optional[datetime] = None, strict: Optional[bool] = None) -> Tuple[Ticket, bool]:
    """Apply an agent update. Returns (ticket, status_changed)."""
    now = now or datetime.now()
    unknown = set(changes) - UPDATABLE
    if unknown:
        raise InvalidRequest(f"Fields not updatable: {', '.join(sorted(unknown))}")

    ticket = storage.get_ticket(db, ticket_id)
    status_changed = False

    for key, value in changes.items():
        if key == "status":
            target = _as_status(value)
            check_transition(ticket.status, target, strict)
            status_changed = apply_status(ticket, target, now)
        elif key == "priority":
            ticket.priority = _as_priority(value)
        elif key == "metadata":
            ticket.meta = value
        elif key == "sla_policy_id":
            if value and not db.get(SlaPolicy, value):
                raise NotFound("SlaPolicy", value)
            ticket.sla_policy_id = value
        elif key == "title" and not value:
            raise InvalidRequest("title cannot be empty")
        else:
            setattr(ticket, key, value)

    refresh_sla(db, ticket, now)
    db.commit()
    db.refresh(ticket)
    if status_changed:
        log.info("ticket_status_changed", {"ticket_id": ticket.id, "number": ticket.number, "status": ticket.status.value})
    return ticket, status_changed


def sweep_sla(db: Session, now: Optional[datetime] = None) -> int:
    """Re-evaluate every active, not yet breached ticket. Returns how many flipped."""
    now = now or datetime.now()
    flipped = 0
    for ticket in storage.tickets_for_sla_sweep(db):
        if refresh_sla(db, ticket, now):
            flipped += 1
    if flipped:
        db.commit()
    return flipped
