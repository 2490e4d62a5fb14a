# ticketdesk/services/storage.py
from datetime import datetime, timedelta
from typing import Optional, Tuple, List

from sqlalchemy import desc, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketdesk.errors import NotFound
from ticketdesk.storage.models import (
    Customer, Contact, Ticket, Message, Tag, TicketTag, SlaPolicy, ProviderInstance,
    TicketStatus,
)

ACTIVE_STATUSES = (
    TicketStatus.open,
    TicketStatus.in_progress,
    TicketStatus.pending_customer,
    TicketStatus.pending_third_party,
)


def day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    start = datetime(now.year, now.month, now.day)
    return start, start + timedelta(days=1)


def _page(page: int, limit: int) -> Tuple[int, int]:
    page = max(1, int(page or 1))
    limit = min(max(1, int(limit or 20)), 100)
    return (page - 1) * limit, limit


# --------- point lookups ----------
def get_customer(db: Session, customer_id: str) -> Customer:
    c = db.get(Customer, customer_id)
    if not c:
        raise NotFound("Customer", customer_id)
    return c


def get_contact(db: Session, contact_id: str) -> Contact:
    c = db.get(Contact, contact_id)
    if not c:
        raise NotFound("Contact", contact_id)
    return c


def get_contact_by_address(db: Session, address: str) -> Optional[Contact]:
    return db.query(Contact).filter(Contact.whatsapp_number == address).first()


def get_ticket(db: Session, ticket_id: str) -> Ticket:
    t = db.get(Ticket, ticket_id)
    if not t:
        raise NotFound("Ticket", ticket_id)
    return t


def get_message_by_provider_id(db: Session, provider_message_id: str) -> Optional[Message]:
    if not provider_message_id:
        return None
    return db.query(Message).filter(Message.provider_message_id == provider_message_id).first()


def find_open_ticket(db: Session, customer_id: str) -> Optional[Ticket]:
    return (
        db.query(Ticket)
          .filter(Ticket.customer_id == customer_id, Ticket.status == TicketStatus.open)
          .order_by(desc(Ticket.created_at))
          .first()
    )


# --------- listings ----------
def list_tickets(db: Session, *, status=None, priority=None, assigned_agent_id=None,
                 customer_id=None, page: int = 1, limit: int = 20) -> Tuple[List[Ticket], int]:
    q = db.query(Ticket)
    if status:
        q = q.filter(Ticket.status == status)
    if priority:
        q = q.filter(Ticket.priority == priority)
    if assigned_agent_id:
        q = q.filter(Ticket.assigned_agent_id == assigned_agent_id)
    if customer_id:
        q = q.filter(Ticket.customer_id == customer_id)
    total = q.count()
    offset, limit = _page(page, limit)
    items = q.order_by(desc(Ticket.created_at)).offset(offset).limit(limit).all()
    return items, total


def list_customers(db: Session, *, page: int = 1, limit: int = 20, search: str = "") -> Tuple[List[Customer], int]:
    q = db.query(Customer).filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.document.ilike(like)))
    total = q.count()
    offset, limit = _page(page, limit)
    items = q.order_by(desc(Customer.created_at)).offset(offset).limit(limit).all()
    return items, total


def messages_for_ticket(db: Session, ticket_id: str) -> List[Message]:
    return (
        db.query(Message)
          .filter(Message.ticket_id == ticket_id)
          .order_by(Message.created_at.asc())
          .all()
    )


# --------- numbering / metrics ----------
def count_tickets_on_day(db: Session, now: datetime) -> int:
    start, end = day_bounds(now)
    return (
        db.query(func.count(Ticket.id))
          .filter(Ticket.created_at >= start, Ticket.created_at < end)
          .scalar()
    ) or 0


def numbers_with_prefix(db: Session, prefix: str) -> List[str]:
    rows = db.query(Ticket.number).filter(Ticket.number.like(f"{prefix}%")).all()
    return [r[0] for r in rows]


def dashboard_metrics(db: Session, now: datetime) -> dict:
    def _count(*conds) -> int:
        return db.query(func.count(Ticket.id)).filter(*conds).scalar() or 0

    start, end = day_bounds(now)
    return {
        "open_tickets": _count(Ticket.status == TicketStatus.open),
        "in_progress_tickets": _count(Ticket.status == TicketStatus.in_progress),
        "resolved_today": _count(
            Ticket.status == TicketStatus.resolved,
            Ticket.resolved_at >= start,
            Ticket.resolved_at < end,
        ),
        "sla_breached": _count(Ticket.sla_breached.is_(True), Ticket.status.in_(ACTIVE_STATUSES)),
    }


# --------- SLA ----------
def sla_policy_for(db: Session, ticket: Ticket) -> Optional[SlaPolicy]:
    if ticket.sla_policy_id:
        return db.get(SlaPolicy, ticket.sla_policy_id)
    return (
        db.query(SlaPolicy)
          .filter(SlaPolicy.priority == ticket.priority, SlaPolicy.is_active.is_(True))
          .order_by(SlaPolicy.created_at.asc())
          .first()
    )


def tickets_for_sla_sweep(db: Session) -> List[Ticket]:
    return (
        db.query(Ticket)
          .filter(Ticket.sla_breached.is_(False), Ticket.status.in_(ACTIVE_STATUSES))
          .all()
    )


# --------- provider instances ----------
def list_instances(db: Session, active_only: bool = True) -> List[ProviderInstance]:
    q = db.query(ProviderInstance)
    if active_only:
        q = q.filter(ProviderInstance.is_active.is_(True))
    return q.order_by(ProviderInstance.created_at.asc()).all()


def get_instance_by_key(db: Session, instance_key: str) -> Optional[ProviderInstance]:
    return db.query(ProviderInstance).filter(ProviderInstance.instance_key == instance_key).first()


# --------- tags ----------
def list_tags(db: Session) -> List[Tag]:
    return db.query(Tag).filter(Tag.is_active.is_(True)).order_by(Tag.name).all()


def add_tag_to_ticket(db: Session, ticket_id: str, tag_id: str) -> None:
    get_ticket(db, ticket_id)
    if not db.get(Tag, tag_id):
        raise NotFound("Tag", tag_id)
    exists = db.query(TicketTag).filter_by(ticket_id=ticket_id, tag_id=tag_id).first()
    if exists:
        return
    db.add(TicketTag(ticket_id=ticket_id, tag_id=tag_id))
    try:
        db.commit()
    except IntegrityError:
        # attached concurrently; the pair is already there
        db.rollback()


def remove_tag_from_ticket(db: Session, ticket_id: str, tag_id: str) -> None:
    db.query(TicketTag).filter_by(ticket_id=ticket_id, tag_id=tag_id).delete()
    db.commit()
