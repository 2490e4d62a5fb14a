from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketdesk import settings
from ticketdesk.services import storage
from ticketdesk.storage.models import Ticket
from ticketdesk.util.logger import get_logger

log = get_logger("numbering")


def number_prefix(now: datetime) -> str:
    return f"TK-{now:%Y%m}-"


def format_number(now: datetime, sequence: int) -> str:
    return f"{number_prefix(now)}{sequence:04d}"


def generate_number(db: Session, now: datetime) -> str:
    """TK-YYYYMM-NNNN, NNNN = tickets already created on now's calendar day + 1."""
    return format_number(now, storage.count_tickets_on_day(db, now) + 1)


def next_free_number(db: Session, now: datetime) -> str:
    """Used after a conflict: past the day count and past every number already under this month's prefix."""
    highest = 0
    for number in storage.numbers_with_prefix(db, number_prefix(now)):
        suffix = number.rsplit("-", 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return format_number(now, max(storage.count_tickets_on_day(db, now), highest) + 1)


def insert_numbered(db: Session, ticket: Ticket, now: datetime, retries: Optional[int] = None) -> Ticket:
    """
    Number, insert and commit a new ticket. A unique-number collision rolls back and
    retries with a recomputed number. The rollback discards anything else pending in
    the session, so callers commit their own work first.
    """
    retries = settings.TICKET_NUMBER_RETRIES if retries is None else retries
    ticket.created_at = now
    ticket.number = generate_number(db, now)

    for attempt in range(retries + 1):
        db.add(ticket)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if attempt >= retries:
                log.error("ticket_number_exhausted", {"number": ticket.number, "attempts": attempt + 1})
                raise
            taken = ticket.number
            ticket.number = next_free_number(db, now)
            log.warning("ticket_number_conflict", {"taken": taken, "retry_with": ticket.number})
            continue
        db.refresh(ticket)
        log.info("ticket_numbered", {"ticket_id": ticket.id, "number": ticket.number})
        return ticket
