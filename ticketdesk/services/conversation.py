from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketdesk.providers.base import InboundEvent
from ticketdesk.services import storage
from ticketdesk.services.numbering import insert_numbered
from ticketdesk.storage.models import (
    Customer, Contact, Ticket, CustomerSegment, TicketStatus, TicketPriority,
)
from ticketdesk.util.logger import get_logger

log = get_logger("conversation")

CHANNEL = "whatsapp"
TICKET_TITLE = "WhatsApp Support Request"
TICKET_PLACEHOLDER = "New WhatsApp message"


@dataclass
class Resolution:
    customer: Customer
    contact: Contact
    ticket: Ticket
    created_contact: bool = False
    created_ticket: bool = False


def find_or_create_contact(db: Session, address: str, display_name: Optional[str]) -> Tuple[Contact, bool]:
    """
    The only place a Customer is created automatically. The unique address constraint
    decides races: the loser rolls back and reads the winner's contact.
    """
    contact = storage.get_contact_by_address(db, address)
    if contact:
        return contact, False

    name = display_name or address
    customer = Customer(name=name, segment=CustomerSegment.residential)
    db.add(customer)
    db.flush()
    contact = Contact(customer_id=customer.id, whatsapp_number=address, name=name)
    db.add(contact)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        contact = storage.get_contact_by_address(db, address)
        if contact is None:
            raise
        log.warning("contact_created_concurrently", {"address": address, "contact_id": contact.id})
        return contact, False

    log.info("contact_created", {"address": address, "contact_id": contact.id, "customer_id": customer.id})
    return contact, True


def resolve_conversation(db: Session, event: InboundEvent, now: Optional[datetime] = None) -> Resolution:
    """
    Inbound event -> (customer, contact, ticket).
    Reuses the customer's most recent open ticket; any other status means the next
    message starts a new ticket.
    """
    now = now or datetime.now()
    contact, created_contact = find_or_create_contact(db, event.address, event.display_name)
    customer = contact.customer

    ticket = storage.find_open_ticket(db, contact.customer_id)
    if ticket:
        return Resolution(customer, contact, ticket, created_contact, False)

    ticket = Ticket(
        title=TICKET_TITLE,
        description=event.body.plain_text or TICKET_PLACEHOLDER,
        customer_id=contact.customer_id,
        contact_id=contact.id,
        channel=CHANNEL,
        priority=TicketPriority.normal,
        status=TicketStatus.open,
    )
    ticket = insert_numbered(db, ticket, now)
    log.info("ticket_opened_from_channel", {"ticket_id": ticket.id, "number": ticket.number, "address": event.address})
    return Resolution(customer, contact, ticket, created_contact, True)
