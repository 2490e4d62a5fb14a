import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Text, Integer, JSON,
    Enum, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class TicketStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    pending_customer = "pending_customer"
    pending_third_party = "pending_third_party"
    resolved = "resolved"
    closed = "closed"
    cancelled = "cancelled"


class TicketPriority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    critical = "critical"


class MessageDirection(str, enum.Enum):
    inbound = "in"
    outbound = "out"


class MessageType(str, enum.Enum):
    text = "text"
    image = "image"
    audio = "audio"
    document = "document"
    video = "video"
    location = "location"
    contact = "contact"


class MessageStatus(str, enum.Enum):
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


class CustomerSegment(str, enum.Enum):
    residential = "residential"
    business = "business"
    enterprise = "enterprise"


def _enum(cls):
    # store values ("in", "out") rather than member names
    return Enum(cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])


class Customer(Base):
    __tablename__ = "customers"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    email = Column(String)
    document = Column(String)      # CPF/CNPJ or any tax id
    segment = Column(_enum(CustomerSegment), default=CustomerSegment.residential, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    meta = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    contacts = relationship("Contact", back_populates="customer")


class Contact(Base):
    __tablename__ = "contacts"
    id = Column(String(36), primary_key=True, default=_uuid)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    whatsapp_number = Column(String, nullable=False, unique=True)
    name = Column(String)
    is_opt_out = Column(Boolean, default=False)
    language = Column(String, default="pt-BR")
    created_at = Column(DateTime, default=datetime.now)

    customer = relationship("Customer", back_populates="contacts")


class SlaPolicy(Base):
    __tablename__ = "sla_policies"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    priority = Column(_enum(TicketPriority), nullable=False)
    first_response_target = Column(Integer, nullable=False)   # minutes
    resolution_target = Column(Integer, nullable=False)       # minutes
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String(36), primary_key=True, default=_uuid)
    number = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(_enum(TicketStatus), default=TicketStatus.open, nullable=False, index=True)
    priority = Column(_enum(TicketPriority), default=TicketPriority.normal, nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    assigned_agent_id = Column(String, index=True)    # weak ref, user lives in the auth service
    team_id = Column(String)
    category_id = Column(String)
    sla_policy_id = Column(String(36), ForeignKey("sla_policies.id"))
    channel = Column(String, nullable=False, default="whatsapp")
    first_response_at = Column(DateTime)
    resolved_at = Column(DateTime)
    closed_at = Column(DateTime)
    sla_breached = Column(Boolean, default=False, nullable=False)
    meta = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.now, index=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    customer = relationship("Customer")
    contact = relationship("Contact")
    sla_policy = relationship("SlaPolicy")
    messages = relationship("Message", back_populates="ticket", order_by="Message.created_at")
    tags = relationship("Tag", secondary="ticket_tags", viewonly=True)


class Message(Base):
    __tablename__ = "messages"
    id = Column(String(36), primary_key=True, default=_uuid)
    ticket_id = Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    direction = Column(_enum(MessageDirection), nullable=False)
    type = Column(_enum(MessageType), default=MessageType.text, nullable=False)
    content = Column(Text, nullable=False)
    media_url = Column(String)
    media_metadata = Column(JSON)
    sender_id = Column(String)                 # agent id (out) | contact id (in)
    provider_message_id = Column(String, unique=True)   # correlates status callbacks
    status = Column(_enum(MessageStatus), default=MessageStatus.sent, nullable=False)
    is_internal = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    ticket = relationship("Ticket", back_populates="messages")


class Tag(Base):
    __tablename__ = "tags"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False, unique=True)
    color = Column(String, default="#3B82F6")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)


class TicketTag(Base):
    __tablename__ = "ticket_tags"
    __table_args__ = (UniqueConstraint("ticket_id", "tag_id", name="uq_ticket_tag"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(String(36), ForeignKey("tickets.id"), nullable=False)
    tag_id = Column(String(36), ForeignKey("tags.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class ProviderInstance(Base):
    __tablename__ = "provider_instances"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    instance_key = Column(String, nullable=False, unique=True)
    number = Column(String)
    status = Column(String, default="disconnected")   # connected/disconnected/connecting
    api_url = Column(String, nullable=False)
    token = Column(String, nullable=False)
    webhook_url = Column(String)
    is_active = Column(Boolean, default=True)
    last_sync_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
