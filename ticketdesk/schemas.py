"""Request / response models for the HTTP API."""
from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field

from ticketdesk.storage.models import (
    TicketStatus, TicketPriority, MessageType, MessageDirection, MessageStatus, CustomerSegment,
)


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ---------- customers ----------
class ContactOut(_Out):
    id: str
    customer_id: str
    whatsapp_number: str
    name: Optional[str] = None
    is_opt_out: bool = False
    language: Optional[str] = None


class CustomerOut(_Out):
    id: str
    name: str
    email: Optional[str] = None
    document: Optional[str] = None
    segment: CustomerSegment
    is_active: bool
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="meta")
    created_at: Optional[datetime] = None
    contacts: List[ContactOut] = []


class ContactIn(BaseModel):
    whatsapp_number: str = Field(..., min_length=3)
    name: Optional[str] = None
    language: Optional[str] = None


class CustomerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    document: Optional[str] = None
    segment: CustomerSegment = CustomerSegment.residential
    metadata: Optional[Dict[str, Any]] = None
    contacts: List[ContactIn] = []


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    document: Optional[str] = None
    segment: Optional[CustomerSegment] = None
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


# ---------- tickets ----------
class TagOut(_Out):
    id: str
    name: str
    color: Optional[str] = None


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1)
    color: Optional[str] = None


class TicketOut(_Out):
    id: str
    number: str
    title: str
    description: Optional[str] = None
    status: TicketStatus
    priority: TicketPriority
    customer_id: str
    contact_id: str
    assigned_agent_id: Optional[str] = None
    team_id: Optional[str] = None
    category_id: Optional[str] = None
    sla_policy_id: Optional[str] = None
    channel: str
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    sla_breached: bool = False
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="meta")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TicketDetail(TicketOut):
    customer: Optional[CustomerOut] = None
    contact: Optional[ContactOut] = None
    tags: List[TagOut] = []


class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    customer_id: str
    contact_id: str
    priority: Optional[TicketPriority] = None
    assigned_agent_id: Optional[str] = None
    team_id: Optional[str] = None
    category_id: Optional[str] = None
    sla_policy_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class TicketUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    assigned_agent_id: Optional[str] = None
    team_id: Optional[str] = None
    category_id: Optional[str] = None
    sla_policy_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class TicketPage(BaseModel):
    items: List[TicketOut]
    total: int
    page: int
    limit: int


# ---------- messages ----------
class MessageOut(_Out):
    id: str
    ticket_id: str
    direction: MessageDirection
    type: MessageType
    content: str
    media_url: Optional[str] = None
    media_metadata: Optional[Dict[str, Any]] = None
    sender_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    status: MessageStatus
    is_internal: bool = False
    created_at: Optional[datetime] = None


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1)
    type: MessageType = MessageType.text
    is_internal: bool = False
    media_url: Optional[str] = None


# ---------- provider instances ----------
class InstanceOut(_Out):
    id: str
    name: str
    instance_key: str
    number: Optional[str] = None
    status: Optional[str] = None
    api_url: str
    webhook_url: Optional[str] = None
    is_active: bool = True
    last_sync_at: Optional[datetime] = None


class InstanceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    instance_key: str = Field(..., min_length=1)
    api_url: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    number: Optional[str] = None
    webhook_url: Optional[str] = None


# ---------- dashboard ----------
class DashboardMetrics(BaseModel):
    open_tickets: int
    in_progress_tickets: int
    resolved_today: int
    sla_breached: int


def dump(model_cls, obj) -> Dict[str, Any]:
    """ORM object -> JSON-ready dict (used for websocket payloads)."""
    return model_cls.model_validate(obj).model_dump(mode="json")
