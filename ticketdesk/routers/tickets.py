# ticketdesk/routers/tickets.py
from typing import Optional, List, Dict

from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.orm import Session

from ticketdesk import schemas
from ticketdesk.auth import get_current_user
from ticketdesk.errors import InvalidRequest
from ticketdesk.services import storage
from ticketdesk.services.ingestion import ingest_outbound
from ticketdesk.services.lifecycle import create_ticket, update_ticket
from ticketdesk.storage.db import get_db
from ticketdesk.storage.models import Tag, TicketStatus, TicketPriority
from ticketdesk.util.logger import get_logger

log = get_logger("tickets")
router = APIRouter(prefix="/api", tags=["tickets"], dependencies=[Depends(get_current_user)])


@router.get("/tickets", response_model=schemas.TicketPage)
def list_tickets(
    status: Optional[TicketStatus] = None,
    priority: Optional[TicketPriority] = None,
    assigned_agent_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = storage.list_tickets(
        db, status=status, priority=priority, assigned_agent_id=assigned_agent_id,
        customer_id=customer_id, page=page, limit=limit,
    )
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.post("/tickets", response_model=schemas.TicketDetail, status_code=201)
async def post_ticket(body: schemas.TicketCreate, request: Request,
                      db: Session = Depends(get_db), user: Dict = Depends(get_current_user)):
    ticket = create_ticket(db, body.model_dump(exclude_none=True))
    log.info("ticket_created", {"ticket_id": ticket.id, "number": ticket.number, "by": user["user_id"]})
    await request.app.state.notifier.notify_new_ticket(schemas.dump(schemas.TicketOut, ticket))
    return ticket


@router.get("/tickets/{ticket_id}", response_model=schemas.TicketDetail)
def get_ticket(ticket_id: str, db: Session = Depends(get_db)):
    return storage.get_ticket(db, ticket_id)


@router.patch("/tickets/{ticket_id}", response_model=schemas.TicketDetail)
async def patch_ticket(ticket_id: str, body: schemas.TicketUpdate, request: Request,
                       db: Session = Depends(get_db), user: Dict = Depends(get_current_user)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise InvalidRequest("No fields to update")
    ticket, status_changed = update_ticket(db, ticket_id, changes)
    if status_changed:
        await request.app.state.notifier.notify_ticket_update(ticket.id, {
            "status": ticket.status.value,
            "updatedBy": user["user_id"],
            "ticket": schemas.dump(schemas.TicketOut, ticket),
        })
    return ticket


# ---------- messages ----------
@router.get("/tickets/{ticket_id}/messages", response_model=List[schemas.MessageOut])
def get_messages(ticket_id: str, db: Session = Depends(get_db)):
    storage.get_ticket(db, ticket_id)
    return storage.messages_for_ticket(db, ticket_id)


@router.post("/tickets/{ticket_id}/messages", response_model=schemas.MessageOut, status_code=201)
async def post_message(ticket_id: str, body: schemas.MessageCreate, request: Request,
                       db: Session = Depends(get_db), user: Dict = Depends(get_current_user)):
    msg = await ingest_outbound(
        db, ticket_id, user["user_id"], body.content,
        type=body.type.value, is_internal=body.is_internal, media_url=body.media_url,
        dispatcher=request.app.state.dispatcher,
    )
    await request.app.state.notifier.notify_new_message(
        ticket_id, schemas.dump(schemas.MessageOut, msg), exclude_user_id=user["user_id"],
    )
    return msg


# ---------- tags ----------
@router.get("/tags", response_model=List[schemas.TagOut])
def get_tags(db: Session = Depends(get_db)):
    return storage.list_tags(db)


@router.post("/tags", response_model=schemas.TagOut, status_code=201)
def post_tag(body: schemas.TagCreate, db: Session = Depends(get_db)):
    if db.query(Tag).filter(Tag.name == body.name).first():
        raise InvalidRequest(f"Tag already exists: {body.name}")
    tag = Tag(name=body.name)
    if body.color:
        tag.color = body.color
    db.add(tag)
    db.commit()
    db.refresh(tag)
    return tag


@router.post("/tickets/{ticket_id}/tags/{tag_id}", response_model=schemas.TicketDetail)
def attach_tag(ticket_id: str, tag_id: str, db: Session = Depends(get_db)):
    storage.add_tag_to_ticket(db, ticket_id, tag_id)
    ticket = storage.get_ticket(db, ticket_id)
    db.refresh(ticket)
    return ticket


@router.delete("/tickets/{ticket_id}/tags/{tag_id}", response_model=schemas.TicketDetail)
def detach_tag(ticket_id: str, tag_id: str, db: Session = Depends(get_db)):
    ticket = storage.get_ticket(db, ticket_id)
    storage.remove_tag_from_ticket(db, ticket_id, tag_id)
    db.refresh(ticket)
    return ticket
