# ticketdesk/routers/customers.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketdesk import schemas
from ticketdesk.auth import get_current_user
from ticketdesk.errors import InvalidRequest
from ticketdesk.services import storage
from ticketdesk.storage.db import get_db
from ticketdesk.storage.models import Customer, Contact
from ticketdesk.util.logger import get_logger

log = get_logger("customers")
router = APIRouter(prefix="/api", tags=["customers"], dependencies=[Depends(get_current_user)])


@router.get("/customers")
def list_customers(
    search: str = "",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = storage.list_customers(db, page=page, limit=limit, search=search.strip())
    return {
        "items": [schemas.CustomerOut.model_validate(c) for c in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.post("/customers", response_model=schemas.CustomerOut, status_code=201)
def create_customer(body: schemas.CustomerCreate, db: Session = Depends(get_db)):
    customer = Customer(
        name=body.name, email=body.email, document=body.document,
        segment=body.segment, meta=body.metadata,
    )
    db.add(customer)
    db.flush()
    for c in body.contacts:
        db.add(Contact(customer_id=customer.id, whatsapp_number=c.whatsapp_number,
                       name=c.name or body.name, language=c.language or "pt-BR"))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidRequest("A contact with this WhatsApp number already exists")
    db.refresh(customer)
    log.info("customer_created", {"customer_id": customer.id, "contacts": len(body.contacts)})
    return customer


@router.get("/customers/{customer_id}", response_model=schemas.CustomerOut)
def get_customer(customer_id: str, db: Session = Depends(get_db)):
    return storage.get_customer(db, customer_id)


@router.patch("/customers/{customer_id}", response_model=schemas.CustomerOut)
def update_customer(customer_id: str, body: schemas.CustomerUpdate, db: Session = Depends(get_db)):
    customer = storage.get_customer(db, customer_id)
    for key, value in body.model_dump(exclude_unset=True).items():
        if key == "metadata":
            customer.meta = value
        elif key in ("name", "segment", "is_active") and value is None:
            raise InvalidRequest(f"{key} cannot be null")
        else:
            setattr(customer, key, value)
    db.commit()
    db.refresh(customer)
    return customer
