# ticketdesk/routers/instances.py
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ticketdesk import schemas
from ticketdesk.auth import get_current_user
from ticketdesk.errors import InvalidRequest, NotFound
from ticketdesk.services import storage
from ticketdesk.storage.db import get_db
from ticketdesk.storage.models import ProviderInstance
from ticketdesk.util.logger import get_logger

log = get_logger("instances")
router = APIRouter(prefix="/api", tags=["instances"], dependencies=[Depends(get_current_user)])

# Evolution connectionState -> our instance status
_STATES = {"open": "connected", "close": "disconnected", "connecting": "connecting"}


@router.get("/instances", response_model=List[schemas.InstanceOut])
def list_instances(db: Session = Depends(get_db)):
    return storage.list_instances(db, active_only=False)


@router.post("/instances", response_model=schemas.InstanceOut, status_code=201)
def create_instance(body: schemas.InstanceCreate, db: Session = Depends(get_db)):
    if storage.get_instance_by_key(db, body.instance_key):
        raise InvalidRequest(f"Instance key already registered: {body.instance_key}")
    inst = ProviderInstance(**body.model_dump())
    db.add(inst)
    db.commit()
    db.refresh(inst)
    log.info("instance_registered", {"instance": inst.instance_key})
    return inst


@router.get("/instances/{instance_key}/state")
async def instance_state(instance_key: str, request: Request, db: Session = Depends(get_db)):
    inst = storage.get_instance_by_key(db, instance_key)
    if inst is None:
        raise NotFound("Instance", instance_key)

    data = await request.app.state.dispatcher.connection_state(db, instance_key)
    if data is None:
        return {"instance_key": instance_key, "status": inst.status, "reachable": False, "provider": None}

    raw_state = (data.get("instance") or {}).get("state") or data.get("state")
    status = _STATES.get(raw_state)
    if status:
        inst.status = status
        inst.last_sync_at = datetime.now()
        db.commit()
    return {"instance_key": instance_key, "status": inst.status, "reachable": True, "provider": data}
