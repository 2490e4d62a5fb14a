# ticketdesk/routers/webhooks.py
from fastapi import APIRouter, Request, Depends
from sqlalchemy.orm import Session

from ticketdesk.services.inbound import process_webhook
from ticketdesk.storage.db import get_db
from ticketdesk.util.logger import get_logger

log = get_logger("webhooks")
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/evolution/{instance_key}")
async def evolution_webhook(instance_key: str, req: Request, db: Session = Depends(get_db)):
    """Provider callbacks. Always acknowledged; processing failures are only logged."""
    try:
        payload = await req.json()
    except ValueError:
        log.warning("webhook_bad_json", {"instance": instance_key})
        return {"success": True}
    if not isinstance(payload, dict):
        log.warning("webhook_bad_payload", {"instance": instance_key})
        return {"success": True}

    try:
        result = await process_webhook(db, payload, instance_key, notifier=req.app.state.notifier)
        log.info("webhook_processed", {"instance": instance_key, "event": payload.get("event"), **result})
    except Exception:
        db.rollback()
        log.exception("webhook_failed", {"instance": instance_key, "event": payload.get("event")})
    return {"success": True}
