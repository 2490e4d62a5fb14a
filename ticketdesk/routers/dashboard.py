from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticketdesk import schemas
from ticketdesk.auth import get_current_user
from ticketdesk.services import storage
from ticketdesk.storage.db import get_db

router = APIRouter(prefix="/api", tags=["dashboard"], dependencies=[Depends(get_current_user)])


@router.get("/dashboard/metrics", response_model=schemas.DashboardMetrics)
def metrics(db: Session = Depends(get_db)):
    return storage.dashboard_metrics(db, datetime.now())
