from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from bmc.database import get_db
from bmc.models import OperationEvent

router = APIRouter()


@router.get("/events")
def list_events(limit: int = 50, endpoint: str = "", db: Session = Depends(get_db)):
    query = select(OperationEvent).order_by(OperationEvent.created_at.desc(), OperationEvent.id.desc())
    if endpoint:
        query = query.where(OperationEvent.endpoint == endpoint)
    events = db.scalars(query.limit(limit)).all()
    return [
        {
            "id": e.id,
            "endpoint": e.endpoint,
            "category": e.category,
            "operation": e.operation,
            "success": e.success,
            "error_code": e.error_code,
            "message": e.message,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in events
    ]
