import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from bmc.errors import BmcError
from bmc.models import LockCategory, OperationEvent

logger = logging.getLogger(__name__)


def record_event(
    session_factory: Optional[Callable[[], Session]],
    endpoint: str,
    category: LockCategory,
    operation: str,
    error: Optional[BmcError],
) -> None:
    """Persist the outcome of one supervised operation, if a database is wired in."""
    if session_factory is None:
        return

    db = session_factory()
    try:
        db.add(OperationEvent(
            endpoint=endpoint,
            category=category.value,
            operation=operation,
            success=error is None,
            error_code=error.error_code if error else None,
            message=error.deepest() if error else "ok",
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to record {operation} event for {endpoint}: {e}")
    finally:
        db.close()
