from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models

logger = logging.getLogger(__name__)


def track_event(
    db: Session,
    user_id: str,
    event_type: models.AnalyticsType,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[models.Analytics]:
    """
    Append one analytics row. Tracking is a side effect of the request that
    triggers it: a failed insert is logged and rolled back, never raised.
    """
    event = models.Analytics(user_id=user_id, type=event_type, event_metadata=metadata or {})
    try:
        db.add(event)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record %s analytics for user %s", event_type.value, user_id)
        return None
    return event
