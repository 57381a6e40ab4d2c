"""
services/scheduling/audit.py
Session history trail. Appends run after the primary write has committed and never
roll it back: a failed append is logged and dropped.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import SessionAction, SessionHistory

logger = logging.getLogger(__name__)


async def append_history(
    db: AsyncSession,
    session_id: uuid.UUID,
    action: SessionAction,
    actor_id: Optional[uuid.UUID],
    old_session_date: Optional[datetime],
    new_session_date: Optional[datetime] = None,
    reason: Optional[str] = None,
) -> bool:
    """Best-effort: returns False instead of raising when the store rejects the entry."""
    try:
        db.add(
            SessionHistory(
                session_id=session_id,
                action_type=action,
                action_by=actor_id,
                old_session_date=old_session_date,
                new_session_date=new_session_date,
                reason=reason,
            )
        )
        await db.commit()
        return True
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning(f"History append failed for session {session_id} ({action.value}): {e}")
        return False


async def list_history(db: AsyncSession, session_id: uuid.UUID) -> List[SessionHistory]:
    result = await db.execute(
        select(SessionHistory)
        .where(SessionHistory.session_id == session_id)
        .order_by(SessionHistory.created_at.desc())
    )
    return list(result.scalars().all())
