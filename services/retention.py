"""History retention: drop threads that are older than the owner's plan allows."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from celery_app import celery
from database import get_db_sync
from models import Thread, User
from services.plans import PLANS, Tier, UNLIMITED

logger = logging.getLogger(__name__)


def purge_expired_threads_for(db: Session, now: Optional[datetime] = None) -> int:
    """
    Delete threads last updated before their owner's retention window.

    Plans with unlimited history are skipped. Users whose stored plan is not
    a known tier are treated as free.

    Returns:
        Number of threads deleted
    """
    now = now or datetime.now(timezone.utc)
    known_plans = [tier.value for tier in Tier]
    deleted = 0

    for tier, policy in PLANS.items():
        if policy.history_days == UNLIMITED:
            continue

        cutoff = now - timedelta(days=policy.history_days)
        plan_filter = User.plan == tier.value
        if tier is Tier.FREE:
            plan_filter = or_(plan_filter, User.plan.notin_(known_plans))

        expired = db.query(Thread).join(
            User, User.id == Thread.user_id
        ).filter(
            plan_filter,
            Thread.updated_at < cutoff
        ).all()

        for thread in expired:
            db.delete(thread)
        deleted += len(expired)

    db.commit()
    return deleted


@celery.task(name='purge_expired_threads')
def purge_expired_threads() -> Dict[str, Any]:
    """Celery task wrapper around purge_expired_threads_for."""
    db = next(get_db_sync())

    try:
        deleted = purge_expired_threads_for(db)
        logger.info(f"Purged {deleted} threads past their plan's history window")
        return {"status": "completed", "threads_deleted": deleted}
    except Exception as e:
        logger.error(f"Error purging expired threads: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()
