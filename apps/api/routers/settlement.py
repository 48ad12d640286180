"""
Settlement Router

Read side for the app-blocking boundary (what happened yesterday?) and
manual triggers for the daily batch.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from core import cache
from core.auth import require_internal_token
from core.database import get_db
from core.exceptions import NotFoundError, ValidationError
from models import UserProfile
from services import daily_progress, daily_settlement
from services.settlement_calendar import is_settleable, settlement_date_for
from tasks.settlement_tasks import run_daily_settlement_task
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/settlement",
    tags=["settlement"],
    dependencies=[Depends(require_internal_token)],
)


class SettlementRunRequest(BaseModel):
    settlement_date: Optional[date] = None
    run_async: bool = True


@router.get("/{user_id}/{settlement_date}")
def get_settlement_status(user_id: UUID, settlement_date: date, db: Session = Depends(get_db)):
    """
    Final settlement status for a user and date.

    One of: met, missed, skipped, missed_but_streak_saved, no_active_goal, pending.
    """
    key = cache.settlement_status_key(user_id, settlement_date)
    cached = cache.get_cache(key)
    if cached is not None:
        return cached

    if db.get(UserProfile, user_id) is None:
        raise NotFoundError("User profile", str(user_id))

    result = {
        "user_id": str(user_id),
        "date": settlement_date.isoformat(),
        "status": daily_progress.settlement_status(db, user_id, settlement_date),
    }
    # Only a settled or skipped day is final; an open day follows goal changes.
    if daily_progress.outcome_of(daily_progress.get_record(db, user_id, settlement_date)) is not None:
        cache.set_cache(key, result)
    return result


@router.post("/run")
def run_settlement(request: SettlementRunRequest):
    """
    Trigger the daily batch for a date (default: yesterday in the reference zone).

    run_async=True enqueues the Celery task; otherwise the batch runs inline and
    its summary is returned.
    """
    day = request.settlement_date or settlement_date_for()
    if not is_settleable(day):
        raise ValidationError(f"Cannot settle {day}: only past dates can be settled", field="date")

    if request.run_async:
        task = run_daily_settlement_task.delay(day.isoformat())
        logger.info(f"Queued daily settlement for {day}: task {task.id}")
        return {"status": "queued", "date": day.isoformat(), "task_id": task.id}

    return daily_settlement.run_daily_settlement(settlement_date=day)
