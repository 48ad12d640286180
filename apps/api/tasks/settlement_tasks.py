"""
Daily Settlement Tasks

Celery Beat runs `run_daily_settlement` once a day, shortly after midnight in
the reference zone. The task settles "yesterday" for every user with a
profile; `settle_user_for_date` re-runs a single user by hand (for example
after a row in settlement_failure was investigated).

Design:
    - The batch is never retried as a whole. Users are isolated and retried
      individually inside services.daily_settlement.
    - Re-running a date is safe; already-settled users are reported and
      left alone.
"""

from datetime import date
from typing import Dict, Optional
from uuid import UUID

from celery import Task

from tasks import celery_app
from core.database import get_db_sync
from core.exceptions import SettlementError
from core.logging import settlement_context
from services import coin_ledger, daily_settlement
from services.settlement_calendar import is_settleable
import logging

logger = logging.getLogger(__name__)


@celery_app.task(
    name="tasks.run_daily_settlement",
    bind=True,
    max_retries=0,       # Don't retry the batch; individual users are isolated
    soft_time_limit=50 * 60,
    time_limit=55 * 60,
)
def run_daily_settlement_task(self: Task, settlement_date: Optional[str] = None) -> Dict:
    """
    Settle every user for one date.

    Args:
        settlement_date: ISO date. Defaults to yesterday in SETTLEMENT_TIMEZONE.

    Returns:
        Summary dict from services.daily_settlement.run_daily_settlement.
    """
    try:
        day = date.fromisoformat(settlement_date) if settlement_date else None
        summary = daily_settlement.run_daily_settlement(settlement_date=day)
        if summary.get("errors"):
            logger.warning(
                f"Daily settlement for {summary['date']} finished with "
                f"{len(summary['errors'])} failed users"
            )
        return summary
    except ValueError as e:
        logger.error(f"Daily settlement rejected: {e}")
        return {"status": "error", "date": settlement_date, "message": str(e)}


@celery_app.task(
    name="tasks.settle_user_for_date",
    bind=True,
    max_retries=0,
    soft_time_limit=60,
    time_limit=90,
)
def settle_user_for_date_task(self: Task, user_id: str, settlement_date: str) -> Dict:
    """
    Settle one user for one date.

    Args:
        user_id: UUID string
        settlement_date: ISO date string
    """
    try:
        uid = UUID(user_id)
        day = date.fromisoformat(settlement_date)
    except ValueError as e:
        return {"status": "error", "user_id": user_id, "message": str(e)}

    if not is_settleable(day):
        return {"status": "error", "user_id": user_id, "message": f"{day} is not in the past"}

    try:
        result = daily_settlement.settle_user_with_retry(uid, day)
        return {"status": "ok", **result.to_dict()}
    except SettlementError as e:
        logger.warning(
            f"Manual settlement of user {user_id} for {day} failed",
            extra=settlement_context(uid, day, e.stage, task_id=self.request.id),
        )
        return {
            "status": "error",
            "user_id": user_id,
            "date": settlement_date,
            "stage": e.stage,
            "message": str(e.cause),
        }


@celery_app.task(
    name="tasks.reconcile_coin_balances",
    bind=True,
    max_retries=0,
)
def reconcile_coin_balances_task(self: Task) -> Dict:
    """Repair every cached coin balance from the transaction log."""
    db = get_db_sync()
    try:
        result = coin_ledger.reconcile_all_balances(db)
        db.commit()
        if result["repaired"]:
            logger.warning(f"Repaired {len(result['repaired'])} drifted coin balances")
        return {"status": "ok", **result}
    except Exception as e:
        db.rollback()
        logger.error(f"Coin balance reconciliation failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()
