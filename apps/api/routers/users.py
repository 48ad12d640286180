"""
Users Router

Profiles, the single active goal, activity sync and the coin ledger.
"""

from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core import cache
from core.auth import require_internal_token
from core.database import get_db
from core.exceptions import NotFoundError
from models import GoalType, UserProfile
from services import coin_ledger, daily_progress, goals

router = APIRouter(
    prefix="/v1",
    tags=["users"],
    dependencies=[Depends(require_internal_token)],
)


class ProfileCreate(BaseModel):
    user_id: Optional[UUID] = None
    username: Optional[str] = None


class GoalCreate(BaseModel):
    goal_type: GoalType
    target_value: float = Field(..., gt=0)
    target_unit: Optional[str] = None
    apps_to_block: List[str] = Field(default_factory=list)


class ProgressSync(BaseModel):
    # e.g. {"steps_count": 8421, "distance_ran_km": 3.2}
    measurements: Dict[str, float]


def _profile_or_404(db: Session, user_id: UUID) -> UserProfile:
    profile = db.get(UserProfile, user_id)
    if profile is None:
        raise NotFoundError("User profile", str(user_id))
    return profile


def _goal_dict(goal) -> Dict:
    return {
        "id": str(goal.id),
        "goal_type": goal.goal_type,
        "target_value": goal.target_value,
        "target_unit": goal.target_unit,
        "apps_to_block": goal.apps_to_block or [],
        "created_at": goal.created_at,
    }


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_profile(request: ProfileCreate, db: Session = Depends(get_db)):
    """Signup hook: zero coins, zero streak, no goal."""
    profile = goals.create_profile(db, user_id=request.user_id, username=request.username)
    return {"user_id": str(profile.user_id), "username": profile.username}


@router.get("/users/{user_id}")
def get_profile(user_id: UUID, db: Session = Depends(get_db)):
    profile = _profile_or_404(db, user_id)
    return {
        "user_id": str(profile.user_id),
        "username": profile.username,
        "coin_balance": profile.coin_balance,
        "current_streak_length": profile.current_streak_length,
        "longest_streak_length": profile.longest_streak_length,
        "active_goal_id": str(profile.active_goal_id) if profile.active_goal_id else None,
    }


@router.get("/users/{user_id}/goal")
def get_goal(user_id: UUID, db: Session = Depends(get_db)):
    _profile_or_404(db, user_id)
    goal = goals.get_active_goal(db, user_id)
    return {"user_id": str(user_id), "goal": _goal_dict(goal) if goal else None}


@router.put("/users/{user_id}/goal")
def set_goal(user_id: UUID, request: GoalCreate, db: Session = Depends(get_db)):
    """Replace the active goal. The previous one is deactivated, not deleted."""
    goal = goals.set_active_goal(
        db,
        user_id,
        request.goal_type,
        request.target_value,
        target_unit=request.target_unit,
        apps_to_block=request.apps_to_block,
    )
    return {"user_id": str(user_id), "goal": _goal_dict(goal)}


@router.delete("/users/{user_id}/goal")
def clear_goal(user_id: UUID, db: Session = Depends(get_db)):
    goals.clear_active_goal(db, user_id)
    return {"user_id": str(user_id), "goal": None}


@router.post("/users/{user_id}/progress/{day}")
def sync_progress(user_id: UUID, day: date, request: ProgressSync, db: Session = Depends(get_db)):
    """Activity sync: merge measurements into the day's record."""
    _profile_or_404(db, user_id)
    record = daily_progress.record_measurements(db, user_id, day, request.measurements)
    cache.invalidate_settlement_status(user_id, day)
    return {
        "user_id": str(user_id),
        "date": day.isoformat(),
        "progress_data": record.progress_data,
        "status": record.status,
    }


@router.get("/users/{user_id}/coins")
def get_coins(user_id: UUID, limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    profile = _profile_or_404(db, user_id)
    return {
        "user_id": str(user_id),
        "coin_balance": profile.coin_balance,
        "transactions": [
            {
                "id": str(txn.id),
                "coin_change": txn.coin_change,
                "type": txn.type,
                "description": txn.description,
                "related_goal_id": str(txn.related_goal_id) if txn.related_goal_id else None,
                "created_at": txn.created_at,
            }
            for txn in coin_ledger.recent_transactions(db, user_id, limit=limit)
        ],
    }


@router.post("/ledger/reconcile")
def reconcile_ledger(user_id: Optional[UUID] = None, db: Session = Depends(get_db)):
    """Repair cached balances from the transaction log (one user, or everyone)."""
    if user_id is not None:
        return coin_ledger.reconcile_balance(db, user_id)
    return coin_ledger.reconcile_all_balances(db)
