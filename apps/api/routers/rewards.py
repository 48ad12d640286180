"""
Rewards Router

Inventory, redemption (skip a day, reduce today's goal) and purchase.
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
from models import RewardType
from services import reward_inventory, reward_redemption

router = APIRouter(
    prefix="/v1/users/{user_id}",
    tags=["rewards"],
    dependencies=[Depends(require_internal_token)],
)


class UseRewardRequest(BaseModel):
    reward_type: RewardType
    # Defaults to today in the reference zone
    day: Optional[date] = None


class PurchaseRewardRequest(BaseModel):
    reward_type: RewardType


@router.get("/inventory")
def get_inventory(user_id: UUID, db: Session = Depends(get_db)):
    return {
        "user_id": str(user_id),
        "inventory": reward_inventory.inventory_summary(db, user_id),
    }


@router.post("/rewards/use")
def use_reward(user_id: UUID, request: UseRewardRequest, db: Session = Depends(get_db)):
    record = reward_redemption.use_reward(db, user_id, request.reward_type, today=request.day)
    cache.invalidate_settlement_status(user_id, record.date)
    return {
        "user_id": str(user_id),
        "reward_type": request.reward_type.value,
        "date": record.date.isoformat(),
        "status": record.status,
        "effective_target_value": record.effective_target_value,
        "effective_target_unit": record.effective_target_unit,
        "remaining": reward_inventory.available(db, user_id, request.reward_type),
    }


@router.post("/rewards/purchase")
def purchase_reward(user_id: UUID, request: PurchaseRewardRequest, db: Session = Depends(get_db)):
    return {"user_id": str(user_id), **reward_redemption.purchase_reward(db, user_id, request.reward_type)}
