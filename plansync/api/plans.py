"""
Self-service plan routes.

The caller can read their own plan and upgrade (or downgrade) it. Reads are
served from the session cache when a fresh entry exists.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from plansync.core.auth import get_current_user_id
from plansync.features.plans.coordinator import PlanReconciliationCoordinator
from plansync.features.plans.service import (
    ensure_reconciled,
    get_coordinator,
    get_current_plan,
    reconcile,
)

router = APIRouter(prefix="/v1/plans", tags=["plans"])


class PlanChangeRequest(BaseModel):
    plan: str


@router.get("/me")
async def get_my_plan(
    user_id: str = Depends(get_current_user_id),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    cached = coordinator.session_cache.get(user_id)
    if cached and cached.get("plan"):
        return {"user_id": user_id, "plan": cached["plan"], "identity_plan": None, "source": "session"}

    account = await get_current_plan(user_id, coordinator)
    coordinator.session_cache.put(user_id, {"plan": account.profile_plan})
    return {
        "user_id": account.user_id,
        "plan": account.profile_plan,
        "identity_plan": account.identity_plan,
        "source": "store",
    }


@router.post("/me")
async def change_my_plan(
    body: PlanChangeRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    result = await reconcile(
        user_id,
        body.plan,
        actor_id=user_id,
        method="user_upgrade",
        coordinator=coordinator,
    )
    ensure_reconciled(result)
    return {**result.model_dump(mode="json"), "failed_strategies": result.failed_strategies}
