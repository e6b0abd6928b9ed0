"""
Admin API routes for plan operations.

All routes require admin authentication (Clerk admin role or X-Admin-Key).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from plansync.core.admin_auth import AdminActor, require_admin
from plansync.core.logging import log_event
from plansync.features.plans.coordinator import PlanReconciliationCoordinator
from plansync.features.plans.service import (
    diagnose,
    ensure_reconciled,
    get_change_history,
    get_coordinator,
    get_current_plan,
    list_accounts,
    reconcile,
    repair_all,
)

router = APIRouter(prefix="/api/admin/plans", tags=["admin-plans"])


class ReconcileRequest(BaseModel):
    user_id: str
    plan: str


class RepairAllRequest(BaseModel):
    user_id: Optional[str] = None
    dry_run: bool = True
    concurrency: Optional[int] = None


@router.post("/reconcile")
async def admin_reconcile(
    body: ReconcileRequest,
    actor: AdminActor = Depends(require_admin),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    """Set a user's plan on both stores."""
    log_event(
        "info",
        "admin.plan.reconcile",
        user_id=body.user_id,
        event_type="admin_reconcile",
        extra={"actor_id": actor.actor_id, "plan": body.plan, "auth_mechanism": actor.auth_mechanism},
    )
    result = await reconcile(
        body.user_id,
        body.plan,
        actor_id=actor.actor_id,
        method="admin",
        coordinator=coordinator,
    )
    ensure_reconciled(result)
    return {**result.model_dump(mode="json"), "failed_strategies": result.failed_strategies}


@router.post("/repair_all")
async def admin_repair_all(
    body: RepairAllRequest,
    actor: AdminActor = Depends(require_admin),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    """Re-run the cascade for every account (dry run by default)."""
    log_event(
        "info",
        "admin.plan.repair_all",
        user_id=body.user_id,
        event_type="admin_repair",
        extra={"actor_id": actor.actor_id, "dry_run": body.dry_run},
    )
    report = await repair_all(
        user_id=body.user_id,
        dry_run=body.dry_run,
        concurrency=body.concurrency,
        coordinator=coordinator,
    )
    return report.model_dump(mode="json")


@router.get("")
async def admin_list_accounts(
    plan: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    actor: AdminActor = Depends(require_admin),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    accounts = await list_accounts(plan=plan, search=search, coordinator=coordinator)
    return {"count": len(accounts), "accounts": accounts}


@router.get("/diagnostics")
async def admin_diagnostics(
    actor: AdminActor = Depends(require_admin),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    return await diagnose(coordinator)


@router.get("/{user_id}")
async def admin_get_plan(
    user_id: str,
    actor: AdminActor = Depends(require_admin),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    account = await get_current_plan(user_id, coordinator)
    return {**account.model_dump(mode="json"), "consistent": account.consistent}


@router.get("/{user_id}/history")
async def admin_plan_history(
    user_id: str,
    limit: int = Query(100),
    actor: AdminActor = Depends(require_admin),
    coordinator: PlanReconciliationCoordinator = Depends(get_coordinator),
) -> dict:
    entries = await get_change_history(user_id, limit, coordinator)
    return {
        "user_id": user_id,
        "count": len(entries),
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }
