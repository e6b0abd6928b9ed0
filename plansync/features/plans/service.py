"""
plansync/features/plans/service.py

Plan service entry points used by the HTTP API and the repair worker.

Handles:
- Reconciling one account to a requested plan
- Reading both stores' plan values and the change history
- Listing accounts by plan or search text
- Bulk repair of drifted accounts
- Schema and drift diagnostics
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from plansync.core.config import settings
from plansync.core.database import identity_metadata, plan_change_logs, profiles
from plansync.core.errors import (
    AccountNotFoundError,
    AppError,
    InvalidArgumentError,
    ReconciliationFailedError,
    StoreUnavailableError,
)
from plansync.features.plans.coordinator import PlanReconciliationCoordinator
from plansync.features.plans.sql_store import SqlStoreClient
from plansync.features.plans.store import RecordNotFoundError, StoreError
from plansync.features.plans.validation import validate_plan, validate_user_id
from plansync.models.plan import AccountPlan, ChangeLogEntry, PlanTier
from plansync.models.reconciliation import ReconcileResult, RepairFailure, RepairReport

logger = logging.getLogger("plansync.plans.service")

# Profile columns that were dropped from the schema but that stale backend
# triggers may still reference
RETIRED_PROFILE_COLUMNS = ("plan_expires_at",)

_coordinator: Optional[PlanReconciliationCoordinator] = None


def get_coordinator() -> PlanReconciliationCoordinator:
    """Return the process-wide coordinator backed by the SQL store."""
    global _coordinator
    if _coordinator is None:
        _coordinator = PlanReconciliationCoordinator(SqlStoreClient())
    return _coordinator


async def reconcile(
    user_id: str,
    plan: str,
    *,
    actor_id: Optional[str] = None,
    method: str = "api",
    coordinator: Optional[PlanReconciliationCoordinator] = None,
) -> ReconcileResult:
    coordinator = coordinator or get_coordinator()
    return await coordinator.reconcile(user_id, plan, actor_id=actor_id, method=method)


def ensure_reconciled(result: ReconcileResult) -> ReconcileResult:
    """
    Raise ReconciliationFailedError for a failed verdict.

    The error carries the last-known plan values so callers can show what the
    stores actually hold.
    """
    if result.success:
        return result
    raise ReconciliationFailedError(
        f"Plan for {result.user_id} could not be set to {result.requested_plan}",
        user_id=result.user_id,
        details={
            "success": False,
            "profile_plan": result.profile_plan,
            "identity_plan": result.identity_plan,
            "failed_strategies": result.failed_strategies,
        },
    )


async def get_current_plan(
    user_id: str,
    coordinator: Optional[PlanReconciliationCoordinator] = None,
) -> AccountPlan:
    """
    Read the plan currently held by both stores.

    Raises:
        AccountNotFoundError: If no profile exists
        StoreUnavailableError: If the profile store cannot be read
    """
    coordinator = coordinator or get_coordinator()
    user_id = validate_user_id(user_id)
    store, runner = coordinator.store, coordinator.runner

    try:
        profile_plan = await runner.run(store.read_profile_plan, user_id)
    except RecordNotFoundError:
        raise AccountNotFoundError(f"No account found for {user_id}", user_id=user_id)
    except StoreError as exc:
        raise StoreUnavailableError(f"Profile store unavailable: {exc.code}")

    try:
        identity_plan = await runner.run(store.read_identity_plan, user_id)
    except StoreError as exc:
        logger.info("plan.identity.unreadable", extra={"user_id": user_id, "error_code": exc.code})
        identity_plan = None

    return AccountPlan(user_id=user_id, profile_plan=profile_plan, identity_plan=identity_plan)


async def get_change_history(
    user_id: str,
    limit: int = 100,
    coordinator: Optional[PlanReconciliationCoordinator] = None,
) -> List[ChangeLogEntry]:
    coordinator = coordinator or get_coordinator()
    user_id = validate_user_id(user_id)
    if limit < 1 or limit > 1000:
        raise InvalidArgumentError("limit must be between 1 and 1000")
    try:
        return await coordinator.audit.history(user_id, limit)
    except StoreError as exc:
        raise StoreUnavailableError(f"Audit store unavailable: {exc.code}")


async def list_accounts(
    *,
    plan: Optional[str] = None,
    search: Optional[str] = None,
    coordinator: Optional[PlanReconciliationCoordinator] = None,
) -> List[Dict[str, Any]]:
    """Accounts with both stores' plan values, optionally filtered by plan and search text."""
    coordinator = coordinator or get_coordinator()
    plan = validate_plan(plan).value if plan else None
    search = (search or "").strip() or None
    try:
        return await coordinator.runner.run(coordinator.store.list_accounts, plan=plan, search=search)
    except StoreError as exc:
        raise StoreUnavailableError(f"Could not list accounts: {exc.code}")


async def _load_accounts(coordinator: PlanReconciliationCoordinator, user_id: Optional[str]) -> List[Dict[str, Any]]:
    if user_id is None:
        return await coordinator.runner.run(coordinator.store.list_accounts)
    account = await get_current_plan(user_id, coordinator)
    return [{
        "user_id": account.user_id,
        "profile_plan": account.profile_plan,
        "identity_plan": account.identity_plan,
    }]


async def repair_all(
    *,
    user_id: Optional[str] = None,
    dry_run: bool = False,
    concurrency: Optional[int] = None,
    item_timeout: Optional[float] = None,
    coordinator: Optional[PlanReconciliationCoordinator] = None,
) -> RepairReport:
    """
    Re-run the cascade for every account, targeting its current profile plan.

    Accounts whose profile holds no valid plan are skipped. A dry run only
    reports which accounts have drifted. At most `concurrency` reconciles run
    at once and each one is bounded by `item_timeout`.
    """
    coordinator = coordinator or get_coordinator()
    concurrency = concurrency if concurrency is not None else settings.PLAN_REPAIR_CONCURRENCY
    item_timeout = item_timeout if item_timeout is not None else settings.PLAN_REPAIR_ITEM_TIMEOUT_SECONDS
    if concurrency < 1:
        raise InvalidArgumentError("concurrency must be at least 1")

    try:
        accounts = await _load_accounts(coordinator, user_id)
    except StoreError as exc:
        raise StoreUnavailableError(f"Could not list accounts: {exc.code}")

    report = RepairReport(total=len(accounts), dry_run=dry_run)
    targets = []
    for account in accounts:
        plan = account["profile_plan"]
        if plan not in PlanTier.values():
            report.skipped += 1
            report.failures.append(RepairFailure(user_id=account["user_id"], reason="invalid_profile_plan"))
            continue
        if account["identity_plan"] != plan:
            report.drifted.append(account["user_id"])
        targets.append((account["user_id"], plan))

    if dry_run:
        logger.info("plan.repair.dry_run", extra={"event_type": "repair"})
        return report

    semaphore = asyncio.Semaphore(concurrency)

    async def _repair_one(uid: str, plan: str):
        async with semaphore:
            try:
                result = await asyncio.wait_for(
                    coordinator.reconcile(uid, plan, method="repair"),
                    timeout=item_timeout,
                )
            except asyncio.TimeoutError:
                return uid, "timed_out", "timeout"
            except AppError as exc:
                return uid, "failed", exc.code
        if result.success:
            return uid, "succeeded", None
        return uid, "failed", "reconciliation_failed"

    results = await asyncio.gather(*(_repair_one(uid, plan) for uid, plan in targets))
    for uid, status, reason in results:
        if status == "succeeded":
            report.succeeded += 1
            continue
        if status == "timed_out":
            report.timed_out += 1
        else:
            report.failed += 1
        report.failures.append(RepairFailure(user_id=uid, reason=reason))

    logger.info(
        "plan.repair.complete",
        extra={
            "event_type": "repair",
            "error_code": "partial_failure" if report.failures else None,
        },
    )
    return report


async def diagnose(coordinator: Optional[PlanReconciliationCoordinator] = None) -> Dict[str, Any]:
    """Report schema drift (missing or retired columns) and accounts whose stores disagree."""
    coordinator = coordinator or get_coordinator()
    store, runner = coordinator.store, coordinator.runner

    try:
        schema = await runner.run(store.describe_schema)
        accounts = await runner.run(store.list_accounts)
    except StoreError as exc:
        raise StoreUnavailableError(f"Diagnostics unavailable: {exc.code}")

    missing_columns = {}
    for table in (profiles, identity_metadata, plan_change_logs):
        present = set(schema.get(table.name, []))
        missing = [col.name for col in table.columns if col.name not in present]
        if missing:
            missing_columns[table.name] = missing

    retired = [col for col in RETIRED_PROFILE_COLUMNS if col in schema.get(profiles.name, [])]

    return {
        "tables": schema,
        "missing_columns": missing_columns,
        "retired_columns_present": retired,
        "accounts_checked": len(accounts),
        "drifted_accounts": [a["user_id"] for a in accounts if a["profile_plan"] != a["identity_plan"]],
        "invalid_plans": [a["user_id"] for a in accounts if a["profile_plan"] not in PlanTier.values()],
    }
