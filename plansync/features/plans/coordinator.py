"""
plansync/features/plans/coordinator.py

Plan reconciliation cascade.

One reconcile call is a single linear pass:

    validate -> read previous plan -> every write strategy once -> verify
    -> (mismatch) emergency bypass -> verify -> settle session -> audit
    -> verdict

The profile store is authoritative. Identity metadata is an eventually
consistent copy and never decides the verdict.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from plansync.core.config import settings
from plansync.core.errors import AccountNotFoundError
from plansync.core.metrics import (
    plan_bypass_total,
    plan_reconcile_total,
    plan_strategy_failures_total,
)
from plansync.features.plans.audit import AuditLogger
from plansync.features.plans.runner import StoreCallRunner
from plansync.features.plans.session import SessionCache, session_cache as default_session_cache
from plansync.features.plans.store import PlanStoreClient, RecordNotFoundError
from plansync.features.plans.strategies import (
    DirectWriter,
    EmergencyBypass,
    MetadataSyncWriter,
    PlanWriteStrategy,
    ResetEscalator,
    SessionPatcher,
)
from plansync.features.plans.validation import validate_plan, validate_user_id
from plansync.features.plans.verification import VerificationProbe
from plansync.models.plan import ChangeLogEntry
from plansync.models.reconciliation import ReconcileResult, StrategyOutcome

logger = logging.getLogger("plansync.plans.coordinator")

_MAX_ERROR_LEN = 500


class PlanReconciliationCoordinator:
    """Runs the fixed write-and-verify cascade against one PlanStoreClient."""

    def __init__(
        self,
        store: PlanStoreClient,
        *,
        call_timeout: Optional[float] = None,
        session_cache: Optional[SessionCache] = None,
        bypass_enabled: Optional[bool] = None,
    ):
        self.store = store
        self.session_cache = session_cache if session_cache is not None else default_session_cache
        self.runner = StoreCallRunner(
            settings.PLAN_STORE_CALL_TIMEOUT_SECONDS if call_timeout is None else call_timeout
        )
        self.cascade: List[Tuple[str, PlanWriteStrategy]] = [
            (strategy.name, strategy)
            for strategy in (
                DirectWriter(store, self.runner),
                MetadataSyncWriter(store, self.runner),
                ResetEscalator(store, self.runner),
                SessionPatcher(store, self.runner, self.session_cache),
            )
        ]
        self.bypass = EmergencyBypass(store, self.runner, enabled=bypass_enabled)
        self.probe = VerificationProbe(store, self.runner)
        self.audit = AuditLogger(store, self.runner)

    async def reconcile(
        self,
        user_id: str,
        requested_plan: str,
        *,
        actor_id: Optional[str] = None,
        method: str = "api",
    ) -> ReconcileResult:
        """
        Drive user_id to requested_plan across both stores.

        Raises:
            InvalidArgumentError: Malformed user_id or unknown plan (no I/O done)
            AccountNotFoundError: No profile exists (no writes, no audit)

        Strategy and audit failures are never raised; they are reported in
        the returned ReconcileResult.
        """
        user_id = validate_user_id(user_id)
        plan = validate_plan(requested_plan).value

        previous_plan = await self._read_previous_plan(user_id)

        outcomes = []
        for name, strategy in self.cascade:
            outcomes.append(await self._attempt(name, strategy, user_id, plan, actor_id))

        verification = await self.probe.verify(user_id, plan)
        attempts = 1
        bypass_outcome = None
        if not verification.matched:
            logger.warning(
                "plan.verify.mismatch",
                extra={
                    "user_id": user_id,
                    "plan": plan,
                    "event_type": "verification_mismatch",
                },
            )
            bypass_outcome = await self._attempt(self.bypass.name, self.bypass, user_id, plan, actor_id)
            plan_bypass_total.inc(labels={"outcome": bypass_outcome.status})
            verification = await self.probe.verify(user_id, plan)
            attempts += 1

        self._settle_session(user_id, actor_id, verification.profile_plan)

        audit_recorded = await self.audit.append(
            ChangeLogEntry(
                user_id=user_id,
                old_plan=previous_plan,
                new_plan=plan,
                change_date=datetime.now(timezone.utc),
                change_method=method,
            )
        )

        success = verification.matched
        plan_reconcile_total.inc(labels={"outcome": "success" if success else "failed"})
        logger.log(
            logging.INFO if success else logging.ERROR,
            "plan.reconcile.complete" if success else "plan.reconcile.failed",
            extra={
                "user_id": user_id,
                "plan": plan,
                "event_type": method,
                "error_code": None if success else "reconciliation_failed",
            },
        )

        return ReconcileResult(
            user_id=user_id,
            requested_plan=plan,
            previous_plan=previous_plan,
            success=success,
            profile_plan=verification.profile_plan,
            identity_plan=verification.identity_plan,
            consistent=verification.matched and verification.identity_plan == plan,
            outcomes=outcomes,
            bypass=bypass_outcome,
            verification_attempts=attempts,
            audit_recorded=audit_recorded,
        )

    def _settle_session(self, user_id: str, actor_id: Optional[str], profile_plan: Optional[str]) -> None:
        # The session may only hold what the profile store was verified to hold
        if actor_id == user_id and profile_plan is not None:
            self.session_cache.patch(user_id, {"plan": profile_plan})
        else:
            self.session_cache.invalidate(user_id)

    async def _read_previous_plan(self, user_id: str) -> Optional[str]:
        try:
            return await self.runner.run(self.store.read_profile_plan, user_id)
        except RecordNotFoundError:
            raise AccountNotFoundError(f"No account found for {user_id}", user_id=user_id)
        except Exception as exc:
            logger.warning(
                "plan.previous.unreadable",
                extra={"user_id": user_id, "error_code": getattr(exc, "code", "error")},
            )
            return None

    async def _attempt(
        self,
        name: str,
        strategy: PlanWriteStrategy,
        user_id: str,
        plan: str,
        actor_id: Optional[str],
    ) -> StrategyOutcome:
        start = time.perf_counter()
        try:
            status = await strategy.apply(user_id, plan, actor_id=actor_id)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000
            error_code = getattr(exc, "code", exc.__class__.__name__)
            plan_strategy_failures_total.inc(labels={"strategy": name})
            logger.warning(
                "plan.strategy.failed",
                extra={
                    "user_id": user_id,
                    "plan": plan,
                    "strategy": name,
                    "error_code": error_code,
                },
            )
            return StrategyOutcome(
                name=name,
                status="failed",
                error=str(exc)[:_MAX_ERROR_LEN],
                error_code=error_code,
                elapsed_ms=elapsed_ms,
            )
        return StrategyOutcome(
            name=name,
            status=status or "ok",
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )
