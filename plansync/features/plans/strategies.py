"""
Write strategies of the plan reconciliation cascade.

Each strategy is one independent path for getting the requested plan into the
stores. The coordinator attempts every one of them on every call; a strategy
raising does not stop the others.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from plansync.core.config import settings
from plansync.features.plans.runner import StoreCallRunner
from plansync.features.plans.session import SessionCache, session_cache
from plansync.features.plans.store import PlanStoreClient, StoreRejectedError
from plansync.features.plans.validation import validate_plan, validate_user_id

logger = logging.getLogger("plansync.plans.strategies")

SKIPPED = "skipped"

# Constant statements for the emergency path. Values only travel as bind params.
BYPASS_PROFILE_STATEMENT = (
    "UPDATE profiles SET plan = :plan, updated_at = :modified_at "
    "WHERE user_id = :user_id"
)
BYPASS_IDENTITY_STATEMENT = (
    "UPDATE identity_metadata SET plan = :plan, plan_synced_at = :synced_at "
    "WHERE user_id = :user_id"
)
BYPASS_IDENTITY_INSERT_STATEMENT = (
    "INSERT INTO identity_metadata (user_id, plan, plan_synced_at) "
    "VALUES (:user_id, :plan, :synced_at)"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanWriteStrategy:
    """Base class: one write path against a PlanStoreClient."""

    name = "strategy"

    def __init__(self, store: PlanStoreClient, runner: StoreCallRunner):
        self.store = store
        self.runner = runner

    async def apply(self, user_id: str, plan: str, *, actor_id: Optional[str] = None) -> Optional[str]:
        """Write plan for user_id. Returns SKIPPED for a deliberate no-op."""
        raise NotImplementedError


class DirectWriter(PlanWriteStrategy):
    """Targeted update of plan and updated_at on the profile record."""

    name = "direct_write"

    async def apply(self, user_id, plan, *, actor_id=None):
        await self.runner.run(self.store.update_profile_plan, user_id, plan, modified_at=_utcnow())
        return None


class MetadataSyncWriter(PlanWriteStrategy):
    """Copy the profile plan into the identity metadata record."""

    name = "metadata_sync"

    async def apply(self, user_id, plan, *, actor_id=None):
        copied = await self.runner.run(self.store.sync_identity_from_profile, user_id, synced_at=_utcnow())
        if copied != plan:
            raise StoreRejectedError(f"Profile holds {copied!r}, identity synced to it instead of {plan!r}")
        return None


class ResetEscalator(PlanWriteStrategy):
    """Rebuild the profile record from its known columns with the new plan."""

    name = "reset_profile"

    async def apply(self, user_id, plan, *, actor_id=None):
        await self.runner.run(self.store.rebuild_profile, user_id, plan, modified_at=_utcnow())
        return None


class SessionPatcher(PlanWriteStrategy):
    """
    Patch the acting user's own session view of their plan.

    Only applies when the actor is the account owner; for admin or repair
    calls it is a no-op that still counts as attempted.
    """

    name = "session_patch"

    def __init__(self, store: PlanStoreClient, runner: StoreCallRunner, cache: Optional[SessionCache] = None):
        super().__init__(store, runner)
        self.cache = cache if cache is not None else session_cache

    async def apply(self, user_id, plan, *, actor_id=None):
        if actor_id is None or actor_id != user_id:
            return SKIPPED
        values = {"plan": plan, "plan_updated_at": _utcnow().isoformat()}
        self.cache.patch(user_id, values)
        await self.runner.run(self.store.merge_identity_metadata, user_id, values)
        return None


class EmergencyBypass(PlanWriteStrategy):
    """
    Raw parameterized dual write, run only after a failed verification.

    Both arguments are re-validated here even though the coordinator already
    did it, since this path skips every backend procedure.
    """

    name = "emergency_bypass"

    def __init__(self, store: PlanStoreClient, runner: StoreCallRunner, enabled: Optional[bool] = None):
        super().__init__(store, runner)
        self.enabled = settings.PLAN_EMERGENCY_BYPASS_ENABLED if enabled is None else enabled

    async def apply(self, user_id, plan, *, actor_id=None):
        if not self.enabled:
            return SKIPPED
        user_id = validate_user_id(user_id)
        plan = validate_plan(plan).value
        now = _utcnow()

        errors = []
        try:
            affected = await self.runner.run(
                self.store.execute_raw,
                BYPASS_PROFILE_STATEMENT,
                {"plan": plan, "modified_at": now, "user_id": user_id},
            )
            if affected == 0:
                raise StoreRejectedError(f"Raw profile update matched no row for {user_id}")
        except Exception as exc:
            logger.warning(
                "plan.bypass.profile_failed",
                extra={"user_id": user_id, "plan": plan, "error_code": getattr(exc, "code", "error")},
            )
            errors.append(exc)

        identity_params = {"plan": plan, "synced_at": now, "user_id": user_id}
        try:
            affected = await self.runner.run(self.store.execute_raw, BYPASS_IDENTITY_STATEMENT, identity_params)
            if affected == 0:
                await self.runner.run(self.store.execute_raw, BYPASS_IDENTITY_INSERT_STATEMENT, identity_params)
        except Exception as exc:
            logger.warning(
                "plan.bypass.identity_failed",
                extra={"user_id": user_id, "plan": plan, "error_code": getattr(exc, "code", "error")},
            )
            errors.append(exc)

        if errors:
            raise errors[0]
        return None
