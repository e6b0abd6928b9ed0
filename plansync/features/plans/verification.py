"""Read-after-write probe for the plan cascade."""
import logging

from plansync.features.plans.runner import StoreCallRunner
from plansync.features.plans.store import PlanStoreClient
from plansync.models.reconciliation import VerificationResult

logger = logging.getLogger("plansync.plans.verification")


class VerificationProbe:
    """Re-read both stores and compare the profile plan to the expected value."""

    def __init__(self, store: PlanStoreClient, runner: StoreCallRunner):
        self.store = store
        self.runner = runner

    async def verify(self, user_id: str, expected: str) -> VerificationResult:
        try:
            profile_plan = await self.runner.run(self.store.read_profile_plan, user_id)
        except Exception as exc:
            logger.warning(
                "plan.verify.profile_unreadable",
                extra={"user_id": user_id, "error_code": getattr(exc, "code", "error")},
            )
            profile_plan = None

        # Identity metadata is informational only; unreadable means unknown
        try:
            identity_plan = await self.runner.run(self.store.read_identity_plan, user_id)
        except Exception as exc:
            logger.info(
                "plan.verify.identity_unreadable",
                extra={"user_id": user_id, "error_code": getattr(exc, "code", "error")},
            )
            identity_plan = None

        return VerificationResult(
            matched=profile_plan is not None and profile_plan == expected,
            profile_plan=profile_plan,
            identity_plan=identity_plan,
        )
