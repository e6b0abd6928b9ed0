"""
Plan change audit log.

One entry per reconciliation attempt. Writing it is best effort: a failing
audit store is logged and counted but never fails the operation.
"""
import logging
from typing import List

from plansync.core.metrics import plan_audit_failures_total
from plansync.features.plans.runner import StoreCallRunner
from plansync.features.plans.store import PlanStoreClient
from plansync.models.plan import ChangeLogEntry

logger = logging.getLogger("plansync.plans.audit")


class AuditLogger:
    def __init__(self, store: PlanStoreClient, runner: StoreCallRunner):
        self.store = store
        self.runner = runner

    async def append(self, entry: ChangeLogEntry) -> bool:
        """Append entry. Returns False (never raises) when the write fails."""
        try:
            await self.runner.run(self.store.append_change_log, entry)
        except Exception as exc:
            plan_audit_failures_total.inc()
            logger.warning(
                "plan.audit.write_failed",
                extra={
                    "user_id": entry.user_id,
                    "plan": entry.new_plan,
                    "error_code": getattr(exc, "code", "error"),
                },
            )
            return False
        return True

    async def history(self, user_id: str, limit: int = 100) -> List[ChangeLogEntry]:
        return await self.runner.run(self.store.list_change_logs, user_id, limit)
