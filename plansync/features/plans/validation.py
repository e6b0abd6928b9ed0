"""Input validation for plan reconciliation. Runs before any store is touched."""
import re
from typing import Any

from plansync.core.errors import InvalidArgumentError
from plansync.models.plan import PlanTier

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.:@\-]{1,100}$")


def validate_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidArgumentError("user_id is required")
    user_id = user_id.strip()
    if not _USER_ID_RE.match(user_id):
        raise InvalidArgumentError(f"user_id has an invalid format: {user_id[:40]!r}")
    return user_id


def validate_plan(plan: Any) -> PlanTier:
    if isinstance(plan, PlanTier):
        return plan
    try:
        return PlanTier(str(plan).strip().lower())
    except ValueError:
        raise InvalidArgumentError(
            f"Unknown plan {plan!r}; expected one of {', '.join(PlanTier.values())}"
        )
