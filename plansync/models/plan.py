"""
plansync/models/plan.py

Plan tiers and the plan change log entry.

Plans are a closed set of capability tiers. The same value is stored in the
profile record (authoritative) and copied into identity metadata.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PlanTier(str, Enum):
    """Subscription tier attached to a user account."""
    FREE = "free"
    MEMBER = "member"
    PRO = "pro"
    ELITE = "elite"

    @classmethod
    def values(cls) -> list[str]:
        return [tier.value for tier in cls]


class AccountPlan(BaseModel):
    """Plan values currently held by both stores for one account."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    profile_plan: Optional[str] = None
    identity_plan: Optional[str] = None

    @property
    def consistent(self) -> bool:
        return self.profile_plan is not None and self.profile_plan == self.identity_plan


class ChangeLogEntry(BaseModel):
    """
    Immutable record of one requested plan transition.

    One entry is appended per reconciliation attempt, whatever its outcome.
    old_plan is None when the previous plan could not be read.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    old_plan: Optional[str] = None
    new_plan: str
    change_date: datetime
    change_method: str = "api"
