"""
plansync/models/reconciliation.py

Transient results produced by a reconciliation call. None of these are persisted.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class StrategyOutcome(BaseModel):
    """Result of one cascade step (or of the emergency bypass)."""
    model_config = ConfigDict(frozen=True)

    name: str
    status: str  # "ok" | "skipped" | "failed"
    error: Optional[str] = None
    error_code: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class VerificationResult(BaseModel):
    """
    Read-after-write check.

    matched only compares the profile store (authoritative). identity_plan is
    informational and None when the identity store could not be read.
    """
    model_config = ConfigDict(frozen=True)

    matched: bool
    profile_plan: Optional[str] = None
    identity_plan: Optional[str] = None


class ReconcileResult(BaseModel):
    """Verdict of one reconciliation call plus diagnostic detail."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    requested_plan: str
    previous_plan: Optional[str] = None
    success: bool
    profile_plan: Optional[str] = None
    identity_plan: Optional[str] = None
    # The two stores are eventually consistent; they may legitimately differ
    consistent: bool = False
    outcomes: List[StrategyOutcome] = Field(default_factory=list)
    bypass: Optional[StrategyOutcome] = None
    verification_attempts: int = 0
    audit_recorded: bool = False

    @property
    def failed_strategies(self) -> List[str]:
        return [o.name for o in self.outcomes if o.failed]


class RepairFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    reason: str


class RepairReport(BaseModel):
    """Summary of a bulk repair run."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    timed_out: int = 0
    dry_run: bool = False
    drifted: List[str] = Field(default_factory=list)
    failures: List[RepairFailure] = Field(default_factory=list)
