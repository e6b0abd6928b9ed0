"""
Plan store protocol.

Defines the capabilities the reconciliation cascade needs from its backend:
the primary profile store, the identity metadata store, the audit store and a
raw parameterized statement hatch. Swapping the backend (SQL, fakes in tests)
does not change the cascade.
"""
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol

from plansync.models.plan import ChangeLogEntry


class PlanStoreClient(Protocol):
    """
    Protocol for plan stores.

    All methods are synchronous and may block on network I/O; callers bound
    them with a timeout. Implementations raise StoreError subclasses and must
    not expose vendor error codes as a contract.
    """

    def read_profile_plan(self, user_id: str) -> Optional[str]:
        """
        Read the plan held by the profile record.

        Raises:
            RecordNotFoundError: If no profile exists for user_id
            StoreError: On any other failure
        """
        ...

    def update_profile_plan(self, user_id: str, plan: str, *, modified_at: datetime) -> None:
        """
        Targeted update of plan and updated_at on the profile record.

        Raises:
            StoreRejectedError: If the update is refused or matches no row
        """
        ...

    def rebuild_profile(self, user_id: str, plan: str, *, modified_at: datetime) -> None:
        """Rebuild the full profile record from its known columns, then set plan."""
        ...

    def sync_identity_from_profile(self, user_id: str, *, synced_at: datetime) -> Optional[str]:
        """
        Copy the profile plan into the identity metadata record.

        Returns:
            The plan value that was copied
        """
        ...

    def merge_identity_metadata(self, user_id: str, values: Mapping[str, Any]) -> None:
        """Merge keys into the identity metadata bag ("plan" also updates the plan column)."""
        ...

    def read_identity_plan(self, user_id: str) -> Optional[str]:
        """Read the denormalized plan from identity metadata."""
        ...

    def execute_raw(self, statement: str, params: Mapping[str, Any]) -> int:
        """
        Execute a parameterized statement.

        Dynamic values must only travel in params, never in statement text.

        Returns:
            Number of affected rows
        """
        ...

    def append_change_log(self, entry: ChangeLogEntry) -> None:
        """
        Append one plan change log entry.

        Raises:
            AuditWriteError: If the entry could not be written
        """
        ...

    def list_change_logs(self, user_id: str, limit: int = 100) -> List[ChangeLogEntry]:
        """Return entries for user_id, newest first."""
        ...

    def list_accounts(
        self,
        plan: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Optional[str]]]:
        """
        Return [{"user_id", "profile_plan", "identity_plan"}] ordered by user_id.

        `plan` keeps accounts whose profile holds that plan; `search` keeps
        accounts whose user id, display name or email contains it (any case).
        """
        ...

    def describe_schema(self) -> Dict[str, List[str]]:
        """Return {table_name: [column names]} for the plan tables."""
        ...


class StoreError(Exception):
    """Base exception for plan store errors."""
    code = "store_error"


class RecordNotFoundError(StoreError):
    code = "record_not_found"


class StoreRejectedError(StoreError):
    """The store refused a write (constraint, trigger, schema drift...)."""
    code = "store_rejected"


class StoreTimeoutError(StoreError):
    code = "store_timeout"


class AuditWriteError(StoreError):
    code = "audit_write_failed"
