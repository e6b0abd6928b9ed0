"""
SQLAlchemy implementation of the plan store protocol.

The profile, identity metadata and change log tables live in the same
database. The "procedures" (identity sync, profile rebuild) run as single
transactions here instead of server-side functions so they behave the same on
Postgres and SQLite.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import DateTime, bindparam, delete, insert, inspect, or_, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from plansync.core.database import (
    get_db_session,
    get_engine,
    identity_metadata,
    plan_change_logs,
    profiles,
)
from plansync.features.plans.store import (
    AuditWriteError,
    RecordNotFoundError,
    StoreError,
    StoreRejectedError,
)
from plansync.models.plan import ChangeLogEntry

logger = logging.getLogger("plansync.plans.sql_store")

# Columns carried over when a profile row is rebuilt
_PROFILE_COLUMNS = ("display_name", "email", "role", "created_at")


class SqlStoreClient:
    """PlanStoreClient backed by SQLAlchemy Core."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._engine is None:
            with get_db_session() as session:
                yield session
            return
        session = Session(self._engine)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _translate(self, op: str, error_cls=StoreError) -> Iterator[None]:
        try:
            yield
        except StoreError:
            raise
        except SQLAlchemyError as exc:
            raise error_cls(f"{op} failed: {exc.__class__.__name__}: {exc}") from exc

    # ------------------------------------------------------------------
    # Primary profile store
    # ------------------------------------------------------------------

    def read_profile_plan(self, user_id: str) -> Optional[str]:
        with self._translate("read_profile_plan"), self._session() as session:
            row = session.execute(
                select(profiles.c.plan).where(profiles.c.user_id == user_id)
            ).first()
        if row is None:
            raise RecordNotFoundError(f"Profile not found: {user_id}")
        return row.plan

    def update_profile_plan(self, user_id: str, plan: str, *, modified_at: datetime) -> None:
        with self._translate("update_profile_plan", StoreRejectedError), self._session() as session:
            result = session.execute(
                update(profiles)
                .where(profiles.c.user_id == user_id)
                .values(plan=plan, updated_at=modified_at)
            )
            if result.rowcount == 0:
                raise StoreRejectedError(f"No profile row updated for {user_id}")

    def rebuild_profile(self, user_id: str, plan: str, *, modified_at: datetime) -> None:
        with self._translate("rebuild_profile", StoreRejectedError), self._session() as session:
            row = session.execute(
                select(profiles).where(profiles.c.user_id == user_id)
            ).first()
            if row is None:
                raise RecordNotFoundError(f"Profile not found: {user_id}")
            values = {col: row._mapping[col] for col in _PROFILE_COLUMNS}
            session.execute(delete(profiles).where(profiles.c.user_id == user_id))
            session.execute(
                insert(profiles).values(
                    user_id=user_id,
                    plan=plan,
                    updated_at=modified_at,
                    **values,
                )
            )

    # ------------------------------------------------------------------
    # Identity metadata store
    # ------------------------------------------------------------------

    def sync_identity_from_profile(self, user_id: str, *, synced_at: datetime) -> Optional[str]:
        with self._translate("sync_identity_from_profile"), self._session() as session:
            profile = session.execute(
                select(profiles.c.plan).where(profiles.c.user_id == user_id)
            ).first()
            if profile is None:
                raise RecordNotFoundError(f"Profile not found: {user_id}")
            self._write_identity(
                session,
                user_id,
                {"plan": profile.plan, "plan_updated_at": synced_at.isoformat()},
                synced_at,
            )
            return profile.plan

    def merge_identity_metadata(self, user_id: str, values: Mapping[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        with self._translate("merge_identity_metadata"), self._session() as session:
            self._write_identity(session, user_id, dict(values), now)

    def _write_identity(self, session: Session, user_id: str, values: Dict[str, Any], synced_at: datetime) -> None:
        existing = session.execute(
            select(identity_metadata).where(identity_metadata.c.user_id == user_id)
        ).first()
        merged = dict(existing._mapping["metadata"] or {}) if existing is not None else {}
        merged.update(values)

        row_values: Dict[str, Any] = {"metadata": merged}
        if "plan" in values:
            row_values["plan"] = values["plan"]
            row_values["plan_synced_at"] = synced_at

        if existing is None:
            session.execute(insert(identity_metadata).values(user_id=user_id, **row_values))
        else:
            session.execute(
                update(identity_metadata)
                .where(identity_metadata.c.user_id == user_id)
                .values(**row_values)
            )

    def read_identity_plan(self, user_id: str) -> Optional[str]:
        with self._translate("read_identity_plan"), self._session() as session:
            row = session.execute(
                select(identity_metadata.c.plan).where(identity_metadata.c.user_id == user_id)
            ).first()
        return row.plan if row is not None else None

    # ------------------------------------------------------------------
    # Raw statement hatch
    # ------------------------------------------------------------------

    def execute_raw(self, statement: str, params: Mapping[str, Any]) -> int:
        with self._translate("execute_raw", StoreRejectedError), self._session() as session:
            typed = [
                bindparam(key, type_=DateTime(timezone=True))
                for key, value in params.items()
                if isinstance(value, datetime)
            ]
            result = session.execute(text(statement).bindparams(*typed), dict(params))
            return result.rowcount

    # ------------------------------------------------------------------
    # Audit store
    # ------------------------------------------------------------------

    def append_change_log(self, entry: ChangeLogEntry) -> None:
        with self._translate("append_change_log", AuditWriteError), self._session() as session:
            session.execute(
                insert(plan_change_logs).values(
                    user_id=entry.user_id,
                    old_plan=entry.old_plan,
                    new_plan=entry.new_plan,
                    change_date=entry.change_date,
                    change_method=entry.change_method,
                )
            )

    def list_change_logs(self, user_id: str, limit: int = 100) -> List[ChangeLogEntry]:
        with self._translate("list_change_logs"), self._session() as session:
            rows = session.execute(
                select(plan_change_logs)
                .where(plan_change_logs.c.user_id == user_id)
                .order_by(plan_change_logs.c.change_date.desc(), plan_change_logs.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [
            ChangeLogEntry(
                user_id=row.user_id,
                old_plan=row.old_plan,
                new_plan=row.new_plan,
                change_date=row.change_date,
                change_method=row.change_method,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Listing and diagnostics
    # ------------------------------------------------------------------

    def list_accounts(
        self,
        plan: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Optional[str]]]:
        query = (
            select(
                profiles.c.user_id,
                profiles.c.plan.label("profile_plan"),
                identity_metadata.c.plan.label("identity_plan"),
            )
            .select_from(
                profiles.outerjoin(
                    identity_metadata,
                    identity_metadata.c.user_id == profiles.c.user_id,
                )
            )
            .order_by(profiles.c.user_id)
        )
        if plan is not None:
            query = query.where(profiles.c.plan == plan)
        if search:
            query = query.where(or_(
                profiles.c.user_id.icontains(search, autoescape=True),
                profiles.c.display_name.icontains(search, autoescape=True),
                profiles.c.email.icontains(search, autoescape=True),
            ))

        with self._translate("list_accounts"), self._session() as session:
            rows = session.execute(query).fetchall()
        return [
            {
                "user_id": row.user_id,
                "profile_plan": row.profile_plan,
                "identity_plan": row.identity_plan,
            }
            for row in rows
        ]

    def describe_schema(self) -> Dict[str, List[str]]:
        engine = self._engine or get_engine()
        with self._translate("describe_schema"):
            inspector = inspect(engine)
            schema: Dict[str, List[str]] = {}
            for table in (profiles, identity_metadata, plan_change_logs):
                if not inspector.has_table(table.name):
                    schema[table.name] = []
                    continue
                schema[table.name] = [col["name"] for col in inspector.get_columns(table.name)]
        return schema
