"""SqlStoreClient against a SQLite database."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, insert, select, text

from plansync.core.database import engine_options, identity_metadata, metadata, plan_change_logs, profiles
from plansync.features.plans.coordinator import PlanReconciliationCoordinator
from plansync.features.plans.service import diagnose
from plansync.features.plans.sql_store import SqlStoreClient
from plansync.features.plans.store import RecordNotFoundError, StoreRejectedError
from plansync.features.plans.strategies import BYPASS_PROFILE_STATEMENT
from plansync.models.plan import ChangeLogEntry


def seed(engine, user_id, plan="free", identity_plan="same", **profile):
    with engine.begin() as conn:
        conn.execute(insert(profiles).values(user_id=user_id, plan=plan, **profile))
        if identity_plan is not None:
            conn.execute(
                insert(identity_metadata).values(
                    user_id=user_id,
                    plan=plan if identity_plan == "same" else identity_plan,
                    metadata={"theme": "dark"},
                )
            )


def profile_row(engine, user_id):
    with engine.connect() as conn:
        return conn.execute(select(profiles).where(profiles.c.user_id == user_id)).first()


def identity_row(engine, user_id):
    with engine.connect() as conn:
        return conn.execute(select(identity_metadata).where(identity_metadata.c.user_id == user_id)).first()


def test_read_profile_plan_missing_account(sql_store):
    with pytest.raises(RecordNotFoundError):
        sql_store.read_profile_plan("nobody")


def test_update_profile_plan_touches_plan_only(sql_engine, sql_store):
    seed(sql_engine, "u1", display_name="Ada", email="ada@example.com")
    now = datetime.now(timezone.utc)

    sql_store.update_profile_plan("u1", "pro", modified_at=now)

    row = profile_row(sql_engine, "u1")
    assert row.plan == "pro"
    assert row.display_name == "Ada"
    assert row.email == "ada@example.com"


def test_update_profile_plan_without_row_is_rejected(sql_store):
    with pytest.raises(StoreRejectedError):
        sql_store.update_profile_plan("nobody", "pro", modified_at=datetime.now(timezone.utc))


def test_rebuild_profile_keeps_known_columns(sql_engine, sql_store):
    seed(sql_engine, "u1", display_name="Ada", email="ada@example.com", role="admin")

    sql_store.rebuild_profile("u1", "elite", modified_at=datetime.now(timezone.utc))

    row = profile_row(sql_engine, "u1")
    assert (row.plan, row.display_name, row.email, row.role) == ("elite", "Ada", "ada@example.com", "admin")


def test_sync_identity_copies_profile_plan_and_keeps_metadata(sql_engine, sql_store):
    seed(sql_engine, "u1", plan="member", identity_plan="free")

    copied = sql_store.sync_identity_from_profile("u1", synced_at=datetime.now(timezone.utc))

    row = identity_row(sql_engine, "u1")
    assert copied == "member"
    assert row.plan == "member"
    assert row.plan_synced_at is not None
    assert row.metadata["plan"] == "member"
    assert row.metadata["theme"] == "dark"


def test_merge_identity_metadata_creates_record(sql_engine, sql_store):
    seed(sql_engine, "u1", identity_plan=None)

    sql_store.merge_identity_metadata("u1", {"plan": "pro", "plan_updated_at": "2026-01-01T00:00:00+00:00"})

    assert sql_store.read_identity_plan("u1") == "pro"
    assert identity_row(sql_engine, "u1").metadata["plan_updated_at"] == "2026-01-01T00:00:00+00:00"


def test_execute_raw_binds_hostile_values_literally(sql_engine, sql_store):
    seed(sql_engine, "u1")
    seed(sql_engine, "u2")

    affected = sql_store.execute_raw(
        BYPASS_PROFILE_STATEMENT,
        {"plan": "elite", "modified_at": datetime.now(timezone.utc), "user_id": "u1' OR '1'='1"},
    )

    assert affected == 0
    assert sql_store.read_profile_plan("u1") == "free"
    assert sql_store.read_profile_plan("u2") == "free"


def test_change_logs_newest_first(sql_store):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i, plan in enumerate(["member", "pro", "elite"]):
        sql_store.append_change_log(
            ChangeLogEntry(user_id="u1", old_plan="free", new_plan=plan, change_date=base + timedelta(days=i))
        )
    sql_store.append_change_log(ChangeLogEntry(user_id="u2", new_plan="pro", change_date=base))

    entries = sql_store.list_change_logs("u1")

    assert [e.new_plan for e in entries] == ["elite", "pro", "member"]
    assert sql_store.list_change_logs("u1", limit=1)[0].new_plan == "elite"


def test_list_accounts_includes_missing_identity(sql_engine, sql_store):
    seed(sql_engine, "a1", "pro")
    seed(sql_engine, "b2", "free", identity_plan=None)

    accounts = sql_store.list_accounts()

    assert accounts == [
        {"user_id": "a1", "profile_plan": "pro", "identity_plan": "pro"},
        {"user_id": "b2", "profile_plan": "free", "identity_plan": None},
    ]
    assert [a["user_id"] for a in sql_store.list_accounts(plan="pro")] == ["a1"]


def test_list_accounts_search_matches_name_and_email(sql_engine, sql_store):
    seed(sql_engine, "u1", display_name="Ada Lovelace", email="ada@example.com")
    seed(sql_engine, "u2", display_name="Grace", email="grace@example.org")
    seed(sql_engine, "u3", display_name="100% Real")

    assert [a["user_id"] for a in sql_store.list_accounts(search="lovelace")] == ["u1"]
    assert [a["user_id"] for a in sql_store.list_accounts(search="EXAMPLE.")] == ["u1", "u2"]
    assert [a["user_id"] for a in sql_store.list_accounts(search="%")] == ["u3"]
    assert sql_store.list_accounts(plan="pro", search="ada") == []


@pytest.mark.asyncio
async def test_cascade_end_to_end(sql_engine, sql_store, session_cache):
    seed(sql_engine, "u1", "free")
    coordinator = PlanReconciliationCoordinator(sql_store, session_cache=session_cache)

    result = await coordinator.reconcile("u1", "elite")

    assert result.success and result.consistent
    assert sql_store.read_identity_plan("u1") == "elite"
    with sql_engine.connect() as conn:
        logs = conn.execute(select(plan_change_logs)).fetchall()
    assert [(r.user_id, r.old_plan, r.new_plan, r.change_method) for r in logs] == [("u1", "free", "elite", "api")]


@pytest.mark.asyncio
async def test_stale_update_trigger_is_escalated_past(sql_engine, sql_store, session_cache):
    seed(sql_engine, "u1", "free")
    with sql_engine.begin() as conn:
        conn.execute(text(
            "CREATE TRIGGER reject_profile_update BEFORE UPDATE ON profiles "
            "BEGIN SELECT RAISE(ABORT, 'record \"new\" has no field \"plan_expires_at\"'); END"
        ))
    coordinator = PlanReconciliationCoordinator(sql_store, session_cache=session_cache)

    result = await coordinator.reconcile("u1", "pro")

    outcomes = {o.name: o.status for o in result.outcomes}
    assert outcomes["direct_write"] == "failed"
    assert outcomes["reset_profile"] == "ok"
    assert result.success is True
    assert result.bypass is None
    assert sql_store.read_profile_plan("u1") == "pro"


@pytest.mark.asyncio
async def test_diagnose_reports_retired_column(tmp_path):
    url = f"sqlite:///{tmp_path / 'legacy.db'}"
    engine = create_engine(url, **engine_options(url))
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE profiles (user_id VARCHAR(100) PRIMARY KEY, display_name TEXT, email VARCHAR(320), "
            "role VARCHAR(50) NOT NULL DEFAULT 'user', plan VARCHAR(20), plan_expires_at TIMESTAMP, "
            "created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP, "
            "updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        ))
    metadata.create_all(bind=engine)
    seed(engine, "u1", "pro", identity_plan="free")
    coordinator = PlanReconciliationCoordinator(SqlStoreClient(engine=engine))

    report = await diagnose(coordinator)

    assert report["retired_columns_present"] == ["plan_expires_at"]
    assert report["missing_columns"] == {}
    assert report["drifted_accounts"] == ["u1"]
    assert report["accounts_checked"] == 1
    engine.dispose()
