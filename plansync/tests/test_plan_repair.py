"""Bulk repair and diagnostics over the in-memory store."""
import asyncio

import pytest

from plansync.core.errors import AccountNotFoundError, InvalidArgumentError
from plansync.features.plans import service
from plansync.features.plans.service import diagnose, repair_all


@pytest.mark.asyncio
async def test_dry_run_reports_drift_without_writing(store, coordinator):
    store.add_account("a1", "pro", identity_plan="free")
    store.add_account("b2", "member")
    store.add_account("c3", None)

    report = await repair_all(dry_run=True, coordinator=coordinator)

    assert report.dry_run is True
    assert report.total == 3
    assert report.drifted == ["a1"]
    assert report.skipped == 1
    assert [(f.user_id, f.reason) for f in report.failures] == [("c3", "invalid_profile_plan")]
    assert store.write_calls == 0


@pytest.mark.asyncio
async def test_live_repair_reconciles_to_profile_plan(store, coordinator):
    store.add_account("a1", "pro", identity_plan="free")
    store.add_account("b2", "elite", identity_plan=None)
    store.add_account("c3", "legacy_gold")

    report = await repair_all(dry_run=False, coordinator=coordinator)

    assert report.succeeded == 2
    assert report.skipped == 1
    assert report.failed == 0
    assert store.identity_plan("a1") == "pro"
    assert store.identity_plan("b2") == "elite"
    assert {e.change_method for e in store.change_logs} == {"repair"}
    assert len(store.change_logs) == 2


@pytest.mark.asyncio
async def test_repair_concurrency_is_bounded(store, coordinator, monkeypatch):
    for i in range(6):
        store.add_account(f"user{i}", "member")

    in_flight = 0
    peak = 0
    original = coordinator.reconcile

    async def tracking_reconcile(*args, **kwargs):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        try:
            return await original(*args, **kwargs)
        finally:
            in_flight -= 1

    monkeypatch.setattr(coordinator, "reconcile", tracking_reconcile)

    report = await repair_all(dry_run=False, concurrency=2, coordinator=coordinator)

    assert report.succeeded == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_repair_item_timeout_is_reported(store, coordinator):
    store.add_account("slow", "pro", identity_plan="free")
    store.add_account("fast", "pro", identity_plan="free")
    original = coordinator.reconcile

    async def maybe_slow(user_id, plan, **kwargs):
        if user_id == "slow":
            await asyncio.sleep(1.0)
        return await original(user_id, plan, **kwargs)

    coordinator.reconcile = maybe_slow

    report = await repair_all(dry_run=False, item_timeout=0.1, coordinator=coordinator)

    assert report.succeeded == 1
    assert report.timed_out == 1
    assert [(f.user_id, f.reason) for f in report.failures] == [("slow", "timeout")]


@pytest.mark.asyncio
async def test_repair_records_failed_verdicts(store, coordinator):
    store.add_account("u1", "pro", identity_plan="free")
    store.reject_profile_writes = True
    store.fail("sync_identity_from_profile")
    store.fail("read_profile_plan")

    report = await repair_all(dry_run=False, coordinator=coordinator)

    assert report.failed == 1
    assert report.failures[0].reason == "reconciliation_failed"


@pytest.mark.asyncio
async def test_repair_single_user(store, coordinator):
    store.add_account("a1", "pro", identity_plan="free")
    store.add_account("b2", "pro", identity_plan="free")

    report = await repair_all(user_id="a1", dry_run=False, coordinator=coordinator)

    assert report.total == 1
    assert store.identity_plan("a1") == "pro"
    assert store.identity_plan("b2") == "free"

    with pytest.raises(AccountNotFoundError):
        await repair_all(user_id="ghost", coordinator=coordinator)


@pytest.mark.asyncio
async def test_repair_rejects_zero_concurrency(coordinator):
    with pytest.raises(InvalidArgumentError):
        await repair_all(concurrency=0, coordinator=coordinator)


@pytest.mark.asyncio
async def test_diagnose_flags_drift_and_retired_columns(store, coordinator):
    store.add_account("a1", "pro", identity_plan="free")
    store.add_account("b2", "free")
    store.add_account("c3", "bogus")
    store.extra_profile_columns.append("plan_expires_at")

    report = await diagnose(coordinator)

    assert report["retired_columns_present"] == ["plan_expires_at"]
    assert report["drifted_accounts"] == ["a1"]
    assert report["invalid_plans"] == ["c3"]
    assert report["accounts_checked"] == 3
    assert report["missing_columns"] == {}


@pytest.mark.asyncio
async def test_service_defaults_to_shared_coordinator(store, coordinator, monkeypatch):
    monkeypatch.setattr(service, "_coordinator", coordinator)
    store.add_account("u1", "free")

    result = await service.reconcile("u1", "member")
    history = await service.get_change_history("u1")

    assert result.success
    assert [e.new_plan for e in history] == ["member"]
