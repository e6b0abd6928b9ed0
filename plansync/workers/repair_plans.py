"""
Plan repair worker.

Re-runs the reconciliation cascade for every account (or one account),
targeting the plan its profile already holds. Dry run by default: only
reports accounts whose identity metadata has drifted.

    python -m plansync.workers.repair_plans [--user-id ID] [--dry-run|--live] [--concurrency N]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
from typing import Optional

from plansync.core.config import settings
from plansync.core.logging import configure_logging
from plansync.features.plans.service import repair_all
from plansync.models.reconciliation import RepairReport


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def run_repair(
    user_id: Optional[str] = None,
    *,
    dry_run: bool = True,
    concurrency: Optional[int] = None,
) -> RepairReport:
    return asyncio.run(repair_all(user_id=user_id, dry_run=dry_run, concurrency=concurrency))


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Repair plan drift between profile and identity metadata.")
    parser.add_argument("--user-id", dest="user_id", help="Optional user ID to repair.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Report drift without writing.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Reconcile every account.")
    parser.add_argument(
        "--concurrency",
        dest="concurrency",
        type=int,
        default=settings.PLAN_REPAIR_CONCURRENCY,
        help="Maximum reconciles in flight.",
    )
    parser.set_defaults(dry_run=_parse_bool(os.getenv("PLANSYNC_REPAIR_DRY_RUN", "1"), True))
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    report = run_repair(args.user_id, dry_run=args.dry_run, concurrency=args.concurrency)
    print(json.dumps(report.model_dump(mode="json"), indent=2))
    return 0 if not (report.failed or report.timed_out) else 1


if __name__ == "__main__":
    raise SystemExit(main())
