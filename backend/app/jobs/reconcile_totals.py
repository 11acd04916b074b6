from __future__ import annotations

import argparse
import logging

from sqlalchemy.orm import Session

from app.core.db import SessionLocal
from app.core.metrics import record_job_run
from app.core.payouts import sync_affiliate_totals, sync_closer_totals


logger = logging.getLogger(__name__)


def run_reconcile_totals(
    db: Session,
    *,
    affiliate_id: int | None = None,
    include_closers: bool = True,
) -> dict[str, int]:
    affiliates = sync_affiliate_totals(db, affiliate_id=affiliate_id)
    summary = {
        "affiliates_synced": len(affiliates),
        "affiliates_corrected": sum(1 for item in affiliates if item.changed),
        "closers_synced": 0,
        "closers_corrected": 0,
    }
    if include_closers and affiliate_id is None:
        closers = sync_closer_totals(db)
        summary["closers_synced"] = len(closers)
        summary["closers_corrected"] = sum(1 for item in closers if item.changed)
    return summary


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute cached affiliate and closer totals from source rows.")
    parser.add_argument("--affiliate-id", type=int, default=None, help="Reconcile a single affiliate.")
    parser.add_argument(
        "--skip-closers",
        action="store_true",
        help="Only reconcile affiliate counters.",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    success = True
    try:
        with SessionLocal() as db:
            summary = run_reconcile_totals(
                db,
                affiliate_id=args.affiliate_id,
                include_closers=not args.skip_closers,
            )
        logger.info("Totals reconciliation complete. %s", summary)
    except Exception:
        success = False
        logger.exception("Totals reconciliation job failed")
        raise
    finally:
        record_job_run(job_name="reconcile_totals", success=success)


if __name__ == "__main__":
    main()
