from __future__ import annotations

import argparse
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.commissions import ReleaseResult, get_commission_status, release_due_commissions
from app.core.db import SessionLocal
from app.core.metrics import record_job_run


logger = logging.getLogger(__name__)


def run_commission_release(db: Session, *, now: datetime | None = None, dry_run: bool = False) -> int:
    """Release expired holds; with dry_run only report how many are due."""
    if dry_run:
        status = get_commission_status(db, now=now)
        logger.info(
            "Commission release dry run. due=%s amount=%s",
            status.ready_for_release_count,
            status.ready_for_release_amount,
        )
        return status.ready_for_release_count
    result: ReleaseResult = release_due_commissions(db, now=now)
    return result.released_count


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Release affiliate commissions whose hold has expired.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report commissions due for release without changing them.",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    released = 0
    success = True
    try:
        with SessionLocal() as db:
            released = run_commission_release(db, dry_run=args.dry_run)
        logger.info("Commission release run complete. released=%s", released)
    except Exception:
        success = False
        logger.exception("Commission release job failed")
        raise
    finally:
        record_job_run(job_name="commission_release", success=success)


if __name__ == "__main__":
    main()
