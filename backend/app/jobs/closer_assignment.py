from __future__ import annotations

import argparse
import logging

from sqlalchemy.orm import Session

from app.core.closer_assignment import assign_unassigned_appointments
from app.core.db import SessionLocal
from app.core.errors import NoEligibleClosersError
from app.core.metrics import record_job_run


logger = logging.getLogger(__name__)


def run_closer_assignment(db: Session) -> int:
    try:
        run = assign_unassigned_appointments(db)
    except NoEligibleClosersError as exc:
        # Appointments stay unassigned and are picked up on the next run.
        logger.warning(
            "No eligible closers; leaving appointments unassigned. pending=%s",
            exc.details.get("unassigned_count"),
        )
        return 0
    return len(run.assigned)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assign unassigned appointments to closers round-robin.")
    return parser.parse_args()


def main() -> None:
    _parse_args()
    assigned = 0
    success = True
    try:
        with SessionLocal() as db:
            assigned = run_closer_assignment(db)
        logger.info("Closer assignment run complete. assigned=%s", assigned)
    except Exception:
        success = False
        logger.exception("Closer assignment job failed")
        raise
    finally:
        record_job_run(job_name="closer_assignment", success=success)


if __name__ == "__main__":
    main()
