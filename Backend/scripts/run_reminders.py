#!/usr/bin/env python3
"""
Run Reminder Scan

Entry point for the external scheduler (cron) that sends appointment
reminders for bookings starting within the lookahead window.

Usage:
    cd Backend
    python scripts/run_reminders.py

    # Only list what would be sent:
    python scripts/run_reminders.py --dry-run

    # Replay a scan as of a given instant:
    python scripts/run_reminders.py --now 2026-03-01T17:00:00+00:00

Requirements:
    - Database connection (DATABASE_URL env var)
    - TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN / TWILIO_FROM_NUMBER for sending
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timedelta, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from app.booking import SqlBookingStore, run_reminder_scan, scan_due_reminders
from app.core.config import get_settings
from app.core.db import AsyncSessionLocal, engine
from app.notifications import ReminderDispatcher, SqlReminderLedger

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def parse_now(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def run(now: datetime, lookahead: timedelta, dry_run: bool) -> int:
    store = SqlBookingStore(AsyncSessionLocal)
    try:
        if dry_run:
            candidates = await scan_due_reminders(store, now, lookahead)
            for candidate in candidates:
                roles = ", ".join(r.role for r in candidate.recipients)
                logger.info(
                    f"Would remind booking {candidate.booking.id} "
                    f"at {candidate.booking.start_at_utc.isoformat()} ({roles})"
                )
            logger.info(f"{len(candidates)} reminder(s) due")
            return 0

        dispatcher = ReminderDispatcher(SqlReminderLedger(AsyncSessionLocal))
        result = await run_reminder_scan(store, dispatcher, now, lookahead)
        return 1 if result.failed else 0
    finally:
        await engine.dispose()


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Send reminders for upcoming bookings")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List due reminders without sending anything",
    )
    parser.add_argument(
        "--now",
        default=None,
        help="ISO-8601 instant to scan from (default: current time)",
    )
    parser.add_argument(
        "--lookahead-minutes",
        type=int,
        default=settings.reminder_lookahead_minutes,
        help="Window size in minutes (default: REMINDER_LOOKAHEAD_MINUTES)",
    )
    args = parser.parse_args()

    exit_code = asyncio.run(
        run(parse_now(args.now), timedelta(minutes=args.lookahead_minutes), args.dry_run)
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
