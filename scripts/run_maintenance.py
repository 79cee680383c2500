#!/usr/bin/env python3
"""Maintenance job for Railway Cron.

Schedule:
- Run once per day in Railway Cron Jobs.

Behavior:
- Evict expired external-API cache entries from the document store.
- Archive (delete) activity logs older than LOG_ARCHIVE_DAYS.
- Safe to overlap with a previous run: already-deleted entries are skipped.

Run (local / Railway):
  python -m scripts.run_maintenance

Optional env vars:
  LOG_ARCHIVE_DAYS=90
"""

import asyncio
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from factiony.services.coordinator import Coordinator  # noqa: E402
from factiony.settings import get_settings  # noqa: E402

logger = logging.getLogger("factiony.maintenance")


async def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    coordinator = Coordinator.from_settings(settings)
    try:
        report = await coordinator.run_maintenance(settings.log_archive_days)
    finally:
        await coordinator.aclose()

    # Final output for Railway logs (single JSON-ish blob)
    print(
        {
            "ok": report.ok,
            "skipped": report.skipped,
            "cleared_cache": report.cleared_cache,
            "archived_logs": report.archived_logs,
            "threshold_days": settings.log_archive_days,
            "error": str(report.error) if report.error else None,
        }
    )
    if report.skipped:
        logger.warning("Document store disabled; maintenance skipped")
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
