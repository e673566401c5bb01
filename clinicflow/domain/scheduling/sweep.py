"""Nightly recall sweep: wake snoozed recalls, expire stale suggestions"""

import logging
from datetime import date, timedelta
from typing import Dict

from .interfaces import RecallStore

logger = logging.getLogger(__name__)


async def run_recall_sweep(store: RecallStore, today: date, grace_days: int) -> Dict[str, int]:
    """
    - snoozed recalls whose ``snoozeUntil`` has arrived go back to ``suggested``
    - suggested recalls more than ``grace_days`` past their due date expire

    Returns counts per transition. A failing recall is logged and skipped.
    """
    reactivated = 0
    expired = 0

    for recall in await store.list_recalls_by_status("snoozed"):
        if recall.snoozeUntil is None or recall.snoozeUntil > today:
            continue
        try:
            await store.update_recall(recall.id, {"status": "suggested", "snoozeUntil": None})
            reactivated += 1
        except Exception as e:
            logger.error(f"❌ Could not reactivate recall {recall.id}: {e}")

    cutoff = today - timedelta(days=grace_days)
    for recall in await store.list_recalls_by_status("suggested"):
        if recall.dueDate >= cutoff:
            continue
        try:
            await store.update_recall(recall.id, {"status": "expired"})
            expired += 1
        except Exception as e:
            logger.error(f"❌ Could not expire recall {recall.id}: {e}")

    logger.info(f"🧹 Recall sweep for {today}: {reactivated} reactivated, {expired} expired")
    return {"reactivated": reactivated, "expired": expired}
