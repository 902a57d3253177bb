"""Retention sweeper: bounds the message table to a fixed horizon."""
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo
import asyncio
import logging

from dealership.chat.store import MessageStore
from dealership.events.bus import event_bus, CONVERSATIONS_CHANGED
from dealership.models.models import utcnow

logger = logging.getLogger(__name__)

# A tick closer than this is treated as the one that just ran
MIN_GAP = timedelta(minutes=1)


async def sweep_once(store: MessageStore, retention: timedelta, now: Optional[datetime] = None) -> int:
    """Purge rows older than ``now - retention``; announce once if any went."""
    horizon = (now or utcnow()) - retention
    deleted = store.purge_older_than(horizon)
    if deleted:
        logger.info(f"Retention sweep deleted {deleted} message(s) older than {horizon.isoformat()}")
        await event_bus.emit(CONVERSATIONS_CHANGED)
    else:
        logger.debug(f"Retention sweep found nothing older than {horizon.isoformat()}")
    return deleted


def seconds_until_next_run(hour: int, tz: ZoneInfo, now: Optional[datetime] = None) -> float:
    """
    Seconds from ``now`` to the next ``hour``:00 local time in ``tz``.

    A sleep that wakes just short of the tick would otherwise schedule a
    second sweep moments later; ticks within ``MIN_GAP`` roll to the next day.
    """
    local_now = (now or datetime.now(tz)).astimezone(tz)
    next_run = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run - local_now < MIN_GAP:
        next_run += timedelta(days=1)
    return (next_run - local_now).total_seconds()


async def retention_loop(store: MessageStore, retention: timedelta, hour: int, timezone_name: str):
    """Sweep at startup, then daily at ``hour`` local time. Runs until cancelled."""
    tz = ZoneInfo(timezone_name)
    while True:
        try:
            await sweep_once(store, retention)
        except Exception as e:
            # Retried on the next scheduled tick only
            logger.error(f"Retention sweep failed: {e}", exc_info=True)
        await asyncio.sleep(seconds_until_next_run(hour, tz))
