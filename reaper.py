import asyncio
import os
from typing import Optional

import redis

from backend import redis_backend
from constants import INACTIVITY_TIMEOUT_MS, REAPER_BATCH_SIZE, REAPER_INTERVAL_SECONDS
from dispatcher import send_to_room
from errors import RoomUpdateConflict
from logging_config import get_logger, setup_logging
from room_state import close_if_idle, is_active, now_ms

logger = get_logger(__name__)


async def sweep_inactive_rooms(now: Optional[int] = None, limit: Optional[int] = REAPER_BATCH_SIZE) -> int:
    """Close active rooms idle for longer than the inactivity timeout and notify them.

    At most ``limit`` rooms are handled per sweep; the rest are picked up on
    the next one. Re-running is harmless. Returns the number of rooms closed.
    """
    now = now if now is not None else now_ms()
    cutoff = now - INACTIVITY_TIMEOUT_MS
    idle_rooms = redis_backend.scan_rooms(
        lambda r: is_active(r) and r.get("lastActivity", 0) < cutoff, limit=limit
    )

    closed = 0
    for room in idle_rooms:
        try:
            # idleness is checked again inside the update; a message may have just landed
            _, changed = redis_backend.update_room(room["id"], close_if_idle(cutoff))
        except RoomUpdateConflict:
            logger.warning(f"Reaper skipped busy room {room['id']}")
            continue
        if changed:
            closed += 1
            logger.info(f"Room {room['id']} closed after inactivity")
            await send_to_room(room["id"], {"type": "room-closed"}, include_closed=True)

    logger.info(f"Closed {closed} inactive rooms")
    return closed


async def run_reaper(interval: float = REAPER_INTERVAL_SECONDS):
    """Background task sweeping every ``interval`` seconds until cancelled."""
    logger.info(f"Starting inactivity reaper, every {interval} seconds")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                await sweep_inactive_rooms()
            except redis.RedisError as e:
                logger.error(f"Reaper sweep failed: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Reaper task cancelled")


if __name__ == "__main__":
    # One sweep, for running from an external scheduler
    setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE", None))
    asyncio.run(sweep_inactive_rooms())
