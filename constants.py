import os
import uuid

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

# Identifies this server process; connection records carry it so frames can be
# routed to the instance holding the socket.
INSTANCE_ID = os.getenv("INSTANCE_ID") or uuid.uuid4().hex

CHAT_ROOM_RADIUS = 500  # meters
INACTIVITY_TIMEOUT_MS = 30 * 60 * 1000  # 30 minutes
MAX_PARTICIPANTS = 20
MESSAGE_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days

REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", 5 * 60))
REAPER_BATCH_SIZE = int(os.getenv("REAPER_BATCH_SIZE", 500))
ROOM_UPDATE_MAX_RETRIES = int(os.getenv("ROOM_UPDATE_MAX_RETRIES", 10))
SCAN_PAGE_SIZE = int(os.getenv("SCAN_PAGE_SIZE", 500))
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", 5))

BACKGROUND_TASKS_ENABLED = os.getenv("BACKGROUND_TASKS_ENABLED", "true").lower() in ("1", "true", "yes")
