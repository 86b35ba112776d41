import json
import os
from typing import Any

MATCH_TIMEZONE = os.getenv("MATCH_TIMEZONE", "America/New_York")
ALGORITHM_VERSION = os.getenv("ALGORITHM_VERSION", "groups-v2")

MIN_GROUP_SIZE = int(os.getenv("MIN_GROUP_SIZE", "2"))
MAX_GROUP_SIZE = int(os.getenv("MAX_GROUP_SIZE", "4"))
TARGET_GROUP_SIZE = int(os.getenv("TARGET_GROUP_SIZE", "3"))
HISTORY_COOLDOWN_WEEKS = int(os.getenv("HISTORY_COOLDOWN_WEEKS", "6"))
SCHEDULE_DAY_AND_TIME = os.getenv("SCHEDULE_DAY_AND_TIME", "thursday 16:00")

FIRST_PASS_MIN_SCORE = int(os.getenv("FIRST_PASS_MIN_SCORE", "55"))
SECOND_PASS_MIN_SCORE = int(os.getenv("SECOND_PASS_MIN_SCORE", "40"))

RUN_WATCHDOG_MINUTES = int(os.getenv("RUN_WATCHDOG_MINUTES", "15"))
PERSIST_WORKERS = int(os.getenv("PERSIST_WORKERS", "4"))

FACTOR_WEIGHTS_OVERRIDE: dict[str, Any] | None = None
if os.getenv("FACTOR_WEIGHTS_JSON"):
    try:
        FACTOR_WEIGHTS_OVERRIDE = json.loads(os.getenv("FACTOR_WEIGHTS_JSON", "{}"))
    except json.JSONDecodeError:
        # Surfaced as InvalidConfiguration by load_matching_settings().
        FACTOR_WEIGHTS_OVERRIDE = {"__invalid_json__": os.getenv("FACTOR_WEIGHTS_JSON", "")}

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
ADMIN_JWT_SECRET = os.getenv("ADMIN_JWT_SECRET", "")
CRON_SECRET = os.getenv("CRON_SECRET", "")
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"
