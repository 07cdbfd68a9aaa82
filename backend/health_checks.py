# backend/health_checks.py

import os
import time

from backend.utils.storage import RecordStore


def check_database(store: RecordStore):
    try:
        store.ping()
        return "ok"
    except Exception as e:
        return f"error: {str(e)}"


def check_env(required=None):
    # DATABASE_URL falls back to a local SQLite file, so a missing value is
    # reported rather than treated as a hard failure.
    if required is None:
        required = ["DATABASE_URL"]
    missing = [var for var in required if not os.getenv(var)]
    return "ok" if not missing else {"missing": missing}


def get_app_metadata(start_time):
    uptime = int(time.time() - start_time)
    return {
        "status": "running",
        "version": os.getenv("APP_VERSION", "dev"),
        "uptime": f"{uptime}s"
    }
