import os
import json
from datetime import datetime

DEBUG_MODE = os.environ.get("DEBUG_MODE", "False").lower() == "true"


def set_debug(enabled: bool):
    global DEBUG_MODE
    DEBUG_MODE = enabled


def log_info(message: str):
    print(f"[RFIV] {datetime.now().isoformat(timespec='seconds')} {message}")


def log_debug(event: str, data: dict):
    """
    Logs structured debug info if enabled.
    """
    if not DEBUG_MODE:
        return

    print(f"\n[RFIV DEBUG] {event}:")
    print(json.dumps(data, indent=2, default=str))


def log_request(method: str, path: str, status_code: int, elapsed_ms: float):
    # One line per request, same shape as morgan's "dev" format
    print(f"{method} {path} {status_code} {elapsed_ms:.3f} ms")
