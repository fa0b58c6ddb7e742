# Copyright 2026. Activity log and UTC timestamps.

import time
from datetime import datetime, timezone


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with nanosecond precision."""
    ns = time.time_ns()
    secs, frac = divmod(ns, 1_000_000_000)
    base = datetime.fromtimestamp(secs, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{base}.{frac:09d}Z"


def log_activity(log_path: str, source: str, message: str) -> None:
    if not log_path:
        return
    ts = utc_timestamp()
    line = f"[{ts}] {source}  {message}\n" if source else f"[{ts}] {message}\n"
    try:
        with open(log_path, "a") as f:
            f.write(line)
    except OSError:
        pass
