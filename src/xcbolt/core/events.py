# Copyright 2026. Structured event records and the text/NDJSON sinks.

import dataclasses
import enum
import json
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Protocol

from xcbolt.core.errors import ErrorObject, XcboltError
from xcbolt.core.logging import log_activity, utc_timestamp

SCHEMA_VERSION = 2


class EventType(str, enum.Enum):
    STATUS = "status"
    LOG = "log"
    LOG_RAW = "log_raw"
    WARNING = "warning"
    ERROR = "error"
    RESULT = "result"


class Level(str, enum.Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    command: str
    type: EventType
    level: Level | None = None
    message: str = ""
    code: str = ""
    data: Any = None
    error: ErrorObject | None = None
    version: int = SCHEMA_VERSION
    timestamp: str = dataclasses.field(default_factory=utc_timestamp)


class Emitter(Protocol):
    def emit(self, event: Event) -> None: ...


class EventVersionError(XcboltError):
    def __init__(self, requested: int):
        super().__init__(
            f"unsupported --event-version {requested} (supported: {SCHEMA_VERSION})"
        )
        self.requested = requested


# -- Constructors --------------------------------------------------------------

def status(command: str, message: str, data: Any = None) -> Event:
    return Event(command, EventType.STATUS, Level.INFO, message, data=data)


def log(command: str, message: str) -> Event:
    return Event(command, EventType.LOG, Level.INFO, message)


def log_stream(command: str, message: str, stream: str) -> Event:
    data = {"stream": stream} if stream else {}
    return Event(command, EventType.LOG, Level.INFO, message, data=data)


def log_pretty(command: str, message: str) -> Event:
    return Event(command, EventType.LOG, Level.INFO, message, data={"pretty": True})


def log_raw(command: str, message: str) -> Event:
    return Event(command, EventType.LOG_RAW, Level.INFO, message)


def warn(command: str, message: str) -> Event:
    return Event(command, EventType.WARNING, Level.WARN, message)


def err(command: str, error: ErrorObject, data: Any = None) -> Event:
    return Event(command, EventType.ERROR, Level.ERROR, error.message,
                 code=error.code, data=data, error=error)


def result(command: str, ok: bool, data: Any = None) -> Event:
    return Event(command, EventType.RESULT, Level.INFO,
                 data={"status": "success" if ok else "failure", "data": data})


# -- Encoding ------------------------------------------------------------------

def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _error_to_dict(error: ErrorObject) -> dict:
    d = {"code": error.code, "message": error.message}
    if error.detail:
        d["detail"] = error.detail
    if error.suggestion:
        d["suggestion"] = error.suggestion
    return d


def event_to_dict(event: Event) -> dict:
    d: dict[str, Any] = {
        "version": event.version,
        "timestamp": event.timestamp,
        "command": event.command,
        "type": event.type.value,
    }
    if event.level:
        d["level"] = event.level.value
    if event.code:
        d["code"] = event.code
    if event.message:
        d["message"] = event.message
    if event.data is not None:
        d["data"] = event.data
    if event.error is not None:
        d["error"] = _error_to_dict(event.error)
    return d


def _event_to_json(event: Event) -> str:
    return json.dumps(event_to_dict(event), default=_json_default,
                      separators=(",", ":"), allow_nan=False)


# -- Sinks ---------------------------------------------------------------------

class TextEmitter:
    """Human-readable sink. Raw build lines are suppressed."""

    def __init__(self, out: IO[str] | None = None):
        self._out = out or sys.stdout
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        text = render_text(event)
        if not text:
            return
        with self._lock:
            self._out.write(text)
            self._out.flush()


def render_text(event: Event) -> str:
    if event.message:
        if event.type == EventType.LOG_RAW:
            return ""
        if event.level:
            return f"[{event.level.value}] {event.message}\n"
        return f"{event.message}\n"
    if event.error is not None:
        text = f"error[{event.error.code}]: {event.error.message}\n"
        if event.error.suggestion:
            text += f"  hint: {event.error.suggestion}\n"
        return text
    return ""


class NDJSONEmitter:
    """One JSON object per line. Safe for concurrent emitters."""

    def __init__(self, out: IO[str] | None = None, version: int = SCHEMA_VERSION):
        if version != SCHEMA_VERSION:
            raise EventVersionError(version)
        self._out = out or sys.stdout
        self._version = version
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        try:
            line = _event_to_json(event)
        except (TypeError, ValueError) as e:
            line = json.dumps({
                "version": self._version,
                "timestamp": utc_timestamp(),
                "command": event.command,
                "type": EventType.ERROR.value,
                "level": Level.ERROR.value,
                "message": f"failed to encode event: {e}",
            }, separators=(",", ":"))
        with self._lock:
            self._out.write(line + "\n")
            self._out.flush()


class ActivityLogEmitter:
    """Forwards to another sink and mirrors each event into the activity log."""

    def __init__(self, inner: Emitter, log_path: str):
        self._inner = inner
        self._log_path = log_path

    def emit(self, event: Event) -> None:
        self._inner.emit(event)
        text = event.message or (event.error.message if event.error else "")
        if event.type == EventType.RESULT and isinstance(event.data, dict):
            text = f"result: {event.data.get('status', '')}"
        log_activity(self._log_path, f"{event.command}:{event.type.value}", text)


class CollectingEmitter:
    """Keeps every event in memory for later inspection."""

    def __init__(self):
        self.events: list[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        with self._lock:
            return [e for e in self.events if e.type == event_type]

    def messages(self, event_type: EventType | None = None) -> list[str]:
        with self._lock:
            return [e.message for e in self.events
                    if event_type is None or e.type == event_type]
