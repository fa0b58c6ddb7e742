# Copyright 2026. App console helpers: launch env, unified-log predicate, console line formatting.

import re
from dataclasses import dataclass
from datetime import datetime

from xcbolt.core.appbundle import AppBundleInfo
from xcbolt.core.config import Config

_MIRRORED_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}:\d{2}\.\d{3})\s+(\S+)\s+(\S+)\[([^\]]+)\]"
    r"\s+\[([^\]]+)\]\s+(.*)$")
# `log stream --style compact`; the [subsystem] column is absent for some lines.
_COMPACT_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}:\d{2}\.\d{3})\s+(\S+)\s+(\S+)\[([^\]]+)\]"
    r"\s+(?:\[([^\]]+)\]\s+)?(.*)$")
_STREAM_NOISE = ("Filtering the log data", "Timestamp ")

_FATAL_MARKERS = (
    "fatal error",
    "terminating app due to uncaught exception",
    "uncaught exception",
    "precondition failed",
    "assertion failed",
    "libc++abi: terminating",
    "sigabrt",
    "sigsegv",
    "abort() called",
    "dyld: library not loaded",
)

# Unified log level tokens to the single-letter console levels.
_UNIFIED_LEVELS = {
    "db": "D",
    "debug": "D",
    "df": "I",
    "default": "I",
    "i": "I",
    "info": "I",
    "e": "E",
    "error": "E",
    "f": "F",
    "fault": "F",
}


@dataclass(frozen=True)
class MirroredLine:
    time: str
    level: str
    process: str
    pid_thread: str
    subsystem: str
    message: str


def launch_env(cfg: Config, console: bool) -> dict[str, str]:
    env = dict(cfg.launch.env)
    if not console:
        return env
    if "IDE_DISABLED_OS_ACTIVITY_DT_MODE" not in env:
        env.setdefault("OS_ACTIVITY_DT_MODE", "enable")
    env.setdefault("NSUnbufferedIO", "YES")
    return env


def sim_log_predicate(cfg: Config, info: AppBundleInfo) -> str:
    exe, bundle = info.executable, info.bundle_id
    if exe:
        if bundle and not cfg.launch.stream_system_logs:
            return (f'process == "{exe}" AND (subsystem == "{bundle}" '
                    f'OR subsystem BEGINSWITH "{bundle}.")')
        return f'process == "{exe}"'
    if bundle:
        return f'subsystem == "{bundle}" OR subsystem BEGINSWITH "{bundle}."'
    return ""


def parse_mirrored_line(line: str) -> MirroredLine | None:
    m = _MIRRORED_RE.match(line.strip())
    if not m:
        return None
    return MirroredLine(time=m.group(2), level=m.group(3), process=m.group(4),
                        pid_thread=m.group(5), subsystem=m.group(6), message=m.group(7))


def is_fatal_line(line: str) -> bool:
    lower = line.lower()
    return any(marker in lower for marker in _FATAL_MARKERS)


def console_level(stderr: bool, line: str) -> str:
    if not stderr:
        return "I"
    return "F" if is_fatal_line(line) else "W"


def subsystem_matches_app(info: AppBundleInfo, subsystem: str) -> bool:
    # The mirrored column reads "subsystem:category".
    subsystem = subsystem.split(":", 1)[0]
    if not subsystem:
        return False
    if not info.bundle_id:
        return True
    return subsystem == info.bundle_id or subsystem.startswith(info.bundle_id + ".")


def display_name(info: AppBundleInfo) -> str:
    return info.label or "App"


def format_console_line(info: AppBundleInfo, pid: int, stderr: bool, line: str,
                        filter_system: bool, dedupe_unified: bool,
                        now: datetime | None = None) -> str | None:
    """Render one line of app stdout/stderr; None drops it.

    Unified-log lines mirrored onto the console are dropped when the
    separate log stream already shows them.
    """
    if not line:
        return None
    mirrored = parse_mirrored_line(line)
    if mirrored is not None:
        if filter_system and not subsystem_matches_app(info, mirrored.subsystem):
            return None
        if dedupe_unified:
            return None
        return (f"{mirrored.time} {mirrored.level or 'I'} "
                f"{mirrored.process}[{mirrored.pid_thread}]\n{mirrored.message}")

    stamp = (now or datetime.now()).strftime("%H:%M:%S.%f")[:-3]
    return (f"{stamp} {console_level(stderr, line)} {display_name(info)}"
            f"[{pid if pid > 0 else 0}:0]\n{line.strip()}")


def unified_level(token: str) -> str:
    return _UNIFIED_LEVELS.get(token.strip().lower(), "I")


def format_unified_line(line: str, levels: dict[str, bool]) -> str | None:
    """Render one `log stream --style compact` line, honoring the enabled levels."""
    stripped = line.strip()
    if not stripped or stripped.startswith(_STREAM_NOISE):
        return None
    m = _COMPACT_RE.match(stripped)
    if not m:
        return stripped
    level = unified_level(m.group(3))
    if not levels.get(level, True):
        return None
    return f"{m.group(2)} {level} {m.group(4)}[{m.group(5)}]\n{m.group(7)}"
