# Copyright 2026. Build log sink: pretty-formatter child, raw buffer, SwiftPM batching.

import collections
import re
import shutil
import threading
from dataclasses import dataclass
from urllib.parse import urlparse

from xcbolt.core import events
from xcbolt.core.errors import Canceled
from xcbolt.core.events import Emitter
from xcbolt.core.runner import CancelScope, CmdSpec, StreamingProcess

RAW_BUFFER_LINES = 200
MAX_BATCH_NAMES = 3
FORMATTERS = ("xcpretty", "xcbeautify")

_ERROR_MARKERS = (
    "error:",
    "fatal error:",
    "clang: error:",
    "ld: error",
    "linker command failed",
    "command swiftcompile failed",
    "command compilec failed",
    "codesign error",
    "provisioning profile",
    "no such module",
    "failed with exit code",
)

_QUOTED = (re.compile(r"‘([^’]*)’"), re.compile(r'"([^"]*)"'))


def is_build_error_line(line: str) -> bool:
    lower = line.lower()
    return any(marker in lower for marker in _ERROR_MARKERS)


def normalize_log_format(value: str) -> str:
    v = (value or "").strip().lower()
    return v or "auto"


def repo_name_from_url(raw: str) -> str:
    raw = raw.strip()
    if not raw:
        return ""
    if raw.startswith("git@"):
        raw = raw.rsplit(":", 1)[-1]
    else:
        parsed = urlparse(raw)
        if parsed.scheme and parsed.path:
            raw = parsed.path
    raw = raw.strip("/")
    if raw.endswith(".git"):
        raw = raw[:-4]
    return raw.rsplit("/", 1)[-1]


def _quoted_name(line: str) -> str:
    for pattern in _QUOTED:
        m = pattern.search(line)
        if m:
            return m.group(1)
    return ""


def parse_swiftpm_line(line: str) -> tuple[str, str, bool]:
    """Classify a package-resolution line as (action, package name, immediate)."""
    if line == "Resolve Package Graph":
        return "Resolving package graph", "", True
    if line.startswith("Updating from "):
        return "Updating", repo_name_from_url(line[len("Updating from "):]), False
    if line.startswith("Fetching from "):
        return "Fetching", repo_name_from_url(line[len("Fetching from "):]), False
    if line.startswith("Creating working copy of package") or line.startswith("Checking out "):
        return "Checking out", _quoted_name(line), False
    return "", "", False


class PrettyFormatter:
    """One xcpretty/xcbeautify child fed through stdin."""

    def __init__(self, name: str, proc: StreamingProcess):
        self.name = name
        self._proc = proc
        self._lock = threading.Lock()
        self._closed = False
        self._write_error: OSError | None = None

    @classmethod
    def start(cls, name: str, args: list[str], scope: CancelScope,
              on_line, on_error) -> "PrettyFormatter":
        path = shutil.which(name)
        if path is None:
            raise FileNotFoundError(f"{name}: executable file not found in $PATH")
        proc = StreamingProcess(CmdSpec(argv=[path] + list(args)), scope,
                                on_stdout=on_line, on_stderr=on_error, with_stdin=True)
        return cls(name, proc.start())

    def write_line(self, line: str) -> bool:
        # The pipe write blocks while the child is busy; never hold _lock across it.
        with self._lock:
            if self._closed or self._write_error is not None:
                return False
        try:
            self._proc.write_line(line)
        except OSError as e:
            with self._lock:
                if self._write_error is None:
                    self._write_error = e
            return False
        return True

    def close(self) -> Exception | None:
        with self._lock:
            if self._closed:
                return None
            self._closed = True
        close_err = self._proc.close_stdin()
        res = self._proc.wait()
        return self._write_error or close_err or res.error


@dataclass
class _RawLine:
    text: str
    emitted: bool = False


class LogSink:
    """Routes xcodebuild output lines to the event bus.

    Without a formatter every line becomes a `log` event. With one, each
    line is emitted as `log_raw` and forwarded to the formatter, whose
    output comes back as pretty `log` events. Error-looking lines are also
    emitted raw so failures stay visible. The last RAW_BUFFER_LINES lines
    are kept and flushed on finalize when the pretty output cannot be
    trusted.
    """

    def __init__(self, command: str, emitter: Emitter, scope: CancelScope,
                 log_format: str = "auto", format_args: list[str] | None = None,
                 force_raw: bool = False, buffer_size: int = RAW_BUFFER_LINES):
        self.command = command
        self._emit = emitter.emit
        self._lock = threading.Lock()
        self._raw = collections.deque(maxlen=buffer_size)
        self._pretty_lines = 0
        self._switched_to_raw = False
        self._spm_action = ""
        self._spm_names: list[str] = []
        self.formatter: PrettyFormatter | None = None

        fmt = "raw" if force_raw else normalize_log_format(log_format)
        self.formatter = self._pick_formatter(fmt, log_format, list(format_args or []),
                                              scope, force_raw)

    @property
    def pretty_lines(self) -> int:
        with self._lock:
            return self._pretty_lines

    def _pick_formatter(self, fmt: str, requested: str, args: list[str],
                        scope: CancelScope, force_raw: bool) -> PrettyFormatter | None:
        if fmt == "raw":
            return None
        if fmt == "auto":
            candidates = list(FORMATTERS)
        elif fmt == "xcpretty":
            candidates = ["xcpretty", "xcbeautify"]
        elif fmt == "xcbeautify":
            candidates = ["xcbeautify"]
        else:
            if not force_raw:
                self._emit(events.warn(
                    self.command, f"unknown log format {requested!r}; falling back to raw"))
            return None

        for i, name in enumerate(candidates):
            try:
                return PrettyFormatter.start(name, args, scope, self._handle_pretty,
                                             self._formatter_stderr(name))
            except OSError as e:
                if fmt != "auto" and i == 0:
                    fallback = "xcbeautify/raw" if name == "xcpretty" else "raw"
                    self._emit(events.warn(
                        self.command, f"{name} not available ({e}); falling back to {fallback}"))
        return None

    def _formatter_stderr(self, name: str):
        def _on_line(line: str) -> None:
            if line.strip():
                self._emit(events.warn(self.command, f"{name}: {line}"))
        return _on_line

    def _handle_pretty(self, line: str) -> None:
        if not line.strip():
            return
        with self._lock:
            self._pretty_lines += 1
        self._emit(events.log_pretty(self.command, line))

    def handle_line(self, line: str) -> None:
        if not line.strip():
            return
        if self._handle_swiftpm(line):
            return

        emit_raw = emit_log_raw = use_formatter = False
        with self._lock:
            self._raw.append(_RawLine(line))
            if self._switched_to_raw or self.formatter is None:
                emit_raw = True
            else:
                emit_log_raw = use_formatter = True
                if is_build_error_line(line):
                    emit_raw = True
                    if self._raw:
                        self._raw[-1].emitted = True

        if emit_log_raw:
            self._emit(events.log_raw(self.command, line))
        if emit_raw:
            self._emit(events.log(self.command, line))
        if use_formatter and not self.formatter.write_line(line):
            self._fall_back_to_raw(line, already_emitted=emit_raw)

    def _fall_back_to_raw(self, line: str, already_emitted: bool) -> None:
        # A concurrent producer may also see the failed write; only the first one warns.
        with self._lock:
            first = not self._switched_to_raw
            self._switched_to_raw = True
        if first:
            self._emit(events.warn(self.command,
                                   "log formatter stopped; falling back to raw output"))
        if not already_emitted:
            self._emit(events.log(self.command, line))

    def _handle_swiftpm(self, line: str) -> bool:
        action, name, immediate = parse_swiftpm_line(line)
        if immediate:
            self._flush_swiftpm()
            self._emit(events.log(self.command, f"SwiftPM: {action}"))
            return True
        if not action:
            self._flush_swiftpm()
            return False

        msg = ""
        with self._lock:
            if self._spm_action and self._spm_action != action:
                msg = self._format_batch_locked()
                self._reset_batch_locked()
            if name and name not in self._spm_names:
                self._spm_names.append(name)
            self._spm_action = action
        if msg:
            self._emit(events.log(self.command, msg))
        return True

    def _flush_swiftpm(self) -> None:
        with self._lock:
            msg = self._format_batch_locked()
            self._reset_batch_locked()
        if msg:
            self._emit(events.log(self.command, msg))

    def _format_batch_locked(self) -> str:
        if not self._spm_action or not self._spm_names:
            return ""
        shown = ", ".join(self._spm_names[:MAX_BATCH_NAMES])
        more = "…" if len(self._spm_names) > MAX_BATCH_NAMES else ""
        return f"SwiftPM: {self._spm_action} {len(self._spm_names)} package(s) ({shown}{more})"

    def _reset_batch_locked(self) -> None:
        self._spm_action = ""
        self._spm_names = []

    def finalize(self, run_error: Exception | None, exit_code: int) -> None:
        """Close the formatter and flush buffered raw lines if its output is suspect."""
        self._flush_swiftpm()
        if self.formatter is None:
            return
        close_err = self.formatter.close()

        with self._lock:
            pretty = self._pretty_lines
            switched = self._switched_to_raw
            should_flush = not switched and (
                pretty == 0 or close_err is not None or run_error is not None or exit_code != 0)
            pending = [r.text for r in self._raw if not r.emitted]

        # After a live fallback the broken pipe has already been reported.
        if close_err is not None and not switched and not isinstance(close_err, Canceled):
            self._emit(events.warn(self.command, f"log formatter error: {close_err}"))
        if not should_flush:
            return
        if pretty == 0:
            reason = "log formatter produced no output; showing raw logs"
        elif close_err is not None:
            reason = "log formatter failed; showing raw logs"
        else:
            reason = "xcodebuild failed; showing raw logs"
        self._emit(events.warn(self.command, reason))
        for text in pending:
            self._emit(events.log(self.command, text))
