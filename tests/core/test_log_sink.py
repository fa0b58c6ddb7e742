# Copyright 2026. Tests for the build log sink.

import collections
import sys
import threading
import time
from unittest.mock import patch

import pytest

from xcbolt.core.events import CollectingEmitter, EventType
from xcbolt.core.log_sink import (
    LogSink,
    is_build_error_line,
    normalize_log_format,
    parse_swiftpm_line,
    repo_name_from_url,
)
from xcbolt.core.runner import CancelScope

LINES = [
    "CompileSwift normal arm64 /src/App.swift",
    "Ld /build/App.app/App normal",
    "** BUILD SUCCEEDED **",
]


def formatter_args(code: str) -> list[str]:
    return ["-u", "-c", code]


ECHO_FORMATTER = "import sys\nfor l in sys.stdin:\n    print('> ' + l.strip(), flush=True)\n"
SILENT_FORMATTER = "import sys; sys.stdin.read()"
ONE_LINE_FORMATTER = "import sys; sys.stdin.readline()"

# Each input line comes back as FANOUT pretty lines after a short pause, so the
# formatter's stdout fills while producers are still writing its stdin.
SLOW_FORMATTER_FANOUT = 500
SLOW_FORMATTER = (
    "import sys, time\n"
    "for l in sys.stdin:\n"
    "    time.sleep(0.002)\n"
    f"    sys.stdout.write(('y' * 79 + '\\n') * {SLOW_FORMATTER_FANOUT})\n"
    "    sys.stdout.flush()\n"
)
PRODUCER_LINES = 200


class CountingEmitter:
    """Counts events by type without keeping them."""

    def __init__(self):
        self.counts = collections.Counter()
        self._lock = threading.Lock()

    def emit(self, event) -> None:
        with self._lock:
            self.counts[event.type] += 1


class TestHelpers:
    @pytest.mark.parametrize("line", [
        "/src/App.swift:3:1: error: cannot find 'x' in scope",
        "ld: error: undefined symbol",
        "Linker command failed with exit code 1",
        "error: No such module 'Foo'",
    ])
    def test_error_lines(self, line):
        assert is_build_error_line(line)

    def test_plain_line_is_not_error(self):
        assert not is_build_error_line("CompileSwift normal arm64")

    def test_normalize_log_format(self):
        assert normalize_log_format("  XCPretty ") == "xcpretty"
        assert normalize_log_format("") == "auto"

    @pytest.mark.parametrize("url,want", [
        ("https://github.com/apple/swift-argument-parser.git", "swift-argument-parser"),
        ("git@github.com:pointfreeco/swift-snapshot-testing.git", "swift-snapshot-testing"),
        ("https://github.com/Alamofire/Alamofire", "Alamofire"),
        ("", ""),
    ])
    def test_repo_name(self, url, want):
        assert repo_name_from_url(url) == want

    def test_parse_swiftpm(self):
        assert parse_swiftpm_line("Resolve Package Graph") == ("Resolving package graph", "", True)
        assert parse_swiftpm_line("Checking out 1.2.0 of package ‘Nuke’") == \
            ("Checking out", "Nuke", False)
        assert parse_swiftpm_line("CompileSwift") == ("", "", False)


@patch("xcbolt.core.log_sink.shutil.which", return_value=None)
class TestWithoutFormatter:
    def test_every_line_is_log_event(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="auto")
        for line in LINES:
            sink.handle_line(line)
        sink.finalize(None, 0)
        assert sink.formatter is None
        assert em.messages(EventType.LOG) == LINES
        assert em.of_type(EventType.LOG_RAW) == []
        assert em.of_type(EventType.WARNING) == []

    def test_requested_formatter_missing_warns_once(self, _which):
        em = CollectingEmitter()
        LogSink("build", em, CancelScope(), log_format="xcbeautify")
        warnings = em.messages(EventType.WARNING)
        assert len(warnings) == 1
        assert "falling back to raw" in warnings[0]

    def test_unknown_format_warns(self, _which):
        em = CollectingEmitter()
        LogSink("build", em, CancelScope(), log_format="fancy")
        assert "unknown log format" in em.messages(EventType.WARNING)[0]

    def test_forced_raw_is_silent(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="fancy", force_raw=True)
        assert sink.formatter is None
        assert em.events == []
        _which.assert_not_called()

    def test_blank_lines_dropped(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="raw")
        sink.handle_line("   ")
        assert em.events == []

    def test_swiftpm_lines_batched(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="raw")
        for line in (
            "Resolve Package Graph",
            "Fetching from https://github.com/apple/swift-log.git",
            "Fetching from https://github.com/apple/swift-nio.git",
            "Fetching from https://github.com/apple/swift-log.git",
            "Checking out 1.5.0 of package ‘swift-log’",
            "CompileSwift normal",
        ):
            sink.handle_line(line)
        sink.finalize(None, 0)
        assert em.messages(EventType.LOG) == [
            "SwiftPM: Resolving package graph",
            "SwiftPM: Fetching 2 package(s) (swift-log, swift-nio)",
            "SwiftPM: Checking out 1 package(s) (swift-log)",
            "CompileSwift normal",
        ]

    def test_batch_truncates_names(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="raw")
        for name in ("a", "b", "c", "d"):
            sink.handle_line(f"Fetching from https://example.com/{name}.git")
        sink.finalize(None, 0)
        assert em.messages(EventType.LOG) == ["SwiftPM: Fetching 4 package(s) (a, b, c…)"]


@patch("xcbolt.core.log_sink.shutil.which", return_value=sys.executable)
class TestWithFormatter:
    def test_pretty_output_and_raw_mirror(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="xcbeautify",
                       format_args=formatter_args(ECHO_FORMATTER))
        assert sink.formatter is not None
        for line in LINES:
            sink.handle_line(line)
        sink.finalize(None, 0)

        assert em.messages(EventType.LOG_RAW) == LINES
        pretty = [e for e in em.of_type(EventType.LOG) if e.data == {"pretty": True}]
        assert [e.message for e in pretty] == [f"> {line}" for line in LINES]
        assert em.of_type(EventType.WARNING) == []

    def test_error_lines_stay_visible(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="xcbeautify",
                       format_args=formatter_args(ECHO_FORMATTER))
        sink.handle_line("/src/A.swift:1:1: error: boom")
        sink.finalize(None, 0)
        plain = [e.message for e in em.of_type(EventType.LOG) if not e.data]
        assert plain == ["/src/A.swift:1:1: error: boom"]

    def test_silent_formatter_flushes_raw(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="xcbeautify",
                       format_args=formatter_args(SILENT_FORMATTER))
        for line in LINES:
            sink.handle_line(line)
        sink.finalize(None, 0)
        assert em.messages(EventType.WARNING) == [
            "log formatter produced no output; showing raw logs"]
        assert em.messages(EventType.LOG) == LINES

    def test_failed_build_flushes_raw_once(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="xcbeautify",
                       format_args=formatter_args(ECHO_FORMATTER))
        sink.handle_line("Compile A")
        sink.handle_line("/src/A.swift:1:1: error: boom")
        sink.finalize(None, 65)
        assert "xcodebuild failed; showing raw logs" in em.messages(EventType.WARNING)
        plain = [e.message for e in em.of_type(EventType.LOG) if not e.data]
        assert plain == ["/src/A.swift:1:1: error: boom", "Compile A"]

    def test_formatter_exit_switches_to_raw_once(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="xcbeautify",
                       format_args=formatter_args(ONE_LINE_FORMATTER))
        sink.handle_line("first")
        deadline = time.monotonic() + 10
        sent = 0
        while not em.messages(EventType.WARNING) and time.monotonic() < deadline:
            sent += 1
            sink.handle_line(f"before {sent}")
            time.sleep(0.01)
        later = [f"after {i}" for i in range(3)]
        for line in later:
            sink.handle_line(line)
        sink.finalize(None, 0)

        assert em.messages(EventType.WARNING) == [
            "log formatter stopped; falling back to raw output"]
        plain = [e.message for e in em.of_type(EventType.LOG) if not e.data]
        assert plain[-3:] == later
        assert all(plain.count(line) == 1 for line in plain)
        assert "first" not in plain

    def test_concurrent_producers_with_slow_formatter(self, _which):
        em = CountingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="xcbeautify",
                       format_args=formatter_args(SLOW_FORMATTER))

        def produce():
            for _ in range(PRODUCER_LINES):
                sink.handle_line("x" * 4000)

        producers = [threading.Thread(target=produce, daemon=True) for _ in range(2)]
        for t in producers:
            t.start()
        for t in producers:
            t.join(60)
        assert [t.is_alive() for t in producers] == [False, False]

        sink.finalize(None, 0)
        assert em.counts[EventType.LOG_RAW] == 2 * PRODUCER_LINES
        assert sink.pretty_lines == 2 * PRODUCER_LINES * SLOW_FORMATTER_FANOUT
        assert em.counts[EventType.WARNING] == 0


class TestSwiftPMOrdering:
    @patch("xcbolt.core.log_sink.shutil.which", return_value=None)
    def test_graph_resolution_flushes_pending_batch(self, _which):
        em = CollectingEmitter()
        sink = LogSink("build", em, CancelScope(), log_format="raw")
        sink.handle_line("Fetching from https://github.com/apple/swift-log.git")
        sink.handle_line("Resolve Package Graph")
        sink.finalize(None, 0)
        assert em.messages(EventType.LOG) == [
            "SwiftPM: Fetching 1 package(s) (swift-log)",
            "SwiftPM: Resolving package graph",
        ]
