# Copyright 2026. Environment health checks for the Xcode toolchain and project config.

import os
import shutil
from dataclasses import asdict, dataclass, field
from typing import Callable

from xcbolt.core import events
from xcbolt.core.config import config_path, load_config
from xcbolt.core.errors import XcboltError
from xcbolt.core.events import Emitter
from xcbolt.core.log_sink import FORMATTERS
from xcbolt.core.runner import CancelScope
from xcbolt.tools.xcrun import SINGLE_SHOT_TIMEOUT_S, Xcrun

# xcrun-launched tools probed with a cheap invocation.
TOOL_PROBES = [
    {"name": "xcodebuild available", "args": ["xcodebuild", "-version"],
     "hint": "Install Xcode and ensure xcode-select points at it."},
    {"name": "simctl available", "args": ["simctl", "help"],
     "hint": "Install Xcode and ensure simulators are available."},
    {"name": "devicectl available", "args": ["devicectl", "help"],
     "hint": "Xcode 15+ is required for devicectl."},
    {"name": "xcresulttool available", "args": ["xcresulttool", "help"],
     "hint": "xcresulttool is part of Xcode."},
]


@dataclass
class DoctorCheck:
    name: str
    ok: bool
    detail: str = ""
    hint: str = ""
    required: bool = True


@dataclass
class DoctorReport:
    checks: list[DoctorCheck] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.checks if c.required)


def run_doctor(root: str, xc: Xcrun, scope: CancelScope, emitter: Emitter,
               config_override: str = "") -> DoctorReport:
    """Run every check, emitting a status or warning each, then a summary result."""
    report = DoctorReport()

    def check(name: str, fn: Callable[[], str], hint: str, required: bool = True) -> None:
        emitter.emit(events.status("doctor", name))
        try:
            detail = fn()
        except (XcboltError, OSError) as e:
            scope.raise_if_canceled()
            report.checks.append(DoctorCheck(name, False, str(e), hint, required))
            emitter.emit(events.warn("doctor", f"{name}: {e} ({hint})"))
            return
        report.checks.append(DoctorCheck(name, True, detail, required=required))

    def _xcrun_on_path() -> str:
        path = shutil.which(xc.launcher)
        if path is None:
            raise FileNotFoundError(f"{xc.launcher}: executable file not found in $PATH")
        return path

    check("xcrun on PATH", _xcrun_on_path,
          "Install the Xcode Command Line Tools (xcode-select --install).")

    for probe in TOOL_PROBES:
        def _probe(args=probe["args"]) -> str:
            out = xc.capture(args, scope, timeout=SINGLE_SHOT_TIMEOUT_S)
            return out.stdout.strip().splitlines()[0] if out.stdout.strip() else "ok"
        check(probe["name"], _probe, probe["hint"])

    def _formatter() -> str:
        for name in FORMATTERS:
            path = shutil.which(name)
            if path:
                return path
        raise FileNotFoundError("neither xcbeautify nor xcpretty found in $PATH")

    check("pretty formatter", _formatter,
          "Install xcbeautify (brew install xcbeautify) for readable build logs.",
          required=False)

    def _config() -> str:
        path = config_override or config_path(root)
        if not os.path.exists(path):
            raise FileNotFoundError(f"{path}: no such file")
        load_config(root, config_override)
        return path

    check("project config", _config, "Run `xcbolt init` to create .xcbolt/config.json.")

    emitter.emit(events.result("doctor", report.ok,
                               {"checks": [asdict(c) for c in report.checks]}))
    return report
