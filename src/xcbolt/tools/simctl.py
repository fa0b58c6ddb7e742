# Copyright 2026. simctl adapter: simulator listing, lifecycle, install/launch, log stream.

import json
import os
import re
from dataclasses import dataclass

from xcbolt.core.destination import PlatformFamily, infer_family_from_runtime
from xcbolt.core.errors import CommandError, XcboltError
from xcbolt.core.runner import CancelScope, CmdResult, LineHandler
from xcbolt.tools.xcrun import SINGLE_SHOT_TIMEOUT_S, Xcrun

_PID_RE = re.compile(r"\bpid\b[^0-9]*([0-9]+)", re.IGNORECASE)
_FIRST_INT_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class Simulator:
    name: str
    udid: str
    state: str
    runtime_name: str
    runtime_id: str
    os_version: str = ""
    available: bool = False

    @property
    def platform_family(self) -> PlatformFamily:
        return infer_family_from_runtime(self.runtime_id, self.runtime_name, self.name)

    @property
    def booted(self) -> bool:
        return self.state.lower() == "booted"


@dataclass
class SimLaunch:
    pid: int
    stdout: str
    result: CmdResult


def simulator_to_dict(s: Simulator) -> dict:
    return {
        "name": s.name,
        "udid": s.udid,
        "state": s.state,
        "runtime": s.runtime_name,
        "runtimeId": s.runtime_id,
        "osVersion": s.os_version,
        "available": s.available,
        "platformFamily": s.platform_family.value,
    }


def flatten_simulators(data: dict) -> list[Simulator]:
    """Turn `simctl list --json` output into one Simulator per device."""
    runtimes = {}
    for rt in data.get("runtimes") or []:
        runtimes[rt.get("identifier", "")] = (rt.get("name", ""), rt.get("version", ""))

    sims: list[Simulator] = []
    for runtime_id, devices in (data.get("devices") or {}).items():
        rt_name, rt_version = runtimes.get(runtime_id, ("", ""))
        for dev in devices or []:
            avail = bool(dev.get("isAvailable", False))
            if not avail and "available" in (dev.get("availability") or "").lower():
                avail = True
            sims.append(Simulator(
                name=dev.get("name", ""),
                udid=dev.get("udid", ""),
                state=dev.get("state", ""),
                runtime_name=rt_name,
                runtime_id=runtime_id,
                os_version=rt_version,
                available=avail,
            ))
    sims.sort(key=lambda s: (s.runtime_name, s.name))
    return sims


def list_simulators(xc: Xcrun, scope: CancelScope, timeout: float | None = None) -> list[Simulator]:
    out = xc.capture(["simctl", "list", "--json"], scope, timeout=timeout)
    try:
        data = json.loads(out.stdout)
    except json.JSONDecodeError as e:
        raise XcboltError(f"failed to parse simctl list output: {e}") from e
    return flatten_simulators(data)


def boot(xc: Xcrun, scope: CancelScope, udid: str) -> None:
    """Boot a simulator; an already-booted device counts as success."""
    try:
        xc.capture(["simctl", "boot", udid], scope, timeout=SINGLE_SHOT_TIMEOUT_S)
    except CommandError as e:
        if "Unable" in e.stderr or "Booted" in e.stderr:
            return
        raise


def bootstatus(xc: Xcrun, scope: CancelScope, udid: str) -> None:
    xc.capture(["simctl", "bootstatus", udid, "-b"], scope)


def shutdown(xc: Xcrun, scope: CancelScope, udid: str) -> None:
    xc.capture(["simctl", "shutdown", udid], scope)


def erase(xc: Xcrun, scope: CancelScope, udid: str) -> None:
    xc.capture(["simctl", "erase", udid], scope)


def open_simulator_app(xc: Xcrun, scope: CancelScope) -> None:
    xc.direct(["open", "-a", "Simulator"], scope, timeout=SINGLE_SHOT_TIMEOUT_S)


def open_url(xc: Xcrun, scope: CancelScope, udid: str, url: str) -> None:
    xc.capture(["simctl", "openurl", udid, url], scope)


def screenshot(xc: Xcrun, scope: CancelScope, udid: str, out_path: str) -> None:
    if not out_path:
        raise XcboltError("missing output path")
    os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
    xc.capture(["simctl", "io", udid, "screenshot", out_path], scope,
               timeout=SINGLE_SHOT_TIMEOUT_S)


def create(xc: Xcrun, scope: CancelScope, name: str, device_type_id: str,
           runtime_id: str) -> str:
    if not name or not device_type_id or not runtime_id:
        raise XcboltError("name, device type id and runtime id are required")
    out = xc.capture(["simctl", "create", name, device_type_id, runtime_id], scope)
    return out.stdout.strip()


def delete(xc: Xcrun, scope: CancelScope, udid: str) -> None:
    xc.capture(["simctl", "delete", udid], scope)


def prune(xc: Xcrun, scope: CancelScope) -> None:
    xc.capture(["simctl", "delete", "unavailable"], scope)


def install(xc: Xcrun, scope: CancelScope, udid: str, app_path: str,
            on_line: LineHandler | None = None) -> CmdResult:
    return xc.stream(["simctl", "install", udid, app_path], scope, on_line, on_line)


def terminate(xc: Xcrun, scope: CancelScope, udid: str, bundle_id: str) -> None:
    xc.capture(["simctl", "terminate", udid, bundle_id], scope)


def child_env(env: dict[str, str]) -> dict[str, str]:
    """simctl forwards SIMCTL_CHILD_-prefixed variables to the launched app."""
    return {f"SIMCTL_CHILD_{k}": v for k, v in env.items()}


def parse_launch_pid(output: str) -> int:
    for line in output.splitlines():
        if "pid" not in line.lower():
            continue
        m = _PID_RE.search(line)
        if m and int(m.group(1)) > 0:
            return int(m.group(1))
    return 0


def parse_first_int(text: str) -> int:
    m = _FIRST_INT_RE.search(text)
    return int(m.group(0)) if m else 0


def launch(xc: Xcrun, scope: CancelScope, udid: str, bundle_id: str,
           args: list[str], env: dict[str, str], console: bool,
           on_stdout: LineHandler | None = None,
           on_stderr: LineHandler | None = None) -> SimLaunch:
    """`simctl launch`; with console=True this blocks until the app exits."""
    argv = ["simctl", "launch"]
    if console:
        argv.append("--console")
    argv += [udid, bundle_id] + list(args)

    out: list[str] = []

    def _stdout(line: str) -> None:
        out.append(line)
        if on_stdout is not None:
            on_stdout(line)

    res = xc.stream(argv, scope, _stdout, on_stderr, env=child_env(env))
    stdout = "\n".join(out)
    return SimLaunch(pid=parse_launch_pid(stdout), stdout=stdout, result=res)


def log_stream(xc: Xcrun, scope: CancelScope, udid: str, predicate: str,
               on_line: LineHandler, level: str = "") -> CmdResult:
    argv = ["simctl", "spawn", udid, "log", "stream", "--style", "compact"]
    if level:
        argv += ["--level", level]
    if predicate:
        argv += ["--predicate", predicate]
    return xc.stream(argv, scope, on_line, on_line)
