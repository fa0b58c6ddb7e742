# Copyright 2026. devicectl adapter: device discovery, install, launch, stop.

import json
import os
import tempfile
from dataclasses import dataclass
from typing import Any

from xcbolt.core.destination import PlatformFamily, infer_family_from_device
from xcbolt.core.errors import CommandError, XcboltError
from xcbolt.core.runner import CancelScope, LineHandler
from xcbolt.tools.simctl import parse_first_int
from xcbolt.tools.xcrun import Xcrun

_ID_KEYS = ("identifier", "udid", "deviceIdentifier", "deviceUDID", "deviceId", "id")
_PLATFORM_KEYS = ("platform", "productType", "os", "operatingSystem")
_OS_VERSION_KEYS = ("osVersion", "os_version", "operatingSystemVersion", "systemVersion")
_MODEL_KEYS = ("model", "modelName")
MIN_ID_LENGTH = 8


@dataclass(frozen=True)
class Device:
    name: str
    identifier: str
    platform: str = ""
    os_version: str = ""
    model: str = ""

    @property
    def platform_family(self) -> PlatformFamily:
        return infer_family_from_device(self.platform, self.model, self.name)


def device_to_dict(d: Device) -> dict:
    return {
        "name": d.name,
        "identifier": d.identifier,
        "platform": d.platform,
        "osVersion": d.os_version,
        "model": d.model,
        "platformFamily": d.platform_family.value,
    }


def _first_string(d: dict, keys: tuple[str, ...]) -> str:
    for key in keys:
        val = d.get(key)
        if isinstance(val, str) and val:
            return val
    return ""


def extract_devices(tree: Any) -> list[Device]:
    """Find every object in a devicectl JSON document that looks like a device.

    The JSON layout changes between Xcode releases, so the walk only needs a
    name plus an identifier-like field of at least MIN_ID_LENGTH characters.
    """
    devices: list[Device] = []
    seen: set[str] = set()

    def _walk(node: Any) -> None:
        if isinstance(node, dict):
            name = node.get("name")
            ident = _first_string(node, _ID_KEYS)
            if isinstance(name, str) and name and len(ident) >= MIN_ID_LENGTH:
                key = f"{ident}|{name}"
                if key not in seen:
                    seen.add(key)
                    devices.append(Device(
                        name=name,
                        identifier=ident,
                        platform=_first_string(node, _PLATFORM_KEYS),
                        os_version=_first_string(node, _OS_VERSION_KEYS),
                        model=_first_string(node, _MODEL_KEYS),
                    ))
            for val in node.values():
                _walk(val)
        elif isinstance(node, list):
            for val in node:
                _walk(val)

    _walk(tree)
    return devices


def available(xc: Xcrun, scope: CancelScope) -> bool:
    try:
        xc.capture(["devicectl", "help"], scope)
    except (CommandError, OSError):
        return False
    return True


def list_devices(xc: Xcrun, scope: CancelScope, timeout: float | None = None) -> list[Device]:
    fd, out_path = tempfile.mkstemp(prefix="xcbolt-devices-", suffix=".json")
    os.close(fd)
    try:
        xc.capture(["devicectl", "list", "devices", "--json-output", out_path], scope,
                   timeout=timeout)
        with open(out_path, encoding="utf-8") as f:
            try:
                tree = json.load(f)
            except json.JSONDecodeError as e:
                raise XcboltError(f"failed to parse devicectl output: {e}") from e
    finally:
        if os.path.exists(out_path):
            os.unlink(out_path)
    return extract_devices(tree)


def install(xc: Xcrun, scope: CancelScope, device_id: str, app_path: str,
            on_line: LineHandler | None = None) -> None:
    if not device_id:
        raise XcboltError("missing device identifier")
    if not app_path:
        raise XcboltError("missing app path")
    res = xc.stream(["devicectl", "device", "install", "app", "--device", device_id, app_path],
                    scope, on_line, on_line)
    if res.error is not None:
        raise res.error


def launch_candidates(device_id: str, bundle_id: str, console: bool,
                      env: dict[str, str]) -> list[list[str]]:
    candidates = [
        ["devicectl", "device", "launch", "app", "--device", device_id, bundle_id],
        ["devicectl", "device", "process", "launch", "--device", device_id,
         "--bundle-id", bundle_id],
    ]
    for argv in candidates:
        if env:
            argv += ["--environment-variables", json.dumps(env, sort_keys=True)]
        if console:
            argv.append("--console")
    return candidates


def launch(xc: Xcrun, scope: CancelScope, device_id: str, bundle_id: str,
           console: bool = False, env: dict[str, str] | None = None,
           on_stdout: LineHandler | None = None,
           on_stderr: LineHandler | None = None) -> int:
    """Launch through whichever command shape this devicectl accepts; returns the PID."""
    if not device_id or not bundle_id:
        raise XcboltError("device id and bundle id are required")
    last_error: Exception | None = None
    for argv in launch_candidates(device_id, bundle_id, console, dict(env or {})):
        out: list[str] = []

        def _stdout(line: str, out=out) -> None:
            out.append(line)
            if on_stdout is not None:
                on_stdout(line)

        res = xc.stream(argv, scope, _stdout, on_stderr)
        if res.error is None:
            return parse_first_int("\n".join(out))
        scope.raise_if_canceled()
        last_error = res.error
    raise last_error or XcboltError("failed to launch app via devicectl")


def stop(xc: Xcrun, scope: CancelScope, device_id: str, pid: int = 0,
         bundle_id: str = "") -> None:
    candidates = []
    if pid > 0:
        candidates.append(["devicectl", "device", "process", "terminate",
                           "--device", device_id, "--pid", str(pid)])
    if bundle_id:
        candidates.append(["devicectl", "device", "terminate", "app",
                           "--device", device_id, bundle_id])
    if not candidates:
        raise XcboltError("need a pid or bundle id to stop")
    last_error: Exception | None = None
    for argv in candidates:
        try:
            xc.capture(argv, scope)
            return
        except CommandError as e:
            last_error = e
    raise last_error
