# Copyright 2026. Toolchain backed by the real xcrun/xcodebuild binaries.

import os
import subprocess
from typing import Any

from xcbolt.core.config import Config
from xcbolt.core.logging import log_activity
from xcbolt.core.runner import CancelScope, CmdResult, LineHandler, format_command, merge_env
from xcbolt.tools import devicectl, simctl, xcodebuild, xcresult
from xcbolt.tools.devicectl import Device
from xcbolt.tools.simctl import SimLaunch, Simulator
from xcbolt.tools.xcodebuild import XcodeListInfo
from xcbolt.tools.xcrun import LIST_TIMEOUT_S, Xcrun


class XcrunToolchain:
    """Drives xcodebuild, simctl, devicectl and xcresulttool through xcrun."""

    def __init__(self, root: str, activity_log: str = "", launcher: str = "xcrun"):
        self.root = root
        self.activity_log = activity_log
        self.xc = Xcrun(launcher=launcher, cwd=root, activity_log=activity_log)

    def enumerate_simulators(self, scope: CancelScope,
                             timeout: float | None = None) -> list[Simulator]:
        return simctl.list_simulators(self.xc, scope, timeout=timeout)

    def enumerate_devices(self, scope: CancelScope,
                          timeout: float | None = None) -> list[Device]:
        return devicectl.list_devices(self.xc, scope, timeout=timeout)

    def devicectl_available(self, scope: CancelScope) -> bool:
        return devicectl.available(self.xc, scope)

    def xcodebuild_list(self, scope: CancelScope, cfg: Config,
                        timeout: float | None = LIST_TIMEOUT_S) -> XcodeListInfo:
        return xcodebuild.list_schemes(self.xc, scope, self.root, cfg, timeout=timeout)

    def show_build_settings(self, scope: CancelScope, cfg: Config) -> dict[str, str]:
        return xcodebuild.show_build_settings(self.xc, scope, self.root, cfg)

    def enumerate_tests(self, scope: CancelScope, cfg: Config) -> Any:
        return xcodebuild.enumerate_tests(self.xc, scope, self.root, cfg)

    def run_build(self, scope: CancelScope, args: list[str], env: dict[str, str],
                  on_line: LineHandler) -> CmdResult:
        return self.xc.stream(["xcodebuild"] + list(args), scope, on_line, on_line, env=env)

    def run_test(self, scope: CancelScope, args: list[str], env: dict[str, str],
                 on_line: LineHandler) -> CmdResult:
        return self.xc.stream(["xcodebuild"] + list(args), scope, on_line, on_line, env=env)

    def xcresult_summary(self, scope: CancelScope, bundle: str) -> Any:
        return xcresult.test_summary(self.xc, scope, bundle)

    def boot_simulator(self, scope: CancelScope, udid: str) -> None:
        simctl.boot(self.xc, scope, udid)

    def wait_for_boot(self, scope: CancelScope, udid: str) -> None:
        simctl.bootstatus(self.xc, scope, udid)

    def open_simulator(self, scope: CancelScope) -> None:
        simctl.open_simulator_app(self.xc, scope)

    def install_on_simulator(self, scope: CancelScope, udid: str, app_path: str,
                             on_line: LineHandler | None = None) -> CmdResult:
        return simctl.install(self.xc, scope, udid, app_path, on_line)

    def launch_on_simulator(self, scope: CancelScope, udid: str, bundle_id: str,
                            args: list[str], env: dict[str, str], console: bool,
                            on_stdout: LineHandler | None = None,
                            on_stderr: LineHandler | None = None) -> SimLaunch:
        return simctl.launch(self.xc, scope, udid, bundle_id, args, env, console,
                             on_stdout, on_stderr)

    def sim_log_stream(self, scope: CancelScope, udid: str, predicate: str,
                       on_line: LineHandler) -> CmdResult:
        return simctl.log_stream(self.xc, scope, udid, predicate, on_line)

    def install_on_device(self, scope: CancelScope, device_id: str, app_path: str,
                          on_line: LineHandler | None = None) -> None:
        devicectl.install(self.xc, scope, device_id, app_path, on_line)

    def launch_on_device(self, scope: CancelScope, device_id: str, bundle_id: str,
                         console: bool, env: dict[str, str],
                         on_stdout: LineHandler | None = None,
                         on_stderr: LineHandler | None = None) -> int:
        return devicectl.launch(self.xc, scope, device_id, bundle_id, console, env,
                                on_stdout, on_stderr)

    def spawn_mac_app(self, executable: str, args: list[str], env: dict[str, str]) -> int:
        """Start a macOS app detached from this process; returns its PID."""
        argv = [executable] + list(args)
        log_activity(self.activity_log, "exec", format_command(argv))
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=merge_env(dict(os.environ), env),
            start_new_session=True,
        )
        return proc.pid
