# Copyright 2026. Toolchain protocol: the capabilities the pipeline needs from Xcode tools.

from typing import Any, Protocol

from xcbolt.core.config import Config
from xcbolt.core.runner import CancelScope, CmdResult, LineHandler
from xcbolt.tools.devicectl import Device
from xcbolt.tools.simctl import SimLaunch, Simulator
from xcbolt.tools.xcodebuild import XcodeListInfo


class Toolchain(Protocol):
    def enumerate_simulators(self, scope: CancelScope,
                             timeout: float | None = None) -> list[Simulator]: ...

    def enumerate_devices(self, scope: CancelScope,
                          timeout: float | None = None) -> list[Device]: ...

    def devicectl_available(self, scope: CancelScope) -> bool: ...

    def xcodebuild_list(self, scope: CancelScope, cfg: Config,
                        timeout: float | None = None) -> XcodeListInfo: ...

    def show_build_settings(self, scope: CancelScope, cfg: Config) -> dict[str, str]: ...

    def enumerate_tests(self, scope: CancelScope, cfg: Config) -> Any: ...

    def run_build(self, scope: CancelScope, args: list[str], env: dict[str, str],
                  on_line: LineHandler) -> CmdResult: ...

    def run_test(self, scope: CancelScope, args: list[str], env: dict[str, str],
                 on_line: LineHandler) -> CmdResult: ...

    def xcresult_summary(self, scope: CancelScope, bundle: str) -> Any: ...

    def boot_simulator(self, scope: CancelScope, udid: str) -> None: ...

    def wait_for_boot(self, scope: CancelScope, udid: str) -> None: ...

    def open_simulator(self, scope: CancelScope) -> None: ...

    def install_on_simulator(self, scope: CancelScope, udid: str, app_path: str,
                             on_line: LineHandler | None = None) -> CmdResult: ...

    def launch_on_simulator(self, scope: CancelScope, udid: str, bundle_id: str,
                            args: list[str], env: dict[str, str], console: bool,
                            on_stdout: LineHandler | None = None,
                            on_stderr: LineHandler | None = None) -> SimLaunch: ...

    def sim_log_stream(self, scope: CancelScope, udid: str, predicate: str,
                       on_line: LineHandler) -> CmdResult: ...

    def install_on_device(self, scope: CancelScope, device_id: str, app_path: str,
                          on_line: LineHandler | None = None) -> None: ...

    def launch_on_device(self, scope: CancelScope, device_id: str, bundle_id: str,
                         console: bool, env: dict[str, str],
                         on_stdout: LineHandler | None = None,
                         on_stderr: LineHandler | None = None) -> int: ...

    def spawn_mac_app(self, executable: str, args: list[str], env: dict[str, str]) -> int: ...
