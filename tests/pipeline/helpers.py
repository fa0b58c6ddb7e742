# Copyright 2026. Shared fixtures for pipeline tests: fake toolchain and bundle builders.

import os
import plistlib
from datetime import datetime

from xcbolt.core.errors import CommandError
from xcbolt.core.runner import CmdResult
from xcbolt.tools.devicectl import Device
from xcbolt.tools.simctl import SimLaunch, Simulator

IOS_RUNTIME = "com.apple.CoreSimulator.SimRuntime.iOS-18-0"
FIXED_NOW = datetime(2026, 3, 1, 12, 30, 45)


def sim(udid: str, name: str = "iPhone 16", state: str = "Shutdown",
        runtime_id: str = IOS_RUNTIME, runtime_name: str = "iOS 18.0",
        os_version: str = "18.0", available: bool = True) -> Simulator:
    return Simulator(name=name, udid=udid, state=state, runtime_name=runtime_name,
                     runtime_id=runtime_id, os_version=os_version, available=available)


def device(identifier: str, name: str, platform: str = "iOS",
           os_version: str = "18.0") -> Device:
    return Device(name=name, identifier=identifier, platform=platform, os_version=os_version)


def write_plist(app_path: str, plist: dict, mac: bool = False) -> str:
    target = os.path.join(app_path, "Contents") if mac else app_path
    os.makedirs(target, exist_ok=True)
    with open(os.path.join(target, "Info.plist"), "wb") as f:
        plistlib.dump(plist, f)
    return app_path


def make_app(build_dir: str, name: str, bundle_id: str, **extra) -> str:
    plist = {"CFBundleIdentifier": bundle_id, "CFBundleExecutable": name,
             "CFBundleName": name}
    plist.update(extra)
    return write_plist(os.path.join(build_dir, f"{name}.app"), plist)


def make_watch_pair(build_dir: str) -> tuple[str, str]:
    """Phone.app with an embedded Watch/Watch.app that names Phone as its companion."""
    phone = make_app(build_dir, "Phone", "com.example.phone")
    watch = make_app(os.path.join(phone, "Watch"), "Watch", "com.example.phone.watchkitapp",
                     WKWatchKitApp=True, WKCompanionAppBundleIdentifier="com.example.phone")
    return phone, watch


def make_mac_app(build_dir: str, name: str, bundle_id: str) -> str:
    app = os.path.join(build_dir, f"{name}.app")
    write_plist(app, {"CFBundleIdentifier": bundle_id, "CFBundleExecutable": name}, mac=True)
    exe_dir = os.path.join(app, "Contents", "MacOS")
    os.makedirs(exe_dir, exist_ok=True)
    with open(os.path.join(exe_dir, name), "w") as f:
        f.write("#!/bin/sh\n")
    return app


def build_settings_for(app_path: str, bundle_id: str) -> dict[str, str]:
    return {
        "TARGET_BUILD_DIR": os.path.dirname(app_path),
        "WRAPPER_NAME": os.path.basename(app_path),
        "PRODUCT_BUNDLE_IDENTIFIER": bundle_id,
    }


def failed(argv: list[str], code: int = 1) -> CmdResult:
    return CmdResult(exit_code=code, pid=1, duration=0.0, error=CommandError(argv, code))


class FakeToolchain:
    """In-memory Toolchain; every call is recorded as (method, args...)."""

    def __init__(self, simulators=None, devices=None, devicectl=True,
                 build_settings=None, build_lines=(), build_exit=0,
                 test_exit=0, summary=None, launch_pid=4242, launch_stdout=None,
                 device_pid=777, tests_tree=None, launch_exit=0):
        self.simulators = list(simulators or [])
        self.devices = list(devices or [])
        self.devicectl = devicectl
        self.build_settings = dict(build_settings or {})
        self.build_lines = list(build_lines)
        self.build_exit = build_exit
        self.test_exit = test_exit
        self.summary = summary
        self.launch_pid = launch_pid
        self.launch_stdout = launch_stdout
        self.device_pid = device_pid
        self.tests_tree = tests_tree
        self.launch_exit = launch_exit
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def _record(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    def enumerate_simulators(self, scope, timeout=None):
        self._record("enumerate_simulators")
        return list(self.simulators)

    def enumerate_devices(self, scope, timeout=None):
        self._record("enumerate_devices")
        return list(self.devices)

    def devicectl_available(self, scope):
        return self.devicectl

    def xcodebuild_list(self, scope, cfg, timeout=None):
        self._record("xcodebuild_list")
        raise CommandError(["xcodebuild", "-list"], 66, "no project")

    def show_build_settings(self, scope, cfg):
        self._record("show_build_settings")
        return dict(self.build_settings)

    def enumerate_tests(self, scope, cfg):
        self._record("enumerate_tests")
        return self.tests_tree

    def _xcodebuild(self, name, args, env, on_line, code):
        self._record(name, list(args), dict(env))
        for line in self.build_lines:
            on_line(line)
        if code:
            return failed(["xcodebuild"] + list(args), code)
        return CmdResult(exit_code=0, pid=100, duration=1.5)

    def run_build(self, scope, args, env, on_line):
        return self._xcodebuild("run_build", args, env, on_line, self.build_exit)

    def run_test(self, scope, args, env, on_line):
        return self._xcodebuild("run_test", args, env, on_line, self.test_exit)

    def xcresult_summary(self, scope, bundle):
        self._record("xcresult_summary", bundle)
        return self.summary

    def boot_simulator(self, scope, udid):
        self._record("boot_simulator", udid)

    def wait_for_boot(self, scope, udid):
        self._record("wait_for_boot", udid)

    def open_simulator(self, scope):
        self._record("open_simulator")

    def install_on_simulator(self, scope, udid, app_path, on_line=None):
        self._record("install_on_simulator", udid, app_path)
        return CmdResult(exit_code=0, pid=101, duration=0.1)

    def launch_on_simulator(self, scope, udid, bundle_id, args, env, console,
                            on_stdout=None, on_stderr=None):
        self._record("launch_on_simulator", udid, bundle_id, list(args), dict(env), console)
        stdout = self.launch_stdout
        if stdout is None:
            stdout = f"{bundle_id}: pid {self.launch_pid}" if self.launch_pid else ""
        for line in stdout.splitlines():
            if on_stdout is not None:
                on_stdout(line)
        pid = self.launch_pid if "pid" in stdout else 0
        if self.launch_exit:
            return SimLaunch(pid=pid, stdout=stdout,
                             result=failed(["simctl", "launch", udid, bundle_id], self.launch_exit))
        return SimLaunch(pid=pid, stdout=stdout,
                         result=CmdResult(exit_code=0, pid=102, duration=0.1))

    def sim_log_stream(self, scope, udid, predicate, on_line):
        self._record("sim_log_stream", udid, predicate)
        scope.wait(5)
        return CmdResult(exit_code=-1, pid=103, duration=0.1, error=scope.error)

    def install_on_device(self, scope, device_id, app_path, on_line=None):
        self._record("install_on_device", device_id, app_path)

    def launch_on_device(self, scope, device_id, bundle_id, console, env,
                         on_stdout=None, on_stderr=None):
        self._record("launch_on_device", device_id, bundle_id, console)
        return self.device_pid

    def spawn_mac_app(self, executable, args, env):
        self._record("spawn_mac_app", executable, list(args), dict(env))
        return 9001
