# Copyright 2026. Tests for the simctl adapter.

import json
from unittest.mock import MagicMock

import pytest

from xcbolt.core.destination import PlatformFamily
from xcbolt.core.errors import CommandError, XcboltError
from xcbolt.core.runner import CancelScope, CaptureResult, CmdResult
from xcbolt.tools import simctl
from xcbolt.tools.xcrun import Xcrun

SIMCTL_LIST = {
    "runtimes": [
        {"identifier": "com.apple.CoreSimulator.SimRuntime.iOS-18-0",
         "name": "iOS 18.0", "version": "18.0"},
        {"identifier": "com.apple.CoreSimulator.SimRuntime.watchOS-11-0",
         "name": "watchOS 11.0", "version": "11.0"},
    ],
    "devices": {
        "com.apple.CoreSimulator.SimRuntime.iOS-18-0": [
            {"name": "iPhone 16", "udid": "SIM-2", "state": "Shutdown", "isAvailable": True},
            {"name": "iPad Air", "udid": "SIM-1", "state": "Booted",
             "availability": "(available)"},
        ],
        "com.apple.CoreSimulator.SimRuntime.watchOS-11-0": [
            {"name": "Apple Watch Series 10", "udid": "SIM-3", "state": "Shutdown"},
        ],
    },
}


def captured(stdout: str = "") -> CaptureResult:
    return CaptureResult(stdout=stdout, stderr="", result=CmdResult(0, 1, 0.0))


def fake_xcrun() -> MagicMock:
    return MagicMock(spec=Xcrun)


class TestFlatten:
    def test_one_entry_per_device_sorted(self):
        sims = simctl.flatten_simulators(SIMCTL_LIST)
        assert [s.udid for s in sims] == ["SIM-1", "SIM-2", "SIM-3"]
        ipad = sims[0]
        assert ipad.booted
        assert ipad.available
        assert ipad.os_version == "18.0"
        assert ipad.platform_family == PlatformFamily.IPADOS
        assert sims[2].platform_family == PlatformFamily.WATCHOS
        assert not sims[2].available

    def test_to_dict(self):
        d = simctl.simulator_to_dict(simctl.flatten_simulators(SIMCTL_LIST)[1])
        assert d["name"] == "iPhone 16"
        assert d["runtime"] == "iOS 18.0"
        assert d["platformFamily"] == "ios"

    def test_empty_document(self):
        assert simctl.flatten_simulators({}) == []


class TestListSimulators:
    def test_parses_json(self):
        xc = fake_xcrun()
        xc.capture.return_value = captured(json.dumps(SIMCTL_LIST))
        sims = simctl.list_simulators(xc, CancelScope(), timeout=5)
        assert len(sims) == 3
        xc.capture.assert_called_once()
        assert xc.capture.call_args[0][0] == ["simctl", "list", "--json"]

    def test_bad_json(self):
        xc = fake_xcrun()
        xc.capture.return_value = captured("not json")
        with pytest.raises(XcboltError, match="failed to parse simctl list"):
            simctl.list_simulators(xc, CancelScope())


class TestBoot:
    def test_already_booted_is_success(self):
        xc = fake_xcrun()
        xc.capture.side_effect = CommandError(
            ["xcrun", "simctl", "boot", "SIM-1"], 149,
            "Unable to boot device in current state: Booted")
        simctl.boot(xc, CancelScope(), "SIM-1")

    def test_other_failure_raises(self):
        xc = fake_xcrun()
        xc.capture.side_effect = CommandError(["xcrun", "simctl", "boot", "X"], 1,
                                              "Invalid device: X")
        with pytest.raises(CommandError):
            simctl.boot(xc, CancelScope(), "X")


class TestPid:
    @pytest.mark.parametrize("output,want", [
        ("com.example.app: pid 4242", 4242),
        ("com.example.app: 4242", 0),
        ("Launched 0 (pid=0)", 0),
        ("noise\ncom.example.app: PID 17\n", 17),
        ("", 0),
    ])
    def test_parse_launch_pid(self, output, want):
        assert simctl.parse_launch_pid(output) == want

    def test_parse_first_int(self):
        assert simctl.parse_first_int("Launched application with pid 99") == 99
        assert simctl.parse_first_int("none") == 0


class TestLaunch:
    def test_child_env_prefix(self):
        assert simctl.child_env({"A": "1"}) == {"SIMCTL_CHILD_A": "1"}

    def test_launch_argv_and_pid(self):
        xc = fake_xcrun()
        seen = []

        def _stream(argv, scope, on_stdout, on_stderr, env=None):
            on_stdout("com.example.app: 321")
            on_stdout("com.example.app: pid 321")
            return CmdResult(0, 10, 0.1)

        xc.stream.side_effect = _stream
        res = simctl.launch(xc, CancelScope(), "SIM-1", "com.example.app", ["-flag"],
                            {"DEBUG": "1"}, console=True, on_stdout=seen.append)
        assert res.pid == 321
        assert seen == ["com.example.app: 321", "com.example.app: pid 321"]
        argv = xc.stream.call_args[0][0]
        assert argv == ["simctl", "launch", "--console", "SIM-1", "com.example.app", "-flag"]
        assert xc.stream.call_args[1]["env"] == {"SIMCTL_CHILD_DEBUG": "1"}

    def test_log_stream_argv(self):
        xc = fake_xcrun()
        xc.stream.return_value = CmdResult(0, 1, 0.0)
        simctl.log_stream(xc, CancelScope(), "SIM-1", 'subsystem == "x"', print, level="debug")
        assert xc.stream.call_args[0][0] == [
            "simctl", "spawn", "SIM-1", "log", "stream", "--style", "compact",
            "--level", "debug", "--predicate", 'subsystem == "x"']


class TestSingleShots:
    def test_create_returns_udid(self):
        xc = fake_xcrun()
        xc.capture.return_value = captured("NEW-UDID\n")
        udid = simctl.create(xc, CancelScope(), "Test Phone",
                             "com.apple.CoreSimulator.SimDeviceType.iPhone-16",
                             "com.apple.CoreSimulator.SimRuntime.iOS-18-0")
        assert udid == "NEW-UDID"

    def test_create_requires_all_ids(self):
        with pytest.raises(XcboltError):
            simctl.create(fake_xcrun(), CancelScope(), "x", "", "rt")

    def test_prune(self):
        xc = fake_xcrun()
        simctl.prune(xc, CancelScope())
        assert xc.capture.call_args[0][0] == ["simctl", "delete", "unavailable"]

    def test_screenshot_makes_parent(self, tmp_path):
        xc = fake_xcrun()
        out = tmp_path / "shots" / "a.png"
        simctl.screenshot(xc, CancelScope(), "SIM-1", str(out))
        assert out.parent.is_dir()
        assert xc.capture.call_args[0][0] == ["simctl", "io", "SIM-1", "screenshot", str(out)]

    def test_open_simulator_bypasses_launcher(self):
        xc = fake_xcrun()
        simctl.open_simulator_app(xc, CancelScope())
        assert xc.direct.call_args[0][0] == ["open", "-a", "Simulator"]


class TestXcrunSpec:
    def test_prefixes_launcher(self):
        spec = Xcrun(launcher="xcrun", cwd="/p").spec(["simctl", "list"], {"A": "1"})
        assert spec.argv == ["xcrun", "simctl", "list"]
        assert spec.cwd == "/p"
        assert spec.env == {"A": "1"}

    def test_direct_has_no_launcher(self):
        assert Xcrun().spec(["open", "-a", "Simulator"], launcher="").argv == \
            ["open", "-a", "Simulator"]
