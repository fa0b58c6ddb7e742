# Copyright 2026. Tests for the xcbolt CLI: flag parsing, overrides and exit codes.

import json
import os
from unittest.mock import patch

import pytest

from xcbolt import commands
from xcbolt.cli import EXIT_CANCELED, build_parser, main
from xcbolt.commands import AppContext, apply_overrides, persist_config_if_changed
from xcbolt.core.config import CONFIG_VERSION, Config, config_path, load_config
from xcbolt.core.destination import (
    LOCAL_MAC_NAME,
    Destination,
    DestinationKind,
    PlatformFamily,
    TargetType,
)
from xcbolt.core.errors import Canceled, XcboltError
from xcbolt.core.events import CollectingEmitter, EventType
from xcbolt.core.runner import CancelScope
from tests.pipeline.helpers import FakeToolchain, sim


@pytest.fixture
def project(tmp_path):
    """An Xcode project root with one shared scheme."""
    proj = tmp_path / "App.xcodeproj"
    (proj / "xcshareddata" / "xcschemes").mkdir(parents=True)
    (proj / "project.pbxproj").write_text(
        "/* Begin XCBuildConfiguration section */\n    name = Debug;\n"
        "/* End XCBuildConfiguration section */\n")
    (proj / "xcshareddata" / "xcschemes" / "App.xcscheme").write_text("")
    return str(tmp_path)


def run_json(root: str, *argv: str, tc=None) -> int:
    """Run main() with --json against `root` on a fake toolchain."""
    tc = tc or FakeToolchain()
    with patch("xcbolt.commands.XcrunToolchain", return_value=tc):
        code = main(["--json", "--project", root, *argv])
    return code


def decode(out: str) -> list[dict]:
    return [json.loads(line) for line in out.splitlines() if line.strip()]


class TestParser:
    def test_global_flags_before_subcommand(self):
        args = build_parser().parse_args(["--json", "--verbose", "build", "--scheme", "App"])
        assert args.json and args.verbose
        assert args.scheme == "App"
        assert args.func is commands.cmd_build

    def test_global_flags_after_subcommand(self):
        args = build_parser().parse_args(
            ["test", "--json", "--log-format", "raw", "--only", "A/b", "--only", "A/c"])
        assert args.json
        assert args.log_format == "raw"
        assert args.only == ["A/b", "A/c"]
        assert args.skip == []

    def test_defaults(self):
        args = build_parser().parse_args(["apps"])
        assert args.json is False
        assert args.event_version == 2
        assert args.config == ""

    def test_simulator_subcommands(self):
        args = build_parser().parse_args(["simulator", "create", "Phone",
                                          "com.apple.dt.iPhone", "iOS-18-0"])
        assert (args.name, args.device_type, args.runtime) == (
            "Phone", "com.apple.dt.iPhone", "iOS-18-0")
        assert args.func is commands.cmd_simulator_create

    def test_simulator_requires_action(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["simulator"])

    def test_bad_log_format(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["build", "--log-format", "fancy"])


class TestApplyOverrides:
    def test_scheme_and_configuration(self):
        cfg = Config()
        apply_overrides(cfg, scheme="App", configuration="Release")
        assert (cfg.scheme, cfg.configuration) == ("App", "Release")

    def test_target_sets_ids(self):
        cfg = Config()
        apply_overrides(cfg, platform="ios", target=" SIM-1 ", target_type="simulator")
        dst = cfg.destination
        assert dst.platform_family == PlatformFamily.IOS
        assert dst.target_type == TargetType.SIMULATOR
        assert dst.kind == DestinationKind.SIMULATOR
        assert (dst.target_id, dst.udid) == ("SIM-1", "SIM-1")

    def test_platform_change_clears_stale_target(self):
        cfg = Config(destination=Destination(
            kind=DestinationKind.SIMULATOR, platform_family=PlatformFamily.IOS,
            target_type=TargetType.SIMULATOR, target_id="OLD", udid="OLD", name="iPhone 16"))
        apply_overrides(cfg, platform="tvos")
        assert cfg.destination.platform_family == PlatformFamily.TVOS
        assert cfg.destination.target_id == ""
        assert cfg.destination.udid == ""

    def test_local_mac(self):
        cfg = Config()
        apply_overrides(cfg, target_type="local")
        dst = cfg.destination
        assert dst.kind == DestinationKind.MACOS
        assert dst.platform_family == PlatformFamily.MACOS
        assert dst.name == LOCAL_MAC_NAME

    def test_local_catalyst(self):
        cfg = Config()
        apply_overrides(cfg, platform="catalyst", target_type="local")
        assert cfg.destination.kind == DestinationKind.CATALYST

    def test_companion_target(self):
        cfg = Config()
        apply_overrides(cfg, companion_target=" my-phone ")
        assert cfg.destination.companion_target_id == "my-phone"

    @pytest.mark.parametrize("kwargs,flag", [
        ({"platform": "amiga"}, "--platform"),
        ({"target_type": "cloud"}, "--target-type"),
    ])
    def test_unknown_values(self, kwargs, flag):
        with pytest.raises(XcboltError, match=flag):
            apply_overrides(Config(), **kwargs)


class TestPersistConfig:
    def context(self, root: str) -> AppContext:
        return AppContext(root=root, emitter=CollectingEmitter(), scope=CancelScope())

    def test_needs_scheme(self, tmp_path):
        ac = self.context(str(tmp_path))
        cfg = Config()
        assert not persist_config_if_changed(ac, commands._persisted_key(cfg), cfg)
        assert not os.path.exists(config_path(str(tmp_path)))

    def test_saves_when_changed(self, tmp_path):
        root = str(tmp_path)
        ac = self.context(root)
        cfg = Config()
        before = commands._persisted_key(cfg)
        apply_overrides(cfg, scheme="App")
        assert persist_config_if_changed(ac, before, cfg)
        assert load_config(root).scheme == "App"

    def test_unchanged_not_saved(self, tmp_path):
        ac = self.context(str(tmp_path))
        cfg = Config(scheme="App")
        assert not persist_config_if_changed(ac, commands._persisted_key(cfg), cfg)

    def test_save_failure_warns(self, tmp_path):
        ac = self.context(str(tmp_path))
        cfg = Config(scheme="App")
        before = commands._persisted_key(Config())
        with patch.object(AppContext, "save_config", side_effect=OSError("read-only")):
            assert not persist_config_if_changed(ac, before, cfg)
        assert ac.emitter.messages(EventType.WARNING) == ["Failed to save config: read-only"]


class TestLogFormatOverride:
    def test_flags_win_over_config(self, tmp_path):
        ac = AppContext(root=str(tmp_path), emitter=CollectingEmitter(), scope=CancelScope(),
                        log_format="raw", log_format_args=["--quiet"])
        cfg = ac.load_config()
        assert cfg.xcodebuild.log_format == "raw"
        assert cfg.xcodebuild.log_format_args == ["--quiet"]


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage: xcbolt" in capsys.readouterr().out

    def test_bad_event_version(self, tmp_path, capsys):
        assert main(["--json", "--event-version", "9", "--project", str(tmp_path), "apps"]) == 1
        assert "xcbolt:" in capsys.readouterr().err

    def test_build_success_persists_config(self, project, capsys):
        tc = FakeToolchain(simulators=[sim("S1", state="Booted")])
        code = run_json(project, "build", "--scheme", "App", "--configuration", "Debug", tc=tc)
        assert code == 0
        events = decode(capsys.readouterr().out)
        result = [e for e in events if e["type"] == "result"][-1]
        assert result["command"] == "build"
        assert result["data"]["status"] == "success"
        cfg = load_config(project)
        assert cfg.scheme == "App"
        assert cfg.destination.udid == "S1"

    def test_build_failure_exits_one(self, project, capsys):
        tc = FakeToolchain(simulators=[sim("S1", state="Booted")], build_exit=65)
        assert run_json(project, "build", "--scheme", "App", tc=tc) == 1
        events = decode(capsys.readouterr().out)
        assert any(e["type"] == "error" and e["error"]["code"] == "XCODEBUILD_FAILED"
                   for e in events)

    def test_legacy_simulator_flag_warns(self, project, capsys):
        tc = FakeToolchain(simulators=[sim("S1", state="Booted"), sim("S2")])
        assert run_json(project, "build", "--scheme", "App", "--simulator", "S2", tc=tc) == 0
        events = decode(capsys.readouterr().out)
        warnings = [e["message"] for e in events if e["type"] == "warning"]
        assert any("--simulator is deprecated" in w for w in warnings)
        assert load_config(project).destination.udid == "S2"

    def test_unknown_platform_is_command_failure(self, project, capsys):
        assert run_json(project, "build", "--platform", "amiga") == 1
        events = decode(capsys.readouterr().out)
        assert events[-1]["error"]["code"] == "COMMAND_FAILED"

    def test_canceled_exit_code(self, project):
        with patch("xcbolt.commands.cmd_apps", side_effect=Canceled("interrupted")):
            assert main(["--project", project, "apps"]) == EXIT_CANCELED

    def test_apps_empty(self, project, capsys):
        assert run_json(project, "apps") == 0
        (event,) = decode(capsys.readouterr().out)
        assert event["type"] == "result"
        assert event["data"]["data"] == {"version": 2, "items": []}

    def test_stop_unknown_session(self, project, capsys):
        assert run_json(project, "stop", "com.example.none") == 1
        events = decode(capsys.readouterr().out)
        assert "no tracked session" in events[-1]["error"]["message"]

    def test_version_mismatch_reported(self, project, capsys):
        os.makedirs(os.path.join(project, ".xcbolt"))
        with open(config_path(project), "w") as f:
            json.dump({"version": 1}, f)
        assert main(["--project", project, "config"]) == 1
        out = capsys.readouterr().out
        assert "error[COMMAND_FAILED]" in out
        assert "version mismatch" in out


class TestConfigCommand:
    def test_migrate_v1(self, project, capsys):
        os.makedirs(os.path.join(project, ".xcbolt"))
        path = config_path(project)
        with open(path, "w") as f:
            json.dump({"version": 1, "scheme": "App",
                       "destination": {"kind": "simulator", "udid": "S1"}}, f)
        assert main(["--project", project, "config", "--migrate"]) == 0
        assert "Migrated config from v1 to v3" in capsys.readouterr().out
        assert os.path.exists(path + ".v1.bak")
        cfg = load_config(project)
        assert cfg.version == CONFIG_VERSION
        assert cfg.destination.target_id == "S1"

    def test_show_json(self, project, capsys):
        assert run_json(project, "config") == 0
        (event,) = decode(capsys.readouterr().out)
        assert event["data"]["data"]["version"] == CONFIG_VERSION

    def test_edit_needs_editor(self, project, monkeypatch, capsys):
        monkeypatch.delenv("EDITOR", raising=False)
        assert main(["--project", project, "config", "--edit"]) == 1
        assert "EDITOR is not set" in capsys.readouterr().out


class TestClean:
    def populate(self, root: str) -> str:
        xcbolt_dir = os.path.join(root, ".xcbolt")
        for d in ("DerivedData", "Results"):
            os.makedirs(os.path.join(xcbolt_dir, d, "nested"))
        with open(os.path.join(xcbolt_dir, "sessions.json"), "w") as f:
            f.write("{}")
        return xcbolt_dir

    def test_default_removes_artifacts(self, project, capsys):
        xcbolt_dir = self.populate(project)
        assert main(["--project", project, "clean"]) == 0
        assert not os.path.exists(os.path.join(xcbolt_dir, "DerivedData"))
        assert not os.path.exists(os.path.join(xcbolt_dir, "Results"))
        assert not os.path.exists(os.path.join(xcbolt_dir, "sessions.json"))
        assert capsys.readouterr().out.count("Removed ") == 3

    def test_selective(self, project):
        xcbolt_dir = self.populate(project)
        assert main(["--project", project, "clean", "--results"]) == 0
        assert os.path.exists(os.path.join(xcbolt_dir, "DerivedData"))
        assert not os.path.exists(os.path.join(xcbolt_dir, "Results"))


class TestInit:
    def test_non_interactive_without_container(self, tmp_path, capsys):
        os.makedirs(tmp_path / ".git")
        assert run_json(str(tmp_path), "init", "--non-interactive") == 2
        events = decode(capsys.readouterr().out)
        assert events[-1]["error"]["code"] == "INIT_FAILED"
        assert not os.path.exists(config_path(str(tmp_path)))

    def test_writes_config(self, project, capsys):
        tc = FakeToolchain(simulators=[sim("S1", state="Booted")])
        assert run_json(project, "init", "--non-interactive", tc=tc) == 0
        cfg = load_config(project)
        assert cfg.project == "App.xcodeproj"
        assert cfg.scheme == "App"
        assert cfg.configuration == "Debug"
        assert cfg.destination.udid == "S1"
        assert os.path.exists(os.path.join(project, ".xcbolt", ".gitignore"))

    def test_stale_config_replaced(self, project, capsys):
        os.makedirs(os.path.join(project, ".xcbolt"))
        with open(config_path(project), "w") as f:
            json.dump({"version": 1}, f)
        assert run_json(project, "init") == 0
        events = decode(capsys.readouterr().out)
        assert any("version mismatch" in e.get("message", "") for e in events
                   if e["type"] == "warning")
        assert load_config(project).version == CONFIG_VERSION
