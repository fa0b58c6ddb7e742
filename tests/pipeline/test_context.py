# Copyright 2026. Tests for project context discovery and auto-selection.

import os

import pytest

from xcbolt.core.config import Config, default_config
from xcbolt.core.errors import XcboltError
from xcbolt.core.events import CollectingEmitter, EventType
from xcbolt.core.runner import CancelScope
from xcbolt.pipeline.context import context_to_dict, discover_context, ensure_scheme_and_configuration
from tests.pipeline.helpers import FakeToolchain, device, sim

PBXPROJ = """/* Begin XCBuildConfiguration section */
    name = Debug;
    name = Release;
/* End XCBuildConfiguration section */
"""


def make_project(root: str, name: str = "App", schemes=("App",)) -> None:
    proj = os.path.join(root, f"{name}.xcodeproj")
    os.makedirs(os.path.join(proj, "xcshareddata", "xcschemes"))
    with open(os.path.join(proj, "project.pbxproj"), "w") as f:
        f.write(PBXPROJ)
    for s in schemes:
        open(os.path.join(proj, "xcshareddata", "xcschemes", f"{s}.xcscheme"), "w").close()


class TestEnsureScheme:
    def test_single_scheme_auto_selected(self, tmp_path):
        make_project(str(tmp_path))
        cfg = Config(configuration="Nope")
        em = CollectingEmitter()
        ensure_scheme_and_configuration(str(tmp_path), cfg, em, "build")
        assert cfg.project == "App.xcodeproj"
        assert cfg.scheme == "App"
        assert cfg.configuration == "Debug"
        assert em.messages(EventType.STATUS) == [
            "Auto-selected scheme: App", "Auto-selected configuration: Debug"]

    def test_multiple_schemes_need_choice(self, tmp_path):
        make_project(str(tmp_path), schemes=("App", "Widgets"))
        with pytest.raises(XcboltError, match="multiple schemes found"):
            ensure_scheme_and_configuration(str(tmp_path), Config())

    def test_no_scheme(self, tmp_path):
        with pytest.raises(XcboltError, match="no scheme configured"):
            ensure_scheme_and_configuration(str(tmp_path), Config())

    def test_explicit_scheme_kept(self, tmp_path):
        make_project(str(tmp_path), schemes=("App", "Widgets"))
        cfg = Config(scheme="Widgets", configuration="Release")
        ensure_scheme_and_configuration(str(tmp_path), cfg)
        assert cfg.scheme == "Widgets"
        assert cfg.configuration == "Release"


class TestDiscoverContext:
    def test_collects_everything_and_warns(self, tmp_path):
        root = str(tmp_path)
        make_project(root)
        tc = FakeToolchain(simulators=[sim("S1")], devicectl=False)
        em = CollectingEmitter()
        cfg = default_config(root)
        info = discover_context(root, cfg, tc, CancelScope(), em)

        assert info.projects == ["App.xcodeproj"]
        assert info.schemes == ["App"]
        assert info.configurations == ["Debug", "Release"]
        assert [s.udid for s in info.simulators] == ["S1"]
        assert info.devices == []
        assert cfg.scheme == "App"
        warnings = em.messages(EventType.WARNING)
        assert any("xcodebuild" in w for w in warnings)
        assert any("devicectl not available" in w for w in warnings)

    def test_to_dict(self, tmp_path):
        root = str(tmp_path)
        tc = FakeToolchain(devices=[device("DEV-00001", "Phone")])
        cfg = Config(scheme="App")
        info = discover_context(root, cfg, tc, CancelScope(), CollectingEmitter())
        d = context_to_dict(info, cfg)
        assert d["projectRoot"] == root
        assert d["devices"][0]["identifier"] == "DEV-00001"
        assert d["scheme"] == "App"
        assert d["simulators"] == []

    def test_simulator_failure_is_warning(self, tmp_path):
        tc = FakeToolchain()
        tc.fail["enumerate_simulators"] = XcboltError("simctl broke")
        em = CollectingEmitter()
        info = discover_context(str(tmp_path), Config(), tc, CancelScope(), em)
        assert info.simulators == []
        assert "Could not list simulators: simctl broke" in em.messages(EventType.WARNING)
