# Copyright 2026. xcodebuild adapter: -list, -showBuildSettings, test enumeration, argv helpers.

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any

from xcbolt.core.config import Config
from xcbolt.core.destination import destination_string
from xcbolt.core.errors import XcboltError
from xcbolt.core.runner import CancelScope
from xcbolt.tools.xcrun import Xcrun

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_NEEDS_QUOTES_RE = re.compile(r"[\s\"']")


@dataclass
class XcodeListInfo:
    name: str = ""
    schemes: list[str] = field(default_factory=list)
    configurations: list[str] = field(default_factory=list)


def extract_json_object(text: str) -> str:
    """The outermost {...} span; xcodebuild sometimes prefixes JSON with noise."""
    m = _JSON_OBJECT_RE.search(text)
    return m.group(0).strip() if m else ""


def loads_lenient(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        trimmed = extract_json_object(text)
        if not trimmed:
            raise
        return json.loads(trimmed)


def format_command(tool: str, args: list[str]) -> str:
    """Render a command line, double-quoting arguments with whitespace or quotes."""
    parts = [tool]
    for arg in args:
        if _NEEDS_QUOTES_RE.search(arg):
            parts.append('"' + arg.replace('"', '\\"') + '"')
        else:
            parts.append(arg)
    return " ".join(parts)


def base_args(root: str, cfg: Config) -> list[str]:
    args = cfg.container_args(root)
    if cfg.scheme:
        args += ["-scheme", cfg.scheme]
    if cfg.configuration:
        args += ["-configuration", cfg.configuration]
    dest = destination_string(cfg.destination)
    if dest:
        args += ["-destination", dest]
    return args


def parse_list_output(text: str) -> XcodeListInfo:
    try:
        parsed = loads_lenient(text)
    except json.JSONDecodeError as e:
        raise XcboltError(f"failed to parse xcodebuild -list -json output: {e}") from e
    info = XcodeListInfo()
    workspace = parsed.get("workspace") or {}
    project = parsed.get("project") or {}
    info.name = workspace.get("name", "") or project.get("name", "")
    info.schemes = list(workspace.get("schemes") or project.get("schemes") or [])
    info.configurations = list(workspace.get("configurations")
                               or project.get("configurations") or [])
    return info


def list_schemes(xc: Xcrun, scope: CancelScope, root: str, cfg: Config,
                 timeout: float | None = None) -> XcodeListInfo:
    container = cfg.container_args(root)
    if not container:
        raise XcboltError("no workspace/project configured")
    out = xc.capture(["xcodebuild", "-list", "-json"] + container, scope, timeout=timeout)
    return parse_list_output(out.stdout)


def parse_build_settings(lines: list[str]) -> dict[str, str]:
    settings: dict[str, str] = {}
    for line in lines:
        if "=" not in line:
            continue
        key, _, value = line.strip().partition("=")
        key = key.strip()
        if key:
            settings[key] = value.strip()
    return settings


def show_build_settings(xc: Xcrun, scope: CancelScope, root: str, cfg: Config) -> dict[str, str]:
    args = ["xcodebuild", "-showBuildSettings"] + base_args(root, cfg)
    if cfg.derived_data_path:
        args += ["-derivedDataPath", cfg.derived_data_path]
    out = xc.capture(args, scope)
    return parse_build_settings(out.stdout.splitlines())


def guess_app_bundle_path(settings: dict[str, str]) -> str:
    build_dir = settings.get("TARGET_BUILD_DIR") or settings.get("BUILT_PRODUCTS_DIR", "")
    if not build_dir:
        raise XcboltError("could not determine TARGET_BUILD_DIR from build settings")
    name = settings.get("WRAPPER_NAME") or settings.get("FULL_PRODUCT_NAME", "")
    if not name and settings.get("PRODUCT_NAME"):
        name = settings["PRODUCT_NAME"] + ".app"
    if not name:
        raise XcboltError("could not determine app bundle name from build settings")
    return os.path.join(build_dir, name)


def enumerate_tests(xc: Xcrun, scope: CancelScope, root: str, cfg: Config) -> Any:
    """`xcodebuild test -enumerate-tests`; JSON when parseable, else {"text": ...}."""
    args = ["xcodebuild", "test", "-enumerate-tests", "-test-enumeration-format", "json"]
    args += base_args(root, cfg)
    if cfg.derived_data_path:
        args += ["-derivedDataPath", cfg.derived_data_path]
    out = xc.capture(args, scope)
    try:
        return loads_lenient(out.stdout)
    except json.JSONDecodeError:
        return {"text": out.stdout}


def test_identifiers(tree: Any) -> list[str]:
    """Flatten an enumeration tree into `Target/Class/method` identifiers."""
    found: list[str] = []

    def _walk(node: Any) -> None:
        if isinstance(node, dict):
            ident = node.get("identifier")
            kind = node.get("kind", "")
            if isinstance(ident, str) and ident and kind in ("test", "Test"):
                found.append(ident)
            for val in node.values():
                _walk(val)
        elif isinstance(node, list):
            for val in node:
                _walk(val)

    _walk(tree)
    return found
