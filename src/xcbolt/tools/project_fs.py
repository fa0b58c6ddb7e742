# Copyright 2026. Filesystem discovery of workspaces, projects, schemes and configurations.

import os
import re

from xcbolt.core.config import Config, XCBOLT_DIR

_LOCATION_RE = re.compile(r'location="([^"]+)"')
_ROOT_MARKERS = (".git",)


def abs_join(root: str, maybe_rel: str) -> str:
    if not maybe_rel:
        return ""
    if os.path.isabs(maybe_rel):
        return maybe_rel
    return os.path.join(root, maybe_rel)


def scan_project_entries(root: str) -> tuple[list[str], list[str]]:
    """Top-level `*.xcworkspace` and `*.xcodeproj` directory names under root."""
    workspaces: list[str] = []
    projects: list[str] = []
    for name in sorted(os.listdir(root)):
        if not os.path.isdir(os.path.join(root, name)):
            continue
        if name.endswith(".xcworkspace"):
            workspaces.append(name)
        elif name.endswith(".xcodeproj"):
            projects.append(name)
    return workspaces, projects


def auto_pick_container(cfg: Config, workspaces: list[str], projects: list[str]) -> None:
    if not cfg.workspace and len(workspaces) == 1:
        cfg.workspace = workspaces[0]
    if not cfg.project and not cfg.workspace and len(projects) == 1:
        cfg.project = projects[0]


def workspace_project_paths(root: str, workspace: str) -> list[str]:
    """Projects referenced by a workspace's contents.xcworkspacedata FileRefs."""
    workspace_path = abs_join(root, workspace)
    try:
        with open(os.path.join(workspace_path, "contents.xcworkspacedata"),
                  encoding="utf-8") as f:
            data = f.read()
    except OSError:
        return []

    paths = []
    for loc in _LOCATION_RE.findall(data):
        kind, sep, path = loc.partition(":")
        if not sep or not path.endswith(".xcodeproj"):
            continue
        full = path if kind == "absolute" else os.path.join(workspace_path, path)
        paths.append(os.path.normpath(full))
    return paths


def _schemes_in_dir(path: str, out: list[str], seen: set[str]) -> None:
    try:
        names = sorted(os.listdir(path))
    except OSError:
        return
    for name in names:
        if not name.endswith(".xcscheme") or os.path.isdir(os.path.join(path, name)):
            continue
        scheme = name[:-len(".xcscheme")]
        if scheme and scheme not in seen:
            seen.add(scheme)
            out.append(scheme)


def _schemes_in_container(path: str, out: list[str], seen: set[str],
                          include_user: bool = True) -> None:
    _schemes_in_dir(os.path.join(path, "xcshareddata", "xcschemes"), out, seen)
    if not include_user:
        return
    user_dir = os.path.join(path, "xcuserdata")
    try:
        users = sorted(os.listdir(user_dir))
    except OSError:
        return
    for user in users:
        if os.path.isdir(os.path.join(user_dir, user)):
            _schemes_in_dir(os.path.join(user_dir, user, "xcschemes"), out, seen)


def list_schemes_from_fs(root: str, cfg: Config, root_projects: list[str]) -> list[str]:
    seen: set[str] = set()
    schemes: list[str] = []

    if cfg.workspace:
        _schemes_in_container(abs_join(root, cfg.workspace), schemes, seen)
        if not schemes:
            for proj in workspace_project_paths(root, cfg.workspace):
                _schemes_in_container(proj, schemes, seen)
    if cfg.project:
        _schemes_in_container(abs_join(root, cfg.project), schemes, seen)
    if not schemes:
        for proj in root_projects:
            _schemes_in_container(abs_join(root, proj), schemes, seen, include_user=False)
    return sorted(schemes)


def parse_pbxproj_configurations(text: str) -> list[str]:
    """Names inside the XCBuildConfiguration section, in file order, deduplicated."""
    names: list[str] = []
    in_section = False
    for line in text.splitlines():
        if "Begin XCBuildConfiguration section" in line:
            in_section = True
            continue
        if "End XCBuildConfiguration section" in line:
            in_section = False
            continue
        if not in_section:
            continue
        trimmed = line.strip()
        if not trimmed.startswith("name ="):
            continue
        value = trimmed[len("name ="):].strip().rstrip(";").strip('"')
        if value and value not in names:
            names.append(value)
    return names


def _configurations_in_project(project_path: str, out: list[str]) -> None:
    try:
        with open(os.path.join(project_path, "project.pbxproj"), encoding="utf-8") as f:
            text = f.read()
    except OSError:
        return
    for name in parse_pbxproj_configurations(text):
        if name not in out:
            out.append(name)


def list_configurations_from_fs(root: str, cfg: Config, root_projects: list[str]) -> list[str]:
    configs: list[str] = []
    if cfg.project:
        _configurations_in_project(abs_join(root, cfg.project), configs)
    if cfg.workspace:
        paths = workspace_project_paths(root, cfg.workspace)
        for proj in paths:
            _configurations_in_project(proj, configs)
        if not paths and len(root_projects) == 1:
            _configurations_in_project(abs_join(root, root_projects[0]), configs)
    if not configs:
        for proj in root_projects:
            _configurations_in_project(abs_join(root, proj), configs)
    return sorted(configs)


def _is_project_root(path: str) -> bool:
    if os.path.isfile(os.path.join(path, XCBOLT_DIR, "config.json")):
        return True
    if any(os.path.exists(os.path.join(path, m)) for m in _ROOT_MARKERS):
        return True
    try:
        names = os.listdir(path)
    except OSError:
        return False
    return any(n.endswith((".xcworkspace", ".xcodeproj")) for n in names)


def find_project_root(start: str = "") -> str:
    """Walk upward to the nearest directory that looks like an Xcode project root."""
    start = os.path.abspath(start or os.getcwd())
    current = start
    while True:
        if _is_project_root(current):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return start
        current = parent
