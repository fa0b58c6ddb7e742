# Copyright 2026. Project configuration document: defaults, load/save, migration.

import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from xcbolt.core.destination import (
    Destination,
    destination_to_dict,
    dict_to_destination,
    normalize_destination,
)
from xcbolt.core.errors import ConfigVersionError, XcboltError
from xcbolt.core.state import LockedStateManager

CONFIG_VERSION = 3
XCBOLT_DIR = ".xcbolt"
CONSOLE_LEVELS = ("D", "I", "W", "E", "F")
LOG_FORMATS = ("auto", "raw", "xcpretty", "xcbeautify")
GITIGNORE_ENTRIES = ("DerivedData/", "Results/")

_KNOWN_KEYS = {
    "version", "workspace", "project", "scheme", "configuration", "destination",
    "derivedDataPath", "resultBundlesPath", "xcodebuild", "launch",
}


@dataclass
class XcodebuildConfig:
    options: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    log_format: str = "auto"
    log_format_args: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class LaunchConfig:
    options: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    stream_unified_logs: bool = True
    stream_system_logs: bool = False
    console_log_levels: dict[str, bool] = field(
        default_factory=lambda: {lvl: True for lvl in CONSOLE_LEVELS})


@dataclass
class Config:
    version: int = CONFIG_VERSION
    workspace: str = ""
    project: str = ""
    scheme: str = ""
    configuration: str = "Debug"
    destination: Destination = field(default_factory=Destination)
    derived_data_path: str = ""
    result_bundles_path: str = ""
    xcodebuild: XcodebuildConfig = field(default_factory=XcodebuildConfig)
    launch: LaunchConfig = field(default_factory=LaunchConfig)
    # Keys this version does not model, carried through load/save untouched.
    extra: dict = field(default_factory=dict)
    # Transient, never persisted.
    last_result_bundle: str = ""
    last_built_app_bundle: str = ""
    last_bundle_id: str = ""

    def container_args(self, root: str) -> list[str]:
        if self.workspace:
            return ["-workspace", os.path.join(root, self.workspace)]
        if self.project:
            return ["-project", os.path.join(root, self.project)]
        return []


@dataclass
class MigrationResult:
    from_version: int
    to_version: int
    path: str
    backup_path: str = ""


def default_config(root: str) -> Config:
    return Config(
        derived_data_path=os.path.join(root, XCBOLT_DIR, "DerivedData"),
        result_bundles_path=os.path.join(root, XCBOLT_DIR, "Results"),
    )


def config_path(root: str) -> str:
    return os.path.join(root, XCBOLT_DIR, "config.json")


def resolve_path(root: str, path: str) -> str:
    if not path or os.path.isabs(path):
        return path
    return os.path.join(root, path)


def _config_to_dict(cfg: Config) -> dict:
    d: dict = dict(cfg.extra)
    d["version"] = CONFIG_VERSION
    if cfg.workspace:
        d["workspace"] = cfg.workspace
    if cfg.project:
        d["project"] = cfg.project
    if cfg.scheme:
        d["scheme"] = cfg.scheme
    if cfg.configuration:
        d["configuration"] = cfg.configuration
    d["destination"] = destination_to_dict(normalize_destination(cfg.destination))
    if cfg.derived_data_path:
        d["derivedDataPath"] = cfg.derived_data_path
    if cfg.result_bundles_path:
        d["resultBundlesPath"] = cfg.result_bundles_path

    xb = cfg.xcodebuild
    xb_dict: dict = {}
    if xb.options:
        xb_dict["options"] = list(xb.options)
    if xb.env:
        xb_dict["env"] = dict(xb.env)
    if xb.log_format:
        xb_dict["logFormat"] = xb.log_format
    if xb.log_format_args:
        xb_dict["logFormatArgs"] = list(xb.log_format_args)
    if xb.dry_run:
        xb_dict["dryRun"] = True
    d["xcodebuild"] = xb_dict

    ln = cfg.launch
    launch_dict: dict = {
        "streamUnifiedLogs": ln.stream_unified_logs,
        "streamSystemLogs": ln.stream_system_logs,
        "consoleLogLevels": dict(ln.console_log_levels),
    }
    if ln.options:
        launch_dict["options"] = list(ln.options)
    if ln.env:
        launch_dict["env"] = dict(ln.env)
    d["launch"] = launch_dict
    return d


def _dict_to_config(d: dict, root: str) -> Config:
    cfg = default_config(root)
    cfg.version = d.get("version", 0)
    cfg.workspace = d.get("workspace", "") or ""
    cfg.project = d.get("project", "") or ""
    cfg.scheme = d.get("scheme", "") or ""
    cfg.configuration = d.get("configuration", "") or cfg.configuration
    cfg.destination = normalize_destination(dict_to_destination(d.get("destination") or {}))
    cfg.derived_data_path = d.get("derivedDataPath", "") or cfg.derived_data_path
    cfg.result_bundles_path = d.get("resultBundlesPath", "") or cfg.result_bundles_path

    xb = d.get("xcodebuild") or {}
    cfg.xcodebuild = XcodebuildConfig(
        options=list(xb.get("options") or []),
        env=dict(xb.get("env") or {}),
        log_format=xb.get("logFormat", "") or "auto",
        log_format_args=list(xb.get("logFormatArgs") or []),
        dry_run=bool(xb.get("dryRun", False)),
    )

    ln = d.get("launch") or {}
    levels = {lvl: True for lvl in CONSOLE_LEVELS}
    levels.update(ln.get("consoleLogLevels") or {})
    cfg.launch = LaunchConfig(
        options=list(ln.get("options") or []),
        env=dict(ln.get("env") or {}),
        stream_unified_logs=ln.get("streamUnifiedLogs", True) is not False,
        stream_system_logs=bool(ln.get("streamSystemLogs", False)),
        console_log_levels=levels,
    )
    cfg.extra = {k: v for k, v in d.items() if k not in _KNOWN_KEYS}
    return cfg


def _store(root: str, path: str, check_version: bool = True) -> LockedStateManager[Config]:
    def _deserialize(d: dict) -> Config:
        if not isinstance(d, dict):
            raise XcboltError(f"failed to parse config {path}: expected a JSON object")
        got = d.get("version", 0)
        if check_version and got != CONFIG_VERSION:
            raise ConfigVersionError(path, got, CONFIG_VERSION)
        return _dict_to_config(d, root)

    return LockedStateManager(Path(path), _config_to_dict, _deserialize,
                              lambda: default_config(root))


def load_config(root: str, override_path: str = "") -> Config:
    """Load the project config; a missing file yields defaults.

    Raises ConfigVersionError when the document's version is not current.
    """
    path = override_path or config_path(root)
    try:
        return _store(root, path).load()
    except json.JSONDecodeError as e:
        raise XcboltError(f"failed to parse config {path}: {e}") from e


def save_config(root: str, cfg: Config, override_path: str = "") -> None:
    ensure_project_dirs(root)
    cfg.version = CONFIG_VERSION
    cfg.destination = normalize_destination(cfg.destination)
    _store(root, override_path or config_path(root)).save(cfg)


def persisted_view(cfg: Config) -> dict:
    """The JSON document a config is written as."""
    return _config_to_dict(cfg)


def migrate_config(root: str, override_path: str = "") -> MigrationResult:
    """Upgrade an older config document in place, keeping a backup aside."""
    path = override_path or config_path(root)
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise XcboltError(f"no config to migrate at {path}") from None
    try:
        d = json.loads(raw)
    except json.JSONDecodeError as e:
        raise XcboltError(f"failed to parse config {path}: {e}") from e

    got = d.get("version", 0)
    if got == CONFIG_VERSION:
        return MigrationResult(from_version=got, to_version=CONFIG_VERSION, path=path)
    if not isinstance(got, int) or got > CONFIG_VERSION or got < 1:
        raise ConfigVersionError(path, got, CONFIG_VERSION)

    backup = f"{path}.v{got}.bak"
    shutil.copyfile(path, backup)

    dest = dict(d.get("destination") or {})
    # v1/v2 documents only carried the legacy udid.
    if not dest.get("id") and dest.get("udid"):
        dest["id"] = dest["udid"]
    d["destination"] = dest

    cfg = _dict_to_config(d, root)
    _store(root, path, check_version=False).save(cfg)
    return MigrationResult(from_version=got, to_version=CONFIG_VERSION, path=path,
                           backup_path=backup)


def ensure_project_dirs(root: str) -> None:
    xcbolt_dir = os.path.join(root, XCBOLT_DIR)
    os.makedirs(xcbolt_dir, exist_ok=True)
    _ensure_gitignore(os.path.join(xcbolt_dir, ".gitignore"))


def _ensure_gitignore(path: str) -> None:
    try:
        with open(path, encoding="utf-8") as f:
            existing = f.read()
    except FileNotFoundError:
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(GITIGNORE_ENTRIES) + "\n")
        return

    present = {line.strip() for line in existing.splitlines()}
    missing = [e for e in GITIGNORE_ENTRIES if e not in present]
    if not missing:
        return
    if existing and not existing.endswith("\n"):
        existing += "\n"
    with open(path, "w", encoding="utf-8") as f:
        f.write(existing + "\n".join(missing) + "\n")
