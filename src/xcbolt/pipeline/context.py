# Copyright 2026. Project context discovery and scheme/configuration auto-selection.

from dataclasses import dataclass, field

from xcbolt.core import events
from xcbolt.core.config import Config
from xcbolt.core.errors import XcboltError
from xcbolt.core.events import Emitter
from xcbolt.core.runner import CancelScope
from xcbolt.tools import project_fs
from xcbolt.tools.devicectl import Device, device_to_dict
from xcbolt.tools.protocol import Toolchain
from xcbolt.tools.simctl import Simulator, simulator_to_dict
from xcbolt.tools.xcrun import LIST_TIMEOUT_S


@dataclass
class ContextInfo:
    project_root: str
    workspaces: list[str] = field(default_factory=list)
    projects: list[str] = field(default_factory=list)
    schemes: list[str] = field(default_factory=list)
    configurations: list[str] = field(default_factory=list)
    simulators: list[Simulator] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)


def context_to_dict(info: ContextInfo, cfg: Config) -> dict:
    return {
        "projectRoot": info.project_root,
        "workspaces": info.workspaces,
        "projects": info.projects,
        "schemes": info.schemes,
        "configurations": info.configurations,
        "simulators": [simulator_to_dict(s) for s in info.simulators],
        "devices": [device_to_dict(d) for d in info.devices],
        "scheme": cfg.scheme,
        "configuration": cfg.configuration,
    }


def _select(cfg: Config, schemes: list[str], configurations: list[str],
            emitter: Emitter | None, command: str) -> None:
    if not cfg.scheme and len(schemes) == 1:
        cfg.scheme = schemes[0]
        if emitter is not None:
            emitter.emit(events.status(command, f"Auto-selected scheme: {cfg.scheme}",
                                       {"scheme": cfg.scheme}))
    if configurations and cfg.configuration not in configurations:
        cfg.configuration = configurations[0]
        if emitter is not None:
            emitter.emit(events.status(command, f"Auto-selected configuration: {cfg.configuration}",
                                       {"configuration": cfg.configuration}))


def ensure_scheme_and_configuration(root: str, cfg: Config, emitter: Emitter | None = None,
                                    command: str = "context") -> None:
    """Fill in scheme/configuration from the filesystem when unset or invalid.

    A scheme is only auto-selected when exactly one is discovered. Raises
    XcboltError when the config still has no scheme afterwards.
    """
    try:
        workspaces, projects = project_fs.scan_project_entries(root)
    except OSError as e:
        raise XcboltError(f"failed to scan {root}: {e}") from e
    project_fs.auto_pick_container(cfg, workspaces, projects)
    schemes = project_fs.list_schemes_from_fs(root, cfg, projects)
    configurations = project_fs.list_configurations_from_fs(root, cfg, projects)
    _select(cfg, schemes, configurations, emitter, command)
    if not cfg.scheme:
        if len(schemes) > 1:
            raise XcboltError(
                f"multiple schemes found ({', '.join(schemes)}); pass --scheme to pick one")
        raise XcboltError("no scheme configured (run `xcbolt init` or pass --scheme)")


def discover_context(root: str, cfg: Config, toolchain: Toolchain, scope: CancelScope,
                     emitter: Emitter, use_xcodebuild_list: bool = True,
                     list_timeout: float = LIST_TIMEOUT_S) -> ContextInfo:
    """Everything the tool can learn about the project and attached targets.

    Adapter failures become warnings; `cfg` gains auto-selected values.
    """
    emit = emitter.emit
    emit(events.status("context", "Scanning project root", {"path": root}))
    try:
        workspaces, projects = project_fs.scan_project_entries(root)
    except OSError as e:
        raise XcboltError(f"failed to scan {root}: {e}") from e
    project_fs.auto_pick_container(cfg, workspaces, projects)

    emit(events.status("context", "Reading schemes/configurations from filesystem"))
    schemes = project_fs.list_schemes_from_fs(root, cfg, projects)
    configurations = project_fs.list_configurations_from_fs(root, cfg, projects)

    if use_xcodebuild_list and (cfg.workspace or cfg.project):
        emit(events.status("context", "Running xcodebuild -list for schemes/configurations",
                           {"timeout": f"{list_timeout:g}s"}))
        try:
            listed = toolchain.xcodebuild_list(scope, cfg, timeout=list_timeout)
        except (XcboltError, OSError) as e:
            scope.raise_if_canceled()
            emit(events.warn("context",
                             f"Could not list schemes/configurations via xcodebuild: {e}"))
        else:
            schemes = sorted(set(schemes) | set(listed.schemes))
            configurations = sorted(set(configurations) | set(listed.configurations))

    _select(cfg, schemes, configurations, emitter, "context")

    simulators: list[Simulator] = []
    try:
        simulators = toolchain.enumerate_simulators(scope, timeout=list_timeout)
    except (XcboltError, OSError) as e:
        scope.raise_if_canceled()
        emit(events.warn("context", f"Could not list simulators: {e}"))

    devices: list[Device] = []
    if toolchain.devicectl_available(scope):
        try:
            devices = toolchain.enumerate_devices(scope, timeout=list_timeout)
        except (XcboltError, OSError) as e:
            scope.raise_if_canceled()
            emit(events.warn("context", f"Could not list devices: {e}"))
    else:
        emit(events.warn("context",
                         "devicectl not available (install Xcode Command Line Tools / select Xcode)"))

    return ContextInfo(
        project_root=root,
        workspaces=workspaces,
        projects=projects,
        schemes=schemes,
        configurations=configurations,
        simulators=simulators,
        devices=devices,
    )
