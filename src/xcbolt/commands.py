# Copyright 2026. Subcommand implementations behind the xcbolt CLI.

import dataclasses
import json
import os
import shlex
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass, field

from xcbolt.core import events
from xcbolt.core.config import (
    XCBOLT_DIR,
    Config,
    config_path,
    default_config,
    ensure_project_dirs,
    load_config,
    migrate_config,
    persisted_view,
    save_config,
)
from xcbolt.core.destination import (
    LOCAL_CATALYST_NAME,
    LOCAL_MAC_NAME,
    DestinationKind,
    PlatformFamily,
    TargetType,
    kind_for,
    normalize_platform_family,
    normalize_target_type,
)
from xcbolt.core.errors import ConfigVersionError, ExitCodeError, XcboltError
from xcbolt.core.events import ActivityLogEmitter, Emitter, NDJSONEmitter, TextEmitter
from xcbolt.core.runner import CancelScope
from xcbolt.core.sessions import find_sessions, load_sessions, remove_session, sessions_to_dict
from xcbolt.doctor import run_doctor
from xcbolt.pipeline.context import context_to_dict, discover_context
from xcbolt.pipeline.ops import Pipeline
from xcbolt.pipeline.resolver import resolve_for_config
from xcbolt.tools import devicectl, simctl
from xcbolt.tools.project_fs import find_project_root
from xcbolt.tools.toolchain import XcrunToolchain

CONTEXT_TIMEOUT_S = 60
STOP_TIMEOUT_S = 30
SIM_LIST_TIMEOUT_S = 30
SIM_BOOT_TIMEOUT_S = 60
SIM_ERASE_TIMEOUT_S = 120
SINGLE_SHOT_TIMEOUT_S = 10
DEVICE_INSTALL_TIMEOUT_S = 120
DEVICE_LAUNCH_TIMEOUT_S = 60

EXIT_NO_CONTAINER = 2
EXIT_NO_SCHEME = 3
EXIT_NO_CONFIGURATION = 4


# ── Context ─────────────────────────────────────────────────────────────────

@dataclass
class AppContext:
    """Everything a subcommand needs: project root, output sink and cancellation."""

    root: str
    emitter: Emitter
    scope: CancelScope
    config_override: str = ""
    json: bool = False
    verbose: bool = False
    log_format: str = ""
    log_format_args: list[str] = field(default_factory=list)

    @property
    def config_file(self) -> str:
        return self.config_override or config_path(self.root)

    @property
    def activity_log(self) -> str:
        if not self.verbose:
            return ""
        return os.path.join(self.root, XCBOLT_DIR, "activity.log")

    def with_log_format(self, cfg: Config) -> Config:
        if self.log_format:
            cfg.xcodebuild.log_format = self.log_format
        if self.log_format_args:
            cfg.xcodebuild.log_format_args = list(self.log_format_args)
        return cfg

    def load_config(self) -> Config:
        return self.with_log_format(load_config(self.root, self.config_override))

    def save_config(self, cfg: Config) -> None:
        save_config(self.root, cfg, self.config_override)

    def toolchain(self) -> XcrunToolchain:
        return XcrunToolchain(self.root, activity_log=self.activity_log)

    def pipeline(self) -> Pipeline:
        return Pipeline(self.root, self.toolchain(), self.emitter, self.scope,
                        force_raw_logs=self.json)

    def output(self, command: str, data, text: str | None = None) -> None:
        """A command's final payload: a result event in JSON mode, text otherwise."""
        if self.json:
            self.emitter.emit(events.result(command, True, data))
            return
        print(text if text is not None else json.dumps(data, indent=2))


def new_app_context(args, scope: CancelScope) -> AppContext:
    """Raises EventVersionError for an unsupported --event-version."""
    root = find_project_root(getattr(args, "project", "") or "")
    if args.json:
        emitter: Emitter = NDJSONEmitter(sys.stdout, args.event_version)
    else:
        emitter = TextEmitter(sys.stdout)
    ac = AppContext(
        root=root,
        emitter=emitter,
        scope=scope,
        config_override=args.config or "",
        json=args.json,
        verbose=args.verbose,
        log_format=args.log_format or "",
        log_format_args=list(args.log_format_arg or []),
    )
    if ac.verbose:
        os.makedirs(os.path.join(root, XCBOLT_DIR), exist_ok=True)
        ac.emitter = ActivityLogEmitter(emitter, ac.activity_log)
    return ac


# ── Overrides ───────────────────────────────────────────────────────────────

def apply_overrides(cfg: Config, scheme: str = "", configuration: str = "", platform: str = "",
                    target: str = "", target_type: str = "", companion_target: str = "") -> None:
    """Fold destination/scheme flags into the loaded config.

    Raises XcboltError for an unknown --platform or --target-type value.
    """
    if scheme:
        cfg.scheme = scheme
    if configuration:
        cfg.configuration = configuration

    dst = cfg.destination
    if platform:
        family = normalize_platform_family(platform)
        if family == PlatformFamily.UNKNOWN:
            raise XcboltError(f"unknown --platform value {platform!r}")
        dst = dataclasses.replace(dst, platform_family=family)
    if target_type:
        tt = normalize_target_type(target_type)
        if tt == TargetType.AUTO:
            raise XcboltError(f"unknown --target-type value {target_type!r}")
        dst = dataclasses.replace(dst, target_type=tt)
    if (platform or target_type) and not target:
        # The previous target belongs to the old platform/target type.
        dst = dataclasses.replace(dst, target_id="", udid="", name="", platform="", os="",
                                  runtime_id="")
    if (platform or target_type) and dst.target_type != TargetType.AUTO:
        dst = dataclasses.replace(dst, kind=kind_for(dst.target_type, dst.platform_family))
    if target:
        target = target.strip()
        dst = dataclasses.replace(dst, target_id=target, udid=target, name=target,
                                  platform="", os="", runtime_id="")
    if companion_target:
        dst = dataclasses.replace(dst, companion_target_id=companion_target.strip())

    if dst.target_type == TargetType.LOCAL:
        catalyst = dst.platform_family == PlatformFamily.CATALYST
        family = PlatformFamily.CATALYST if catalyst else PlatformFamily.MACOS
        dst = dataclasses.replace(
            dst,
            platform_family=family,
            kind=DestinationKind.CATALYST if catalyst else DestinationKind.MACOS,
            name=LOCAL_CATALYST_NAME if catalyst else LOCAL_MAC_NAME,
            target_id="",
            udid="",
            platform="macOS",
            os="macOS",
        )
    cfg.destination = dst


def _apply_destination_flags(args, ac: AppContext, cfg: Config, command: str) -> None:
    target = args.target or ""
    target_type = args.target_type or ""
    legacy_sim = getattr(args, "simulator", "") or ""
    legacy_dev = getattr(args, "device", "") or ""
    if legacy_sim:
        ac.emitter.emit(events.warn(
            command, "--simulator is deprecated; use --target-type simulator --target <udid>"))
        target = target or legacy_sim
        target_type = target_type or "simulator"
    elif legacy_dev:
        ac.emitter.emit(events.warn(
            command, "--device is deprecated; use --target-type device --target <udid>"))
        target = target or legacy_dev
        target_type = target_type or "device"
    apply_overrides(cfg, args.scheme or "", args.configuration or "", args.platform or "",
                    target, target_type, args.companion_target or "")


def _persisted_key(cfg: Config) -> tuple:
    d = cfg.destination
    return (cfg.scheme, cfg.configuration, cfg.workspace, cfg.project, d.kind, d.udid,
            d.target_id, d.platform_family, d.target_type, d.companion_target_id)


def persist_config_if_changed(ac: AppContext, before: tuple, cfg: Config) -> bool:
    """Save `cfg` when scheme/configuration are set and a document field moved."""
    if not cfg.scheme or not cfg.configuration:
        return False
    if _persisted_key(cfg) == before:
        return False
    try:
        ac.save_config(cfg)
    except (OSError, XcboltError) as e:
        ac.emitter.emit(events.warn("config", f"Failed to save config: {e}"))
        return False
    return True


# ── Pipeline commands ───────────────────────────────────────────────────────

def _pipeline_config(args, ac: AppContext, command: str) -> tuple[Config, tuple]:
    cfg = ac.load_config()
    before = _persisted_key(cfg)
    _apply_destination_flags(args, ac, cfg, command)
    return cfg, before


def cmd_build(args, ac: AppContext) -> int:
    cfg, before = _pipeline_config(args, ac, "build")
    try:
        ac.pipeline().build(cfg)
    finally:
        persist_config_if_changed(ac, before, cfg)
    return 0


def cmd_test(args, ac: AppContext) -> int:
    cfg, before = _pipeline_config(args, ac, "test")
    try:
        if args.list:
            ac.pipeline().list_tests(cfg)
        else:
            ac.pipeline().test(cfg, only=args.only, skip=args.skip)
    finally:
        persist_config_if_changed(ac, before, cfg)
    return 0


def cmd_run(args, ac: AppContext) -> int:
    cfg, before = _pipeline_config(args, ac, "run")
    try:
        ac.pipeline().run(cfg, console=args.console)
    finally:
        persist_config_if_changed(ac, before, cfg)
    return 0


# ── Project / sessions ──────────────────────────────────────────────────────

def cmd_context(args, ac: AppContext) -> int:
    cfg = ac.load_config()
    with ac.scope.with_timeout(CONTEXT_TIMEOUT_S) as scope:
        info = discover_context(ac.root, cfg, ac.toolchain(), scope, ac.emitter)
    ac.output("context", context_to_dict(info, cfg))
    return 0


def cmd_apps(args, ac: AppContext) -> int:
    ac.output("apps", sessions_to_dict(load_sessions(ac.root)))
    return 0


def cmd_stop(args, ac: AppContext) -> int:
    matches = find_sessions(ac.root, args.id)
    if not matches:
        raise XcboltError(f"no tracked session found for {args.id}")
    sess = matches[0]
    xc = ac.toolchain().xc
    with ac.scope.with_timeout(STOP_TIMEOUT_S) as scope:
        if sess.target == "simulator":
            if not sess.udid:
                raise XcboltError("session missing simulator udid")
            simctl.terminate(xc, scope, sess.udid, sess.bundle_id)
        elif sess.target == "device":
            if not sess.udid:
                raise XcboltError("session missing device udid")
            devicectl.stop(xc, scope, sess.udid, sess.pid, sess.bundle_id)
        elif sess.target in ("macos", "catalyst"):
            if sess.pid <= 0:
                raise XcboltError("session missing process id")
            try:
                os.kill(sess.pid, signal.SIGTERM)
            except ProcessLookupError:
                ac.emitter.emit(events.warn("stop", f"Process {sess.pid} already exited"))
        else:
            raise XcboltError(f"stop not implemented for target {sess.target!r}")
    remove_session(ac.root, sess.id)
    ac.output("stop", {"id": sess.id, "bundleId": sess.bundle_id}, f"Stopped {sess.bundle_id}")
    return 0


def cmd_logs(args, ac: AppContext) -> int:
    cfg = ac.load_config()
    apply_overrides(cfg, platform=args.platform or "", target=args.target or "",
                    target_type=args.target_type or "")
    tc = ac.toolchain()
    dst = resolve_for_config(tc, ac.scope, cfg.destination)

    if dst.kind == DestinationKind.SIMULATOR:
        def _on_line(line: str) -> None:
            if ac.json:
                ac.emitter.emit(events.log("logs", line))
            else:
                print(line, flush=True)

        res = simctl.log_stream(tc.xc, ac.scope, dst.udid, args.predicate or "", _on_line)
        if res.error is not None:
            raise res.error
        return 0
    if dst.kind == DestinationKind.DEVICE:
        ac.emitter.emit(events.warn(
            "logs", "Device log streaming is best-effort; prefer `xcbolt run --console` "
                    "or open Console.app and filter by device/bundle id."))
        return 0
    raise XcboltError("logs not supported for this destination kind")


# ── Simulators ──────────────────────────────────────────────────────────────

def cmd_simulator_list(args, ac: AppContext) -> int:
    tc = ac.toolchain()
    with ac.scope.with_timeout(SIM_LIST_TIMEOUT_S) as scope:
        sims = tc.enumerate_simulators(scope)
    ac.output("simulator", [simctl.simulator_to_dict(s) for s in sims])
    return 0


def cmd_simulator_boot(args, ac: AppContext) -> int:
    xc = ac.toolchain().xc
    with ac.scope.with_timeout(SIM_BOOT_TIMEOUT_S) as scope:
        simctl.boot(xc, scope, args.udid)
        simctl.bootstatus(xc, scope, args.udid)
    ac.emitter.emit(events.status("simulator", "Simulator booted", {"udid": args.udid}))
    return 0


def cmd_simulator_shutdown(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SIM_LIST_TIMEOUT_S) as scope:
        simctl.shutdown(ac.toolchain().xc, scope, args.udid)
    return 0


def cmd_simulator_erase(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SIM_ERASE_TIMEOUT_S) as scope:
        simctl.erase(ac.toolchain().xc, scope, args.udid)
    return 0


def cmd_simulator_open(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SINGLE_SHOT_TIMEOUT_S) as scope:
        simctl.open_simulator_app(ac.toolchain().xc, scope)
    return 0


def cmd_simulator_openurl(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SINGLE_SHOT_TIMEOUT_S) as scope:
        simctl.open_url(ac.toolchain().xc, scope, args.udid, args.url)
    return 0


def cmd_simulator_screenshot(args, ac: AppContext) -> int:
    out = args.out or os.path.join(XCBOLT_DIR, "screenshots", f"{args.udid}.png")
    out = os.path.join(ac.root, out)
    with ac.scope.with_timeout(SINGLE_SHOT_TIMEOUT_S) as scope:
        simctl.screenshot(ac.toolchain().xc, scope, args.udid, out)
    ac.output("simulator", {"path": out}, out)
    return 0


def cmd_simulator_create(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SINGLE_SHOT_TIMEOUT_S) as scope:
        udid = simctl.create(ac.toolchain().xc, scope, args.name, args.device_type,
                             args.runtime)
    ac.output("simulator", {"udid": udid}, udid)
    return 0


def cmd_simulator_delete(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SINGLE_SHOT_TIMEOUT_S) as scope:
        simctl.delete(ac.toolchain().xc, scope, args.udid)
    return 0


def cmd_simulator_prune(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(SIM_LIST_TIMEOUT_S) as scope:
        simctl.prune(ac.toolchain().xc, scope)
    return 0


# ── Devices ─────────────────────────────────────────────────────────────────

def cmd_device_list(args, ac: AppContext) -> int:
    tc = ac.toolchain()
    with ac.scope.with_timeout(SIM_LIST_TIMEOUT_S) as scope:
        devices = tc.enumerate_devices(scope)
    ac.output("device", [devicectl.device_to_dict(d) for d in devices])
    return 0


def cmd_device_install(args, ac: AppContext) -> int:
    with ac.scope.with_timeout(DEVICE_INSTALL_TIMEOUT_S) as scope:
        devicectl.install(ac.toolchain().xc, scope, args.udid, args.app_path,
                          lambda line: ac.emitter.emit(events.log("device", line)))
    return 0


def cmd_device_launch(args, ac: AppContext) -> int:
    def _on_line(line: str) -> None:
        ac.emitter.emit(events.log("device", line))

    with ac.scope.with_timeout(DEVICE_LAUNCH_TIMEOUT_S) as scope:
        pid = devicectl.launch(ac.toolchain().xc, scope, args.udid, args.bundle_id,
                               console=args.console, on_stdout=_on_line, on_stderr=_on_line)
    ac.emitter.emit(events.result("device", True, {"pid": pid, "bundleId": args.bundle_id}))
    return 0


# ── Housekeeping ────────────────────────────────────────────────────────────

def cmd_config(args, ac: AppContext) -> int:
    if args.migrate:
        res = migrate_config(ac.root, ac.config_override)
        data = {"fromVersion": res.from_version, "toVersion": res.to_version,
                "path": res.path, "backupPath": res.backup_path}
        if res.backup_path:
            text = (f"Migrated config from v{res.from_version} to v{res.to_version}: "
                    f"{res.path} (backup: {res.backup_path})")
        else:
            text = f"Config already at v{res.to_version}: {res.path}"
        ac.output("config", data, text)
        return 0

    cfg = ac.load_config()
    if args.edit:
        editor = os.environ.get("EDITOR", "")
        if not editor:
            raise XcboltError("EDITOR is not set; export EDITOR or run without --edit to print config")
        ac.save_config(cfg)
        subprocess.run(shlex.split(editor) + [ac.config_file], check=False)
        print(f"Opened {ac.config_file} in {editor}")
        return 0

    ac.output("config", persisted_view(cfg))
    return 0


def _remove_path(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)


def cmd_clean(args, ac: AppContext) -> int:
    nothing_selected = not (args.all or args.derived_data or args.results
                            or args.sessions or args.spm_cache)
    xcbolt_dir = os.path.join(ac.root, XCBOLT_DIR)
    paths = []
    if args.all or args.derived_data or nothing_selected:
        paths.append(os.path.join(xcbolt_dir, "DerivedData"))
    if args.all or args.results or nothing_selected:
        paths.append(os.path.join(xcbolt_dir, "Results"))
    if args.all or args.sessions or nothing_selected:
        paths.append(os.path.join(xcbolt_dir, "sessions.json"))
    if args.all or args.spm_cache:
        home = os.path.expanduser("~")
        paths.append(os.path.join(home, "Library", "Caches", "org.swift.swiftpm"))
        paths.append(os.path.join(home, "Library", "Developer", "Xcode", "SourcePackages"))

    for path in paths:
        _remove_path(path)
        if ac.json:
            ac.emitter.emit(events.status("clean", "Removed", {"path": path}))
        else:
            print(f"Removed {path}")
    return 0


def pick_init_defaults(info, cfg: Config) -> Config:
    """Best-effort choices: workspace over project, first scheme and configuration."""
    if not cfg.workspace and info.workspaces:
        cfg.workspace = os.path.basename(info.workspaces[0])
    if not cfg.project and not cfg.workspace and info.projects:
        cfg.project = os.path.basename(info.projects[0])
    if not cfg.scheme and info.schemes:
        cfg.scheme = info.schemes[0]
    if not cfg.configuration and info.configurations:
        cfg.configuration = info.configurations[0]
    if not cfg.configuration:
        cfg.configuration = "Debug"
    return cfg


def cmd_init(args, ac: AppContext) -> int:
    try:
        cfg = ac.load_config()
    except ConfigVersionError as e:
        ac.emitter.emit(events.warn("init", str(e)))
        cfg = ac.with_log_format(default_config(ac.root))

    ac.emitter.emit(events.status("init", "Loading project context…"))
    tc = ac.toolchain()
    with ac.scope.with_timeout(CONTEXT_TIMEOUT_S) as scope:
        info = discover_context(ac.root, cfg, tc, scope, ac.emitter)
        cfg = pick_init_defaults(info, cfg)
        if args.non_interactive:
            if not cfg.workspace and not cfg.project:
                raise ExitCodeError(EXIT_NO_CONTAINER, "no workspace/project detected")
            if not cfg.scheme:
                raise ExitCodeError(EXIT_NO_SCHEME, "no scheme detected")
            if not cfg.configuration:
                raise ExitCodeError(EXIT_NO_CONFIGURATION, "no build configuration detected")
        if cfg.destination.kind == DestinationKind.AUTO:
            try:
                cfg.destination = resolve_for_config(tc, scope, cfg.destination)
            except XcboltError as e:
                scope.raise_if_canceled()
                ac.emitter.emit(events.warn("init", f"Could not resolve a destination: {e}"))

    ensure_project_dirs(ac.root)
    ac.save_config(cfg)
    ac.emitter.emit(events.result("init", True, {"config": ac.config_file}))
    return 0


def cmd_doctor(args, ac: AppContext) -> int:
    report = run_doctor(ac.root, ac.toolchain().xc, ac.scope, ac.emitter, ac.config_override)
    return 0 if report.ok else 1
