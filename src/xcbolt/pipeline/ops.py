# Copyright 2026. Build, test and run pipelines composed from the toolchain adapters.

import dataclasses
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from xcbolt.core import events
from xcbolt.core.appbundle import AppBundleInfo, mac_executable_path, read_app_bundle_info
from xcbolt.core.config import Config, ensure_project_dirs, resolve_path
from xcbolt.core.destination import (
    Destination,
    DestinationKind,
    destination_metadata,
    normalize_destination,
)
from xcbolt.core.errors import Canceled, ErrorObject, PipelineError, XcboltError
from xcbolt.core.events import Emitter
from xcbolt.core.log_sink import LogSink
from xcbolt.core.runner import CancelScope, CmdResult
from xcbolt.core.sessions import add_session
from xcbolt.pipeline import console as app_console
from xcbolt.pipeline.context import ensure_scheme_and_configuration
from xcbolt.pipeline.resolver import list_candidates, resolve_destination
from xcbolt.pipeline.watch import plan_watch_deployment, resolve_companion_device_id
from xcbolt.tools.protocol import Toolchain
from xcbolt.tools.simctl import parse_first_int
from xcbolt.tools.xcodebuild import base_args, format_command, guess_app_bundle_path, test_identifiers

RESULT_BUNDLE_STAMP = "%Y%m%d-%H%M%S"


@dataclass
class BuildResult:
    result_bundle: str
    exit_code: int = 0
    duration: float = 0.0
    app_path: str = ""
    bundle_id: str = ""
    dry_run: bool = False


@dataclass
class TestResult:
    result_bundle: str
    exit_code: int = 0
    duration: float = 0.0
    summary: Any = None
    dry_run: bool = False


@dataclass
class RunResult:
    result_bundle: str = ""
    app_path: str = ""
    bundle_id: str = ""
    pid: int = 0
    target: str = ""
    udid: str = ""
    dry_run: bool = False


class Pipeline:
    """The build/test/run state machines for one invocation.

    Every stage failure emits an `error` event (and a failed `result`
    where a tool ran) before raising PipelineError. Cancellation emits a
    `status` and re-raises Canceled with no `result`.
    """

    def __init__(self, root: str, toolchain: Toolchain, emitter: Emitter, scope: CancelScope,
                 force_raw_logs: bool = False, clock: Callable[[], datetime] = datetime.now):
        self.root = root
        self.toolchain = toolchain
        self.emitter = emitter
        self.scope = scope
        self.force_raw_logs = force_raw_logs
        self._clock = clock

    def _emit(self, event: events.Event) -> None:
        self.emitter.emit(event)

    def _fail(self, command: str, code: str, message: str, detail: str = "",
              suggestion: str = "") -> PipelineError:
        error = ErrorObject(code=code, message=message, detail=detail, suggestion=suggestion)
        self._emit(events.err(command, error))
        return PipelineError(error)

    def _canceled(self, command: str, message: str, data: Any = None) -> None:
        self._emit(events.status(command, message, data))

    # -- Preamble ----------------------------------------------------------

    def _prepare(self, command: str, cfg: Config) -> str:
        """Scheme, destination, output dirs; returns the result bundle path."""
        try:
            ensure_scheme_and_configuration(self.root, cfg, self.emitter, command)
        except XcboltError as e:
            raise self._fail(command, "SCHEME_REQUIRED", "No scheme configured", str(e),
                             "Run `xcbolt init` or pass --scheme.") from e

        try:
            dst = resolve_destination(cfg.destination, list_candidates(self.toolchain, self.scope))
        except Canceled:
            raise
        except XcboltError as e:
            raise self._fail(command, "DESTINATION_REQUIRED", "No destination available", str(e),
                             "Select a simulator/device or create one with `xcbolt simulator`.") from e
        dst = normalize_destination(dst)
        if dst.kind == DestinationKind.AUTO:
            raise self._fail(command, "DESTINATION_REQUIRED", "No destination available",
                             "destination is still auto; unable to determine target",
                             "Pass --platform, --target and --target-type.")
        cfg.destination = dst
        self._emit(events.status(command, "Resolved destination", destination_metadata(dst)))

        derived = resolve_path(self.root, cfg.derived_data_path)
        results = resolve_path(self.root, cfg.result_bundles_path)
        ensure_project_dirs(self.root)
        for path in (derived, results):
            if path:
                os.makedirs(path, exist_ok=True)
        stamp = self._clock().strftime(RESULT_BUNDLE_STAMP)
        return os.path.join(results, f"{stamp}.xcresult")

    def _xcodebuild_args(self, cfg: Config, bundle_path: str) -> list[str]:
        args = base_args(self.root, cfg)
        derived = resolve_path(self.root, cfg.derived_data_path)
        if derived:
            args += ["-derivedDataPath", derived]
        args += ["-resultBundlePath", bundle_path]
        return args

    def _new_sink(self, command: str, cfg: Config) -> LogSink:
        return LogSink(command, self.emitter, self.scope,
                       log_format=cfg.xcodebuild.log_format,
                       format_args=cfg.xcodebuild.log_format_args,
                       force_raw=self.force_raw_logs)

    def _stream_xcodebuild(self, command: str, cfg: Config, args: list[str],
                           runner: Callable) -> CmdResult:
        sink = self._new_sink(command, cfg)
        try:
            res = runner(self.scope, args, cfg.xcodebuild.env, sink.handle_line)
        except OSError as e:
            res = CmdResult(exit_code=-1, pid=0, duration=0.0, error=e)
        except Canceled as e:
            res = CmdResult(exit_code=-1, pid=0, duration=0.0, error=e)
        sink.finalize(res.error, res.exit_code)
        return res

    # -- Build -------------------------------------------------------------

    def build(self, cfg: Config) -> BuildResult:
        try:
            bundle_path = self._prepare("build", cfg)
            return self._build(cfg, bundle_path)
        except Canceled:
            self._canceled("build", "Build canceled")
            raise

    def _build(self, cfg: Config, bundle_path: str) -> BuildResult:
        args = self._xcodebuild_args(cfg, bundle_path) + ["build"] + list(cfg.xcodebuild.options)
        self._emit(events.status("build", "Build started", {"resultBundle": bundle_path}))
        cfg.last_result_bundle = bundle_path
        if cfg.xcodebuild.dry_run:
            self._emit(events.log("build", "Dry run: " + format_command("xcodebuild", args)))
            self._emit(events.result("build", True, {
                "exitCode": 0, "resultBundle": bundle_path, "dryRun": True}))
            return BuildResult(result_bundle=bundle_path, dry_run=True)

        res = self._stream_xcodebuild("build", cfg, args, self.toolchain.run_build)
        if isinstance(res.error, Canceled):
            raise res.error
        if res.error is not None:
            err = self._fail("build", "XCODEBUILD_FAILED", "xcodebuild failed", str(res.error),
                             "Run with --json to capture structured logs, or open the "
                             ".xcresult bundle for details.")
            self._emit(events.result("build", False, {
                "exitCode": res.exit_code, "resultBundle": bundle_path}))
            raise err

        app_path = bundle_id = ""
        try:
            settings = self.toolchain.show_build_settings(self.scope, cfg)
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            self._emit(events.warn("build", f"Could not read build settings: {e}"))
        else:
            bundle_id = settings.get("PRODUCT_BUNDLE_IDENTIFIER", "")
            try:
                app_path = guess_app_bundle_path(settings)
            except XcboltError:
                app_path = ""
        if app_path:
            cfg.last_built_app_bundle = app_path
        if bundle_id:
            cfg.last_bundle_id = bundle_id

        self._emit(events.result("build", True, {
            "exitCode": 0,
            "resultBundle": bundle_path,
            "durationMs": int(res.duration * 1000),
            "bundleId": bundle_id,
            "appPath": app_path,
        }))
        return BuildResult(result_bundle=bundle_path, exit_code=0, duration=res.duration,
                           app_path=app_path, bundle_id=bundle_id)

    # -- Test --------------------------------------------------------------

    def test(self, cfg: Config, only: list[str] | None = None,
             skip: list[str] | None = None) -> TestResult:
        try:
            bundle_path = self._prepare("test", cfg)
            return self._test(cfg, bundle_path, list(only or []), list(skip or []))
        except Canceled:
            self._canceled("test", "Tests canceled")
            raise

    def _test(self, cfg: Config, bundle_path: str, only: list[str],
              skip: list[str]) -> TestResult:
        args = self._xcodebuild_args(cfg, bundle_path)
        args += [f"-only-testing:{t}" for t in only]
        args += [f"-skip-testing:{t}" for t in skip]
        args += ["test"] + list(cfg.xcodebuild.options)

        self._emit(events.status("test", "Tests started", {"resultBundle": bundle_path}))
        cfg.last_result_bundle = bundle_path
        if cfg.xcodebuild.dry_run:
            self._emit(events.log("test", "Dry run: " + format_command("xcodebuild", args)))
            self._emit(events.result("test", True, {
                "exitCode": 0, "resultBundle": bundle_path, "dryRun": True}))
            return TestResult(result_bundle=bundle_path, dry_run=True)

        res = self._stream_xcodebuild("test", cfg, args, self.toolchain.run_test)
        if isinstance(res.error, Canceled):
            raise res.error

        summary = None
        try:
            summary = self.toolchain.xcresult_summary(self.scope, bundle_path)
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            self._emit(events.warn("test", f"Could not parse xcresult test summary: {e}"))

        data = {
            "exitCode": res.exit_code,
            "resultBundle": bundle_path,
            "durationMs": int(res.duration * 1000),
            "summary": summary,
        }
        if res.error is not None:
            err = self._fail("test", "XCODEBUILD_TEST_FAILED", "xcodebuild test failed",
                             str(res.error),
                             "Inspect the .xcresult bundle for structured failures.")
            self._emit(events.result("test", False, data))
            raise err
        self._emit(events.result("test", True, data))
        return TestResult(result_bundle=bundle_path, exit_code=res.exit_code,
                          duration=res.duration, summary=summary)

    def list_tests(self, cfg: Config) -> list[str]:
        """Enumerate test identifiers without running them."""
        try:
            self._prepare("test", cfg)
            try:
                tree = self.toolchain.enumerate_tests(self.scope, cfg)
            except Canceled:
                raise
            except (XcboltError, OSError) as e:
                raise self._fail("test", "TEST_ENUMERATION_FAILED", "Failed to enumerate tests",
                                 str(e), "Build the test target once, then retry.") from e
        except Canceled:
            self._canceled("test", "Tests canceled")
            raise
        tests = test_identifiers(tree)
        self._emit(events.result("test", True, {"tests": tests, "enumeration": tree}))
        return tests

    # -- Run ---------------------------------------------------------------

    def run(self, cfg: Config, console: bool = False) -> RunResult:
        try:
            return self._run(cfg, console)
        except Canceled:
            self._canceled("run", "Run canceled")
            raise

    def _run(self, cfg: Config, console: bool) -> RunResult:
        bundle_path = self._prepare("run", cfg)
        dst = cfg.destination

        if dst.is_watch_device and not dst.companion_target_id.strip():
            raise self._fail("run", "WATCH_COMPANION_REQUIRED",
                             "Companion target required for watchOS device runs",
                             "watchOS physical runs require a paired companion target",
                             "Run with --companion-target <paired-iphone-udid-or-name>.")

        if cfg.xcodebuild.dry_run:
            args = self._xcodebuild_args(cfg, bundle_path) + ["build"] + list(cfg.xcodebuild.options)
            self._emit(events.status("run", "Dry run enabled; skipping build/install/launch"))
            self._emit(events.log("run", "Dry run: " + format_command("xcodebuild", args)))
            self._emit(events.result("run", True, {"dryRun": True, "resultBundle": bundle_path}))
            return RunResult(result_bundle=bundle_path, target=dst.kind.value, udid=dst.udid,
                             dry_run=True)

        built = self._build(cfg, bundle_path)
        app_path = self._locate_app(cfg, built.app_path)
        cfg.last_built_app_bundle = app_path

        try:
            info = read_app_bundle_info(app_path)
        except XcboltError as e:
            raise self._fail("run", "APP_BUNDLE_INFO_FAILED", "Failed to read app Info.plist",
                             str(e), "Verify the built .app is valid.") from e
        if not info.bundle_id:
            raise self._fail("run", "BUNDLE_ID_MISSING", "Bundle ID missing",
                             "could not determine bundle id from Info.plist",
                             "Ensure PRODUCT_BUNDLE_IDENTIFIER is set for the app target.")
        cfg.last_bundle_id = info.bundle_id

        env = app_console.launch_env(cfg, console)
        if dst.kind == DestinationKind.SIMULATOR:
            return self._run_simulator(cfg, app_path, info, env, console)
        if dst.kind == DestinationKind.DEVICE:
            if dst.is_watch_device:
                return self._run_watch(cfg, app_path, info, env, console)
            return self._run_device(cfg, app_path, info, env, console)
        if dst.kind in (DestinationKind.MACOS, DestinationKind.CATALYST):
            return self._run_mac(cfg, app_path, info, env)
        raise self._fail("run", "DESTINATION_REQUIRED", "No destination available",
                         f"run not implemented for destination kind {dst.kind.value!r}")

    def _locate_app(self, cfg: Config, reported: str) -> str:
        app_path = reported if reported and os.path.exists(reported) else ""
        if not app_path:
            try:
                settings = self.toolchain.show_build_settings(self.scope, cfg)
            except Canceled:
                raise
            except (XcboltError, OSError) as e:
                raise self._fail("run", "BUILD_SETTINGS_FAILED", "Failed to read build settings",
                                 str(e), "Check scheme/configuration and destination.") from e
            try:
                app_path = guess_app_bundle_path(settings)
            except XcboltError as e:
                raise self._fail("run", "APP_BUNDLE_NOT_FOUND", "Unable to locate built app bundle",
                                 str(e), "Ensure the scheme builds an app target.") from e
        if not os.path.exists(app_path):
            raise self._fail("run", "APP_BUNDLE_MISSING", "Built app bundle is missing",
                             f"{app_path}: no such file or directory",
                             "Clean and rebuild, or verify the scheme produces an .app.")
        return app_path

    def _record_session(self, bundle_id: str, pid: int, dst: Destination) -> None:
        try:
            add_session(self.root, bundle_id, pid, dst)
        except OSError as e:
            self._emit(events.warn("run", f"Could not record session: {e}"))

    def _running(self, cfg: Config, app_path: str, bundle_id: str, pid: int,
                 dst: Destination, extra: dict | None = None) -> RunResult:
        self._record_session(bundle_id, pid, dst)
        self._emit(events.status("run", "Running", {"pid": pid, "bundleId": bundle_id}))
        data = {"pid": pid, "bundleId": bundle_id}
        data.update(extra or {})
        self._emit(events.result("run", True, data))
        return RunResult(result_bundle=cfg.last_result_bundle, app_path=app_path,
                         bundle_id=bundle_id, pid=pid, target=dst.kind.value, udid=dst.udid)

    def _console_handler(self, cfg: Config, info: AppBundleInfo, stderr: bool):
        filter_system = not cfg.launch.stream_system_logs
        dedupe = cfg.launch.stream_unified_logs

        def _on_line(line: str) -> None:
            msg = app_console.format_console_line(info, 0, stderr, line, filter_system, dedupe)
            if msg is not None:
                self._emit(events.log_stream("run", msg, "app"))
        return _on_line

    def _start_unified_logs(self, cfg: Config, udid: str,
                            info: AppBundleInfo) -> tuple[CancelScope, threading.Thread] | None:
        predicate = app_console.sim_log_predicate(cfg, info)
        if not predicate:
            return None
        log_scope = self.scope.child()
        levels = cfg.launch.console_log_levels

        def _on_line(line: str) -> None:
            msg = app_console.format_unified_line(line, levels)
            if msg is not None:
                self._emit(events.log_stream("run", msg, "unified"))

        def _stream() -> None:
            try:
                res = self.toolchain.sim_log_stream(log_scope, udid, predicate, _on_line)
            except (XcboltError, OSError) as e:
                if not isinstance(e, Canceled):
                    self._emit(events.warn("run", f"simctl log stream failed: {e}"))
                return
            if res.error is not None and not isinstance(res.error, Canceled):
                self._emit(events.warn("run", f"simctl log stream failed: {res.error}"))

        t = threading.Thread(target=_stream, daemon=True)
        t.start()
        return log_scope, t

    def _run_simulator(self, cfg: Config, app_path: str, info: AppBundleInfo,
                       env: dict[str, str], console: bool) -> RunResult:
        dst = cfg.destination
        udid = dst.udid
        self._emit(events.status("run", "Booting simulator", {"udid": udid}))
        try:
            self.toolchain.boot_simulator(self.scope, udid)
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            self._emit(events.warn("run", f"simctl boot: {e}"))
        try:
            self.toolchain.open_simulator(self.scope)
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            self._emit(events.warn("run", f"Could not open Simulator.app: {e}"))
        try:
            self.toolchain.wait_for_boot(self.scope, udid)
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            raise self._fail("run", "SIM_INSTALL_FAILED", "Simulator did not finish booting",
                             str(e), "Try resetting the simulator or cleaning DerivedData.") from e

        self._emit(events.status("run", "Installing app", {"app": app_path}))
        try:
            res = self.toolchain.install_on_simulator(
                self.scope, udid, app_path, lambda line: self._emit(events.log("run", line)))
        except OSError as e:
            res = CmdResult(exit_code=-1, pid=0, duration=0.0, error=e)
        if isinstance(res.error, Canceled):
            raise res.error
        if res.error is not None:
            raise self._fail("run", "SIM_INSTALL_FAILED", "Failed to install app on simulator",
                             str(res.error), "Try resetting the simulator or cleaning DerivedData.")

        streamer = None
        if console and cfg.launch.stream_unified_logs:
            streamer = self._start_unified_logs(cfg, udid, info)

        self._emit(events.status("run", "Launching app", {"bundleId": info.bundle_id}))
        try:
            launch = self.toolchain.launch_on_simulator(
                self.scope, udid, info.bundle_id, list(cfg.launch.options), env, console,
                self._console_handler(cfg, info, False), self._console_handler(cfg, info, True))
        except OSError as e:
            raise self._fail("run", "SIM_LAUNCH_FAILED", "Failed to launch app on simulator",
                             str(e), "Check simulator state and app bundle id.") from e
        finally:
            if streamer is not None:
                log_scope, t = streamer
                log_scope.cancel("app launcher exited")
                t.join()
                log_scope.close()

        pid = launch.pid
        error = launch.result.error
        if isinstance(error, Canceled):
            raise error
        if error is not None:
            if pid > 0:
                self._record_session(info.bundle_id, pid, dst)
                self._emit(events.status("run", "App exited", {
                    "pid": pid, "bundleId": info.bundle_id, "exitCode": launch.result.exit_code}))
                self._emit(events.result("run", True, {"pid": pid, "bundleId": info.bundle_id}))
                return RunResult(result_bundle=cfg.last_result_bundle, app_path=app_path,
                                 bundle_id=info.bundle_id, pid=pid, target=dst.kind.value,
                                 udid=udid)
            raise self._fail("run", "SIM_LAUNCH_FAILED", "Failed to launch app on simulator",
                             str(error), "Check simulator state and app bundle id.")
        if pid == 0:
            pid = parse_first_int(launch.stdout)
        return self._running(cfg, app_path, info.bundle_id, pid, dst)

    def _device_output(self, cfg: Config, info: AppBundleInfo, console: bool, stderr: bool):
        if console:
            return self._console_handler(cfg, info, stderr)
        return lambda line: self._emit(events.log("run", line))

    def _run_device(self, cfg: Config, app_path: str, info: AppBundleInfo,
                    env: dict[str, str], console: bool) -> RunResult:
        dst = cfg.destination
        udid = dst.udid
        self._emit(events.status("run", "Installing app on device", {"udid": udid}))
        try:
            self.toolchain.install_on_device(self.scope, udid, app_path,
                                             lambda line: self._emit(events.log("run", line)))
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            raise self._fail("run", "DEVICE_INSTALL_FAILED", "Failed to install app on device",
                             str(e), "Ensure device is trusted/unlocked and provisioning is valid.") from e

        self._emit(events.status("run", "Launching app on device",
                                 {"bundleId": info.bundle_id, "console": console}))
        try:
            pid = self.toolchain.launch_on_device(
                self.scope, udid, info.bundle_id, console, env,
                self._device_output(cfg, info, console, False),
                self._device_output(cfg, info, console, True))
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            raise self._fail("run", "DEVICE_LAUNCH_FAILED", "Failed to launch app on device",
                             str(e), "Check device logs and app signing.") from e
        return self._running(cfg, app_path, info.bundle_id, pid, dst)

    def _run_watch(self, cfg: Config, app_path: str, info: AppBundleInfo,
                   env: dict[str, str], console: bool) -> RunResult:
        dst = cfg.destination
        udid = dst.udid

        def _resolve_companion(target: str) -> str:
            return resolve_companion_device_id(list_candidates(self.toolchain, self.scope), target)

        try:
            plan = plan_watch_deployment(dst, app_path, info, _resolve_companion)
        except Canceled:
            raise
        except XcboltError as e:
            raise self._fail("run", "WATCH_DEPLOYMENT_FAILED",
                             "Failed to prepare watchOS companion deployment", str(e),
                             "Provide --companion-target and ensure build outputs both iPhone "
                             "and Watch .app bundles.") from e
        dst = dataclasses.replace(dst, companion_target_id=plan.companion_device_id,
                                  companion_bundle_id=plan.companion_info.bundle_id)
        cfg.destination = dataclasses.replace(cfg.destination,
                                              companion_target_id=plan.companion_device_id)

        self._emit(events.status("run", "Installing companion app on paired iPhone", {
            "companionDevice": plan.companion_device_id, "app": plan.companion_app_path}))
        try:
            self.toolchain.install_on_device(self.scope, plan.companion_device_id,
                                             plan.companion_app_path,
                                             lambda line: self._emit(events.log("run", line)))
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            raise self._fail("run", "WATCH_COMPANION_INSTALL_FAILED",
                             "Failed to install companion app on paired iPhone", str(e),
                             "Ensure paired iPhone is connected/unlocked and signing is valid.") from e

        self._emit(events.status("run", "Installing watch app on device",
                                 {"udid": udid, "app": plan.watch_app_path}))
        try:
            self.toolchain.install_on_device(self.scope, udid, plan.watch_app_path,
                                             lambda line: self._emit(events.log("run", line)))
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            raise self._fail("run", "WATCH_INSTALL_FAILED",
                             "Failed to install watch app on watch device", str(e),
                             "Verify the watch target bundle is built and the watch is "
                             "paired/unlocked.") from e

        watch_id = plan.watch_info.bundle_id
        self._emit(events.status("run", "Launching watch app on device",
                                 {"bundleId": watch_id, "console": console}))
        try:
            pid = self.toolchain.launch_on_device(
                self.scope, udid, watch_id, console, env,
                self._device_output(cfg, plan.watch_info, console, False),
                self._device_output(cfg, plan.watch_info, console, True))
        except Canceled:
            raise
        except (XcboltError, OSError) as e:
            raise self._fail("run", "WATCH_LAUNCH_FAILED", "Failed to launch watch app on device",
                             str(e), "Check watch device connectivity and companion "
                             "installation state.") from e
        return self._running(cfg, plan.watch_app_path, watch_id, pid, dst,
                             {"companionTargetId": plan.companion_device_id})

    def _run_mac(self, cfg: Config, app_path: str, info: AppBundleInfo,
                 env: dict[str, str]) -> RunResult:
        if not info.executable:
            raise self._fail("run", "APP_EXECUTABLE_MISSING", "Missing app executable",
                             "missing CFBundleExecutable in app bundle",
                             "Ensure the target builds a macOS app bundle.")
        exe = mac_executable_path(app_path, info)
        if not os.path.exists(exe):
            raise self._fail("run", "APP_EXECUTABLE_MISSING", "App executable not found",
                             f"{exe}: no such file or directory",
                             "Ensure the target builds a macOS app bundle.")

        self._emit(events.status("run", "Launching app on Mac", {"app": app_path}))
        try:
            pid = self.toolchain.spawn_mac_app(exe, list(cfg.launch.options), env)
        except OSError as e:
            raise self._fail("run", "MAC_LAUNCH_FAILED", "Failed to launch app on Mac", str(e),
                             "Check app bundle and permissions.") from e
        return self._running(cfg, app_path, info.bundle_id, pid, cfg.destination)
