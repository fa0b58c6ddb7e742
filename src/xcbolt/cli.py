# Copyright 2026. Unified CLI entry point for xcbolt.

import argparse
import signal
import sys
import threading

from xcbolt import commands
from xcbolt.core import events
from xcbolt.core.config import LOG_FORMATS
from xcbolt.core.errors import Canceled, ErrorObject, ExitCodeError, PipelineError, XcboltError
from xcbolt.core.events import SCHEMA_VERSION
from xcbolt.core.runner import CancelScope

EXIT_CANCELED = 130


def _add_global_flags(parser: argparse.ArgumentParser, suppress: bool = False) -> None:
    """The persistent flags; subparsers get them with SUPPRESS so either position works."""
    def d(value):
        return argparse.SUPPRESS if suppress else value

    parser.add_argument("--json", action="store_true", default=d(False),
                        help="Emit NDJSON event stream to stdout")
    parser.add_argument("--event-version", type=int, default=d(SCHEMA_VERSION),
                        help=f"Event schema version for --json (default: {SCHEMA_VERSION})")
    parser.add_argument("--config", default=d(""),
                        help="Path to config file (default: .xcbolt/config.json)")
    parser.add_argument("--project", default=d(""),
                        help="Project directory (default: auto-detected)")
    parser.add_argument("--verbose", action="store_true", default=d(False),
                        help="Mirror commands and events into .xcbolt/activity.log")
    parser.add_argument("--log-format", choices=LOG_FORMATS,
                        default=d(""), help="Log formatter for xcodebuild output")
    parser.add_argument("--log-format-arg", action="append", default=d([]),
                        help="Additional arg for the log formatter (repeatable)")


def _add_destination_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--scheme", help="Override scheme")
    p.add_argument("--configuration", help="Override configuration (Debug/Release/...)")
    p.add_argument("--platform",
                   help="Destination platform family (ios|ipados|tvos|visionos|watchos|macos|catalyst)")
    p.add_argument("--target", help="Destination ID or exact name")
    p.add_argument("--target-type", help="Destination target type (simulator|device|local)")
    p.add_argument("--companion-target",
                   help="Companion destination ID/name (watchOS physical runs)")
    p.add_argument("--simulator", help=argparse.SUPPRESS)
    p.add_argument("--device", help=argparse.SUPPRESS)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xcbolt",
        description="A reliable driver for xcodebuild, simctl and devicectl.",
    )
    _add_global_flags(parser)
    common = argparse.ArgumentParser(add_help=False)
    _add_global_flags(common, suppress=True)

    sub = parser.add_subparsers(dest="command")

    def add(name: str, help: str) -> argparse.ArgumentParser:
        return sub.add_parser(name, help=help, parents=[common])

    p = add("build", "Build the configured scheme")
    _add_destination_flags(p)
    p.set_defaults(func=commands.cmd_build)

    p = add("test", "Run tests for the configured scheme")
    _add_destination_flags(p)
    p.add_argument("--list", action="store_true", help="List tests without running them")
    p.add_argument("--only", action="append", default=[], metavar="IDENTIFIER",
                   help="Only run this test (repeatable)")
    p.add_argument("--skip", action="append", default=[], metavar="IDENTIFIER",
                   help="Skip this test (repeatable)")
    p.set_defaults(func=commands.cmd_test)

    p = add("run", "Build, install, and launch the app")
    _add_destination_flags(p)
    p.add_argument("--console", action="store_true",
                   help="Stream app output (simctl --console / devicectl --console)")
    p.set_defaults(func=commands.cmd_run)

    add("context", "Discover project, schemes, simulators, and devices").set_defaults(
        func=commands.cmd_context)
    add("apps", "List apps launched by xcbolt (tracked sessions)").set_defaults(
        func=commands.cmd_apps)

    p = add("stop", "Stop a running app previously launched by xcbolt")
    p.add_argument("id", help="Bundle id or session id")
    p.set_defaults(func=commands.cmd_stop)

    p = add("logs", "Stream logs (simulator via log stream; device logs best-effort)")
    p.add_argument("--predicate", default="", help="log stream predicate (simulator only)")
    p.add_argument("--platform", help="Destination platform family")
    p.add_argument("--target", help="Destination ID or exact name")
    p.add_argument("--target-type", help="Destination target type (simulator|device|local)")
    p.set_defaults(func=commands.cmd_logs)

    sim = add("simulator", "Manage simulators (simctl)")
    sim_sub = sim.add_subparsers(dest="action")
    sim_sub.required = True
    sim_sub.add_parser("list", help="List simulators", parents=[common]).set_defaults(
        func=commands.cmd_simulator_list)
    for name, help, fn in (
        ("boot", "Boot a simulator", commands.cmd_simulator_boot),
        ("shutdown", "Shutdown a simulator", commands.cmd_simulator_shutdown),
        ("erase", "Erase a simulator", commands.cmd_simulator_erase),
        ("delete", "Delete a simulator", commands.cmd_simulator_delete),
    ):
        p = sim_sub.add_parser(name, help=help, parents=[common])
        p.add_argument("udid")
        p.set_defaults(func=fn)
    sim_sub.add_parser("open", help="Open Simulator.app", parents=[common]).set_defaults(
        func=commands.cmd_simulator_open)
    p = sim_sub.add_parser("openurl", help="Open a URL on a simulator", parents=[common])
    p.add_argument("udid")
    p.add_argument("url")
    p.set_defaults(func=commands.cmd_simulator_openurl)
    p = sim_sub.add_parser("screenshot", help="Take a screenshot from a simulator",
                           parents=[common])
    p.add_argument("udid")
    p.add_argument("out", nargs="?", default="", help="Output path (default: .xcbolt/screenshots/<udid>.png)")
    p.set_defaults(func=commands.cmd_simulator_screenshot)
    p = sim_sub.add_parser("create", help="Create a simulator", parents=[common])
    p.add_argument("name")
    p.add_argument("device_type", metavar="deviceTypeId")
    p.add_argument("runtime", metavar="runtimeId")
    p.set_defaults(func=commands.cmd_simulator_create)
    sim_sub.add_parser("prune", help="Delete unavailable simulators", parents=[common]).set_defaults(
        func=commands.cmd_simulator_prune)

    dev = add("device", "Manage physical devices (devicectl)")
    dev_sub = dev.add_subparsers(dest="action")
    dev_sub.required = True
    dev_sub.add_parser("list", help="List connected devices", parents=[common]).set_defaults(
        func=commands.cmd_device_list)
    p = dev_sub.add_parser("install", help="Install an .app bundle on a device", parents=[common])
    p.add_argument("udid")
    p.add_argument("app_path")
    p.set_defaults(func=commands.cmd_device_install)
    p = dev_sub.add_parser("launch", help="Launch an app on a device by bundle id",
                           parents=[common])
    p.add_argument("udid")
    p.add_argument("bundle_id")
    p.add_argument("--console", action="store_true", help="Attempt to stream console output")
    p.set_defaults(func=commands.cmd_device_launch)

    p = add("config", "Show or edit the xcbolt config")
    p.add_argument("--edit", action="store_true", help="Open config in $EDITOR")
    p.add_argument("--migrate", action="store_true",
                   help="Migrate config to the latest schema version")
    p.set_defaults(func=commands.cmd_config)

    p = add("clean", "Clean xcbolt artifacts (DerivedData, Results, sessions)")
    p.add_argument("--all", action="store_true", help="Remove every artifact below")
    p.add_argument("--derived-data", action="store_true", help="Remove .xcbolt/DerivedData")
    p.add_argument("--results", action="store_true", help="Remove .xcbolt/Results")
    p.add_argument("--sessions", action="store_true", help="Remove .xcbolt/sessions.json")
    p.add_argument("--spm-cache", action="store_true", help="Remove SwiftPM caches")
    p.set_defaults(func=commands.cmd_clean)

    p = add("init", "Initialize project configuration (.xcbolt/config.json)")
    p.add_argument("--non-interactive", action="store_true",
                   help="Fail with exit 2/3/4 instead of writing an incomplete config")
    p.set_defaults(func=commands.cmd_init)

    add("doctor", "Check the Xcode toolchain and project setup").set_defaults(
        func=commands.cmd_doctor)
    return parser


def _install_sigint(scope: CancelScope):
    """First Ctrl-C cancels the scope; a second one interrupts outright."""
    if threading.current_thread() is not threading.main_thread():
        return None

    def _handler(signum, frame):
        if scope.canceled:
            raise KeyboardInterrupt
        scope.cancel("interrupted")

    return signal.signal(signal.SIGINT, _handler)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    scope = CancelScope()
    try:
        ac = commands.new_app_context(args, scope)
    except XcboltError as e:
        print(f"xcbolt: {e}", file=sys.stderr)
        return 1

    previous = _install_sigint(scope)
    try:
        return args.func(args, ac) or 0
    except (Canceled, KeyboardInterrupt):
        return EXIT_CANCELED
    except PipelineError:
        return 1
    except ExitCodeError as e:
        ac.emitter.emit(events.err(args.command, ErrorObject(code="INIT_FAILED", message=str(e))))
        return e.exit_code
    except (XcboltError, OSError) as e:
        ac.emitter.emit(events.err(args.command, ErrorObject(code="COMMAND_FAILED", message=str(e))))
        return 1
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)
        scope.close()


if __name__ == "__main__":
    sys.exit(main())
