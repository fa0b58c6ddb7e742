# Copyright 2026. Invocation helper for tools reached through the xcrun launcher.

from dataclasses import dataclass

from xcbolt.core.runner import (
    CancelScope,
    CaptureResult,
    CmdResult,
    CmdSpec,
    LineHandler,
    capture,
    run_streaming,
)

LIST_TIMEOUT_S = 5.0
SINGLE_SHOT_TIMEOUT_S = 10.0


@dataclass
class Xcrun:
    """Builds CmdSpecs for `xcrun <tool> ...` and runs them."""

    launcher: str = "xcrun"
    cwd: str = ""
    activity_log: str = ""

    def spec(self, args: list[str], env: dict[str, str] | None = None,
             launcher: str | None = None) -> CmdSpec:
        prog = self.launcher if launcher is None else launcher
        argv = ([prog] if prog else []) + list(args)
        return CmdSpec(argv=argv, cwd=self.cwd, env=dict(env or {}),
                       activity_log=self.activity_log)

    def capture(self, args: list[str], scope: CancelScope, timeout: float | None = None,
                check: bool = True, env: dict[str, str] | None = None) -> CaptureResult:
        return capture(self.spec(args, env), scope, timeout=timeout, check=check)

    def stream(self, args: list[str], scope: CancelScope,
               on_stdout: LineHandler | None = None,
               on_stderr: LineHandler | None = None,
               env: dict[str, str] | None = None) -> CmdResult:
        return run_streaming(self.spec(args, env), scope, on_stdout, on_stderr)

    def direct(self, argv: list[str], scope: CancelScope,
               timeout: float | None = None, check: bool = True) -> CaptureResult:
        """Run a program that is not behind the launcher (e.g. `open`)."""
        return capture(self.spec(argv, launcher=""), scope, timeout=timeout, check=check)
