# Copyright 2026. Process runner with process-group cancellation and line streaming.

import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Callable

from xcbolt.core.errors import Canceled, CommandError, DeadlineExceeded, LineTooLongError
from xcbolt.core.logging import log_activity

MAX_LINE_BYTES = 2 * 1024 * 1024
GRACE_PERIOD_S = 3.0

LineHandler = Callable[[str], None]


class CancelScope:
    """Cooperative cancellation shared by every task of one invocation.

    Child scopes are canceled with their parent; canceling a child leaves
    the parent untouched.
    """

    def __init__(self, parent: "CancelScope | None" = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._error: Canceled | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._children: list[CancelScope] = []
        self._timer: threading.Timer | None = None
        self._parent = parent
        if parent is not None:
            parent._attach(self)

    @property
    def canceled(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Canceled | None:
        return self._error

    def cancel(self, reason: str = "canceled") -> None:
        self._cancel_with(Canceled(reason))

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_canceled(self) -> None:
        if self._error is not None:
            raise self._error

    def child(self) -> "CancelScope":
        return CancelScope(self)

    def with_timeout(self, seconds: float | None) -> "CancelScope":
        scope = CancelScope(self)
        if seconds and seconds > 0:
            scope._timer = threading.Timer(
                seconds, scope._cancel_with, args=(DeadlineExceeded(seconds),))
            scope._timer.daemon = True
            scope._timer.start()
        return scope

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register `callback`; runs immediately if already canceled.

        Returns a function that unregisters it.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)
                return _remove
        callback()
        return lambda: None

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        if self._parent is not None:
            self._parent._detach(self)

    def __enter__(self) -> "CancelScope":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _attach(self, child: "CancelScope") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
        child._cancel_with(self._error or Canceled())

    def _detach(self, child: "CancelScope") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def _cancel_with(self, error: Canceled) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._error = error
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
            children, self._children = self._children, []
        if self._timer is not None:
            self._timer.cancel()
        for child in children:
            child._cancel_with(error)
        for cb in callbacks:
            cb()


@dataclass
class CmdSpec:
    argv: list[str]
    cwd: str = ""
    env: dict[str, str] = field(default_factory=dict)
    keep_empty: bool = False
    activity_log: str = ""


@dataclass
class CmdResult:
    exit_code: int
    pid: int
    duration: float
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CaptureResult:
    stdout: str
    stderr: str
    result: CmdResult


def merge_env(base: dict[str, str], overrides: dict[str, str]) -> dict[str, str]:
    env = dict(base)
    env.update(overrides)
    return env


def format_command(argv: list[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


class StreamingProcess:
    """A child process in its own session with line-reader threads.

    Stdout and stderr are read on separate threads; each handler sees its
    stream's lines in order. Lines longer than MAX_LINE_BYTES end the
    stream with a LineTooLongError rather than being truncated.
    """

    def __init__(self, spec: CmdSpec, scope: CancelScope,
                 on_stdout: LineHandler | None = None,
                 on_stderr: LineHandler | None = None,
                 with_stdin: bool = False):
        self.spec = spec
        self._scope = scope
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr
        self._with_stdin = with_stdin
        self._proc: subprocess.Popen | None = None
        self._readers: list[threading.Thread] = []
        self._read_errors: list[Exception] = []
        self._stdin_lock = threading.Lock()
        self._killer: threading.Thread | None = None
        self._unregister: Callable[[], None] = lambda: None
        self._started = 0.0

    @property
    def pid(self) -> int:
        return self._proc.pid if self._proc else 0

    def start(self) -> "StreamingProcess":
        self._scope.raise_if_canceled()
        env = merge_env(dict(os.environ), self.spec.env)
        log_activity(self.spec.activity_log, "exec", format_command(self.spec.argv))
        self._started = time.monotonic()
        self._proc = subprocess.Popen(
            self.spec.argv,
            stdin=subprocess.PIPE if self._with_stdin else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.spec.cwd or None,
            env=env,
            start_new_session=True,
        )
        for pipe, name, handler in (
            (self._proc.stdout, "stdout", self._on_stdout),
            (self._proc.stderr, "stderr", self._on_stderr),
        ):
            t = threading.Thread(target=self._read_lines, args=(pipe, name, handler),
                                 daemon=True)
            t.start()
            self._readers.append(t)
        self._unregister = self._scope.on_cancel(self._start_killer)
        return self

    def write_line(self, line: str) -> None:
        """Write one line to the child's stdin. Raises OSError once the pipe is gone."""
        if self._proc is None or self._proc.stdin is None:
            raise BrokenPipeError("stdin not attached")
        with self._stdin_lock:
            self._proc.stdin.write(line.encode("utf-8") + b"\n")
            self._proc.stdin.flush()

    def close_stdin(self) -> Exception | None:
        if self._proc is None or self._proc.stdin is None:
            return None
        with self._stdin_lock:
            try:
                self._proc.stdin.close()
            except OSError as e:
                return e
        return None

    def wait(self) -> CmdResult:
        proc = self._proc
        if proc is None:
            raise RuntimeError("process not started")
        proc.wait()
        self._unregister()
        for t in self._readers:
            t.join()
        if self._killer is not None:
            self._killer.join()
        duration = time.monotonic() - self._started
        code = proc.returncode if proc.returncode is not None else -1
        log_activity(self.spec.activity_log, "exit",
                     f"{self.spec.argv[0]} code={code} pid={proc.pid} in {duration:.2f}s")

        error: Exception | None = None
        if self._scope.canceled:
            error = self._scope.error
        elif self._read_errors:
            error = self._read_errors[0]
        elif code != 0:
            error = CommandError(self.spec.argv, code)
        return CmdResult(exit_code=code, pid=proc.pid, duration=duration, error=error)

    def _read_lines(self, pipe: IO[bytes], stream: str, handler: LineHandler | None) -> None:
        try:
            while True:
                raw = pipe.readline(MAX_LINE_BYTES + 1)
                if not raw:
                    break
                if len(raw) > MAX_LINE_BYTES and not raw.endswith(b"\n"):
                    self._read_errors.append(LineTooLongError(stream, MAX_LINE_BYTES))
                    while pipe.read(65536):
                        pass
                    break
                line = raw.rstrip(b"\n")
                if line.endswith(b"\r"):
                    line = line[:-1]
                if not line and not self.spec.keep_empty:
                    continue
                if handler is not None:
                    handler(line.decode("utf-8", errors="replace"))
        finally:
            pipe.close()

    def _start_killer(self) -> None:
        self._killer = threading.Thread(target=self._terminate, daemon=True)
        self._killer.start()

    def _terminate(self) -> None:
        proc = self._proc
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._signal_group(sig)
            try:
                proc.wait(timeout=GRACE_PERIOD_S)
                return
            except subprocess.TimeoutExpired:
                continue
        self._signal_group(signal.SIGKILL)
        proc.wait()

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self._proc.pid, sig)
        except ProcessLookupError:
            pass


def run_streaming(spec: CmdSpec, scope: CancelScope,
                  on_stdout: LineHandler | None = None,
                  on_stderr: LineHandler | None = None) -> CmdResult:
    """Run a command to completion, delivering each output line to a handler.

    Start failures raise immediately (OSError, or Canceled when the scope
    is already canceled). Everything after start is reported in
    CmdResult.error; cancellation takes precedence over the exit status.
    """
    proc = StreamingProcess(spec, scope, on_stdout, on_stderr).start()
    return proc.wait()


def capture(spec: CmdSpec, scope: CancelScope, timeout: float | None = None,
            check: bool = True) -> CaptureResult:
    """Run a command and collect its output.

    With check=True a failed run raises: Canceled/DeadlineExceeded when
    canceled, CommandError (carrying stderr) on non-zero exit.
    """
    out: list[str] = []
    errs: list[str] = []
    keep = CmdSpec(argv=spec.argv, cwd=spec.cwd, env=spec.env, keep_empty=True,
                   activity_log=spec.activity_log)
    with scope.with_timeout(timeout) as sub:
        res = run_streaming(keep, sub, out.append, errs.append)
    stdout = "\n".join(out)
    stderr = "\n".join(errs)
    if check and res.error is not None:
        if isinstance(res.error, CommandError):
            raise CommandError(spec.argv, res.exit_code, stderr)
        raise res.error
    return CaptureResult(stdout=stdout, stderr=stderr, result=res)
