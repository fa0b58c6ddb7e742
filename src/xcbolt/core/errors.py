# Copyright 2026. Exception hierarchy shared by the pipeline, adapters and CLI.

from dataclasses import dataclass


@dataclass(frozen=True)
class ErrorObject:
    code: str
    message: str
    detail: str = ""
    suggestion: str = ""


class XcboltError(Exception):
    """Base class for every error raised by xcbolt."""


class PipelineError(XcboltError):
    """A pipeline stage failed; the matching error event has been emitted."""

    def __init__(self, error: ErrorObject):
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> str:
        return self.error.code


class Canceled(XcboltError):
    def __init__(self, reason: str = "canceled"):
        super().__init__(reason)
        self.reason = reason


class DeadlineExceeded(Canceled):
    def __init__(self, seconds: float):
        super().__init__(f"deadline exceeded after {seconds:g}s")
        self.seconds = seconds


class CommandError(XcboltError):
    """A captured tool invocation exited non-zero."""

    def __init__(self, argv: list[str], exit_code: int, stderr: str = ""):
        detail = stderr.strip()
        msg = f"{' '.join(argv)} exited with code {exit_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr = stderr


class LineTooLongError(XcboltError):
    def __init__(self, stream: str, limit: int):
        super().__init__(f"{stream}: line exceeds {limit} bytes")
        self.stream = stream
        self.limit = limit


class ConfigVersionError(XcboltError):
    def __init__(self, path: str, got: int, want: int):
        super().__init__(
            f"config version mismatch for {path}: got v{got}, expected v{want} "
            "(run `xcbolt init` to regenerate config)"
        )
        self.path = path
        self.got = got
        self.want = want


class DestinationNotFound(XcboltError):
    pass


class DestinationAmbiguous(XcboltError):
    def __init__(self, message: str, matches: list | None = None):
        super().__init__(message)
        self.matches = list(matches or [])


class WatchPlanError(XcboltError):
    pass


class ExitCodeError(XcboltError):
    """A command failure that maps to a specific process exit code."""

    def __init__(self, exit_code: int, message: str):
        super().__init__(message)
        self.exit_code = exit_code
