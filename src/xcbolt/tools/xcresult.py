# Copyright 2026. xcresulttool adapter: test summary extraction from a result bundle.

import json
from typing import Any

from xcbolt.core.errors import CommandError, XcboltError
from xcbolt.core.runner import CancelScope
from xcbolt.tools.xcodebuild import loads_lenient
from xcbolt.tools.xcrun import Xcrun


def summary_candidates(bundle: str) -> list[list[str]]:
    return [
        ["xcresulttool", "get", "test-results", "summary", "--path", bundle, "--format", "json"],
        ["xcresulttool", "get", "test-results", "summary", "--path", bundle],
        ["xcresulttool", "get", "--path", bundle, "--format", "json"],
        ["xcresulttool", "get", "--path", bundle],
    ]


def test_summary(xc: Xcrun, scope: CancelScope, bundle: str) -> Any:
    """Parsed JSON summary from the first command shape that works.

    Raises the last failure when no shape succeeds.
    """
    if not bundle:
        raise XcboltError("missing result bundle path")
    last_error: Exception | None = None
    for argv in summary_candidates(bundle):
        try:
            out = xc.capture(argv, scope)
        except CommandError as e:
            last_error = e
            continue
        try:
            return loads_lenient(out.stdout)
        except json.JSONDecodeError as e:
            last_error = XcboltError(f"xcresult json parse: {e}")
    raise last_error or XcboltError("failed to read xcresult")
