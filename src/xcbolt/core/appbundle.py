# Copyright 2026. App bundle metadata (Info.plist) and on-disk bundle discovery.

import os
import plistlib
from dataclasses import dataclass

from xcbolt.core.errors import XcboltError

DEFAULT_DISCOVERY_DEPTH = 3


@dataclass(frozen=True)
class AppBundleInfo:
    bundle_id: str = ""
    display_name: str = ""
    bundle_name: str = ""
    executable: str = ""
    version: str = ""
    build_version: str = ""
    is_watch_app: bool = False
    companion_bundle_id: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.bundle_name or self.executable or self.bundle_id


class AppBundleError(XcboltError):
    pass


def info_plist_path(app_path: str) -> str:
    """iOS-style bundles keep Info.plist at the root, macOS ones under Contents/."""
    flat = os.path.join(app_path, "Info.plist")
    if os.path.isfile(flat):
        return flat
    nested = os.path.join(app_path, "Contents", "Info.plist")
    if os.path.isfile(nested):
        return nested
    return flat


def read_app_bundle_info(app_path: str) -> AppBundleInfo:
    path = info_plist_path(app_path)
    try:
        with open(path, "rb") as f:
            data = plistlib.load(f)
    except OSError as e:
        raise AppBundleError(f"read Info.plist: {e}") from e
    except (plistlib.InvalidFileException, ValueError) as e:
        raise AppBundleError(f"parse Info.plist: {e}") from e
    if not isinstance(data, dict):
        raise AppBundleError(f"parse Info.plist: {path} is not a dictionary")

    def _str(key: str) -> str:
        val = data.get(key)
        return val if isinstance(val, str) else ""

    watch = data.get("WKWatchKitApp")
    return AppBundleInfo(
        bundle_id=_str("CFBundleIdentifier"),
        display_name=_str("CFBundleDisplayName"),
        bundle_name=_str("CFBundleName"),
        executable=_str("CFBundleExecutable"),
        version=_str("CFBundleShortVersionString"),
        build_version=_str("CFBundleVersion"),
        is_watch_app=watch if isinstance(watch, bool) else False,
        companion_bundle_id=_str("WKCompanionAppBundleIdentifier"),
    )


def discover_app_bundles(root: str, max_depth: int = DEFAULT_DISCOVERY_DEPTH) -> list[str]:
    """Find `.app` directories under `root`, never descending into a bundle.

    Depth counts path components below `root`; a missing root yields [].
    """
    if not root or not root.strip() or not os.path.isdir(root):
        return []
    if max_depth <= 0:
        max_depth = DEFAULT_DISCOVERY_DEPTH
    root = os.path.normpath(root)
    found: list[str] = []
    for dirpath, dirnames, _ in os.walk(root):
        rel = os.path.relpath(dirpath, root)
        depth = 0 if rel == "." else rel.count(os.sep) + 1
        keep = []
        for name in sorted(dirnames):
            if depth + 1 > max_depth:
                continue
            full = os.path.join(dirpath, name)
            if name.lower().endswith(".app"):
                found.append(full)
            else:
                keep.append(name)
        dirnames[:] = keep
    return found


def mac_executable_path(app_path: str, info: AppBundleInfo) -> str:
    return os.path.join(app_path, "Contents", "MacOS", info.executable)
