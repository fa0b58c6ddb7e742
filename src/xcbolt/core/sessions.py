# Copyright 2026. Launched-app session registry under .xcbolt/sessions.json.

import os
from dataclasses import dataclass, field
from pathlib import Path

from xcbolt.core.config import XCBOLT_DIR, ensure_project_dirs
from xcbolt.core.destination import (
    Destination,
    DestinationKind,
    normalize_destination,
)
from xcbolt.core.logging import utc_timestamp
from xcbolt.core.state import LockedStateManager

SESSIONS_VERSION = 2


@dataclass
class Session:
    id: str
    bundle_id: str
    target: str
    started_at: str
    pid: int = 0
    udid: str = ""
    platform_family: str = ""
    target_type: str = ""
    target_id: str = ""
    companion_target_id: str = ""
    companion_bundle_id: str = ""


@dataclass
class Sessions:
    version: int = SESSIONS_VERSION
    items: list[Session] = field(default_factory=list)


def sessions_path(root: str) -> str:
    return os.path.join(root, XCBOLT_DIR, "sessions.json")


def _session_to_dict(s: Session) -> dict:
    d = {"id": s.id, "bundleId": s.bundle_id, "target": s.target, "startedAt": s.started_at}
    for key, val in (
        ("pid", s.pid),
        ("udid", s.udid),
        ("platformFamily", s.platform_family),
        ("targetType", s.target_type),
        ("targetId", s.target_id),
        ("companionTargetId", s.companion_target_id),
        ("companionBundleId", s.companion_bundle_id),
    ):
        if val:
            d[key] = val
    return d


def _dict_to_session(d: dict) -> Session:
    return Session(
        id=d.get("id", ""),
        bundle_id=d.get("bundleId", ""),
        target=d.get("target", ""),
        started_at=d.get("startedAt", ""),
        pid=int(d.get("pid", 0) or 0),
        udid=d.get("udid", ""),
        platform_family=d.get("platformFamily", ""),
        target_type=d.get("targetType", ""),
        target_id=d.get("targetId", ""),
        companion_target_id=d.get("companionTargetId", ""),
        companion_bundle_id=d.get("companionBundleId", ""),
    )


def sessions_to_dict(s: Sessions) -> dict:
    return {"version": SESSIONS_VERSION, "items": [_session_to_dict(i) for i in s.items]}


def _dict_to_sessions(d: dict) -> Sessions:
    if not isinstance(d, dict) or d.get("version") != SESSIONS_VERSION:
        # Older or newer schema: start over with an empty registry.
        return Sessions()
    return Sessions(items=[_dict_to_session(i) for i in d.get("items") or []])


def _store(root: str) -> LockedStateManager[Sessions]:
    return LockedStateManager(Path(sessions_path(root)), sessions_to_dict,
                              _dict_to_sessions, Sessions)


def load_sessions(root: str) -> Sessions:
    return _store(root).load()


def session_for(bundle_id: str, pid: int, dst: Destination) -> Session:
    dst = normalize_destination(dst)
    target = dst.kind.value
    if dst.kind == DestinationKind.AUTO:
        target = dst.target_type.value
    target_id = dst.target_id.strip() or dst.udid.strip()
    sid = f"{bundle_id}@{target_id}" if target_id else bundle_id
    return Session(
        id=sid,
        bundle_id=bundle_id,
        target=target,
        started_at=utc_timestamp(),
        pid=pid,
        udid=target_id,
        platform_family=dst.platform_family.value,
        target_type=dst.target_type.value,
        target_id=target_id,
        companion_target_id=dst.companion_target_id,
        companion_bundle_id=dst.companion_bundle_id,
    )


def add_session(root: str, bundle_id: str, pid: int, dst: Destination) -> Session:
    """Record a launch, replacing any session with the same id."""
    sess = session_for(bundle_id, pid, dst)

    def _mutate(s: Sessions) -> None:
        s.items = [i for i in s.items if i.id != sess.id]
        s.items.append(sess)

    ensure_project_dirs(root)
    _store(root).update(_mutate)
    return sess


def remove_session(root: str, key: str) -> list[Session]:
    """Drop every session whose id or bundle id equals `key`; returns the removed ones."""
    removed: list[Session] = []

    def _mutate(s: Sessions) -> None:
        keep = []
        for i in s.items:
            if i.id == key or i.bundle_id == key:
                removed.append(i)
            else:
                keep.append(i)
        s.items = keep

    ensure_project_dirs(root)
    _store(root).update(_mutate)
    return removed


def find_sessions(root: str, key: str) -> list[Session]:
    return [i for i in load_sessions(root).items if i.id == key or i.bundle_id == key]
