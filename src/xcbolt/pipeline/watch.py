# Copyright 2026. watchOS device deployment planner: pairs a watch app with its iPhone companion.

import os
from dataclasses import dataclass
from typing import Callable

from xcbolt.core.appbundle import AppBundleError, AppBundleInfo, discover_app_bundles, read_app_bundle_info
from xcbolt.core.destination import Destination, PlatformFamily, TargetType
from xcbolt.core.errors import WatchPlanError
from xcbolt.pipeline.resolver import DestinationCandidate

NEARBY_SEARCH_DEPTH = 4
EMBEDDED_SEARCH_DEPTH = 2

CompanionResolver = Callable[[str], str]


@dataclass
class WatchDeployment:
    companion_device_id: str
    companion_app_path: str
    companion_info: AppBundleInfo
    watch_app_path: str
    watch_info: AppBundleInfo


def resolve_companion_device_id(candidates: list[DestinationCandidate], target: str) -> str:
    """Pick the single connected iPhone/iPad whose id or name equals `target`."""
    wanted = target.strip().lower()
    matches = [
        c for c in candidates
        if c.target_type == TargetType.DEVICE
        and c.platform_family in (PlatformFamily.IOS, PlatformFamily.IPADOS)
        and (c.id.lower() == wanted or c.name.lower() == wanted)
    ]
    if not matches:
        raise WatchPlanError(
            f"companion target {target!r} not found among connected iPhone/iPad devices")
    if len(matches) > 1:
        names = ", ".join(f"{m.name} ({m.id})" for m in matches)
        raise WatchPlanError(f"companion target {target!r} is ambiguous: {names}")
    return matches[0].id


def _readable_bundles(paths: list[str]) -> list[tuple[str, AppBundleInfo]]:
    out = []
    for p in paths:
        try:
            out.append((p, read_app_bundle_info(p)))
        except AppBundleError:
            continue
    return out


def find_companion_app_near_watch(watch_app_path: str,
                                  companion_bundle_id: str) -> tuple[str, AppBundleInfo]:
    build_dir = os.path.dirname(watch_app_path)
    watch_app_path = os.path.normpath(watch_app_path)
    candidates = [
        (p, info) for p, info in _readable_bundles(
            discover_app_bundles(build_dir, NEARBY_SEARCH_DEPTH))
        if os.path.normpath(p) != watch_app_path and info.bundle_id and not info.is_watch_app
    ]
    if companion_bundle_id:
        for p, info in candidates:
            if info.bundle_id == companion_bundle_id:
                return p, info
    if len(candidates) == 1:
        return candidates[0]
    raise WatchPlanError("unable to resolve companion iOS app bundle near watch app")


def _pairs_with(info: AppBundleInfo, companion_bundle_id: str) -> bool:
    if not info.is_watch_app:
        return False
    if info.companion_bundle_id and companion_bundle_id:
        return info.companion_bundle_id == companion_bundle_id
    return True


def find_watch_app_for_companion(companion_app_path: str,
                                 companion_bundle_id: str) -> tuple[str, AppBundleInfo]:
    embedded = discover_app_bundles(os.path.join(companion_app_path, "Watch"),
                                    EMBEDDED_SEARCH_DEPTH)
    for p, info in _readable_bundles(embedded):
        if _pairs_with(info, companion_bundle_id):
            return p, info

    build_dir = os.path.dirname(companion_app_path)
    candidates = [
        (p, info) for p, info in _readable_bundles(
            discover_app_bundles(build_dir, NEARBY_SEARCH_DEPTH))
        if _pairs_with(info, companion_bundle_id)
    ]
    if len(candidates) == 1:
        return candidates[0]
    if not candidates:
        raise WatchPlanError(
            "watch app bundle not found (expected companion/Watch/*.app or nearby watch app output)")
    raise WatchPlanError("multiple watch app bundles found; refine scheme/build output")


def plan_watch_deployment(dst: Destination, built_app_path: str, built_info: AppBundleInfo,
                          resolve_companion: CompanionResolver) -> WatchDeployment:
    """Work out which bundle goes to the watch and which to the paired iPhone.

    `resolve_companion` maps the destination's companion target hint to a
    device id.
    """
    companion_target = dst.companion_target_id.strip()
    if not companion_target:
        raise WatchPlanError("missing companion target")
    device_id = resolve_companion(companion_target)

    if built_info.is_watch_app:
        watch_path, watch_info = built_app_path, built_info
        companion_path, companion_info = find_companion_app_near_watch(
            built_app_path, built_info.companion_bundle_id)
    else:
        companion_path, companion_info = built_app_path, built_info
        watch_path, watch_info = find_watch_app_for_companion(
            built_app_path, built_info.bundle_id)

    if not watch_info.bundle_id:
        raise WatchPlanError("watch app bundle id is missing")
    if not companion_info.bundle_id:
        raise WatchPlanError("companion app bundle id is missing")
    if watch_info.companion_bundle_id and watch_info.companion_bundle_id != companion_info.bundle_id:
        raise WatchPlanError(
            f"watch app companion id {watch_info.companion_bundle_id!r} does not match "
            f"selected companion {companion_info.bundle_id!r}")

    return WatchDeployment(
        companion_device_id=device_id,
        companion_app_path=companion_path,
        companion_info=companion_info,
        watch_app_path=watch_path,
        watch_info=watch_info,
    )
