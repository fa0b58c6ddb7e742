# Copyright 2026. Destination resolver: candidate enumeration, filtering, scoring, matching.

import dataclasses
import re
from dataclasses import dataclass

from xcbolt.core.destination import (
    FAMILY_PRIORITY,
    LOCAL_CATALYST_NAME,
    LOCAL_MAC_NAME,
    Destination,
    PlatformFamily,
    TargetType,
    kind_for,
    normalize_destination,
    platform_string,
)
from xcbolt.core.errors import DestinationAmbiguous, DestinationNotFound, XcboltError
from xcbolt.core.runner import CancelScope
from xcbolt.tools.protocol import Toolchain

_UNKNOWN_FAMILY_PENALTY = 100
_VERSION_PART_RE = re.compile(r"\d+")


@dataclass(frozen=True)
class DestinationCandidate:
    id: str
    name: str
    platform_family: PlatformFamily
    target_type: TargetType
    platform: str = ""
    os_version: str = ""
    runtime_id: str = ""
    runtime_name: str = ""
    state: str = ""
    available: bool = False


LOCAL_CANDIDATES = (
    DestinationCandidate(id="macos", name=LOCAL_MAC_NAME, platform_family=PlatformFamily.MACOS,
                         target_type=TargetType.LOCAL, platform="macOS", available=True),
    DestinationCandidate(id="catalyst", name=LOCAL_CATALYST_NAME,
                         platform_family=PlatformFamily.CATALYST,
                         target_type=TargetType.LOCAL, platform="macOS", available=True),
)


def list_candidates(toolchain: Toolchain, scope: CancelScope) -> list[DestinationCandidate]:
    """Simulators, then devices, then the two local Mac targets.

    Simulator or device listing failures leave that group out.
    """
    out: list[DestinationCandidate] = []
    try:
        sims = toolchain.enumerate_simulators(scope)
    except (XcboltError, OSError):
        scope.raise_if_canceled()
        sims = []
    for s in sims:
        family = s.platform_family
        plat = platform_string(family, TargetType.SIMULATOR)
        if family == PlatformFamily.UNKNOWN or not plat:
            continue
        out.append(DestinationCandidate(
            id=s.udid, name=s.name, platform_family=family,
            target_type=TargetType.SIMULATOR, platform=plat, os_version=s.os_version,
            runtime_id=s.runtime_id, runtime_name=s.runtime_name, state=s.state,
            available=s.available,
        ))

    devices = []
    if toolchain.devicectl_available(scope):
        try:
            devices = toolchain.enumerate_devices(scope)
        except (XcboltError, OSError):
            scope.raise_if_canceled()
    for d in devices:
        family = d.platform_family
        plat = platform_string(family, TargetType.DEVICE)
        if family == PlatformFamily.UNKNOWN or not plat:
            continue
        out.append(DestinationCandidate(
            id=d.identifier, name=d.name, platform_family=family,
            target_type=TargetType.DEVICE, platform=plat, os_version=d.os_version,
            available=True,
        ))

    out.extend(LOCAL_CANDIDATES)
    return out


def candidate_score(c: DestinationCandidate) -> int:
    score = 0
    if c.target_type == TargetType.SIMULATOR:
        score += 100
        if c.state.lower() == "booted":
            score += 20
        if c.available:
            score += 10
    elif c.target_type == TargetType.DEVICE:
        score += 50
    elif c.target_type == TargetType.LOCAL:
        score += 10
    return score - FAMILY_PRIORITY.get(c.platform_family, _UNKNOWN_FAMILY_PENALTY)


def version_key(version: str) -> tuple[int, ...]:
    return tuple(int(p) for p in _VERSION_PART_RE.findall(version or ""))


def rank_candidates(candidates: list[DestinationCandidate]) -> list[DestinationCandidate]:
    """Highest score first; ties go to the newer OS, then to the name."""
    ranked = sorted(candidates, key=lambda c: c.name)
    ranked.sort(key=lambda c: version_key(c.os_version), reverse=True)
    ranked.sort(key=candidate_score, reverse=True)
    return ranked


def filter_candidates(dst: Destination,
                      candidates: list[DestinationCandidate]) -> list[DestinationCandidate]:
    out = []
    for c in candidates:
        if c.target_type != TargetType.LOCAL and not c.available:
            continue
        if dst.platform_family != PlatformFamily.UNKNOWN and c.platform_family != dst.platform_family:
            continue
        if dst.target_type != TargetType.AUTO and c.target_type != dst.target_type:
            continue
        out.append(c)
    return out


def match_target(candidates: list[DestinationCandidate],
                 target: str) -> tuple[list[DestinationCandidate], list[DestinationCandidate]]:
    """Case-insensitive exact matches on (id, name)."""
    target = target.strip().lower()
    if not target:
        return [], []
    ids = [c for c in candidates if c.id.lower() == target]
    names = [c for c in candidates if c.name.lower() == target]
    return ids, names


def destination_from_candidate(dst: Destination, c: DestinationCandidate) -> Destination:
    return dataclasses.replace(
        dst,
        target_type=c.target_type,
        platform_family=c.platform_family,
        kind=kind_for(c.target_type, c.platform_family),
        target_id=c.id,
        udid=c.id,
        name=c.name,
        platform=c.platform,
        os=c.os_version or dst.os,
        runtime_id=c.runtime_id or dst.runtime_id,
    )


def _local_destination(dst: Destination) -> Destination:
    family = dst.platform_family
    if family not in (PlatformFamily.MACOS, PlatformFamily.CATALYST):
        family = PlatformFamily.MACOS
    return dataclasses.replace(
        dst,
        target_type=TargetType.LOCAL,
        platform_family=family,
        kind=kind_for(TargetType.LOCAL, family),
        platform=platform_string(family, TargetType.LOCAL),
        name=LOCAL_CATALYST_NAME if family == PlatformFamily.CATALYST else LOCAL_MAC_NAME,
        target_id="",
        udid="",
    )


def resolve_destination(requested: Destination,
                        candidates: list[DestinationCandidate]) -> Destination:
    """Turn a requested destination into a concrete one.

    Raises DestinationAmbiguous when an explicit id/name matches several
    candidates and DestinationNotFound when nothing fits.
    """
    dst = normalize_destination(requested)
    if dst.target_type == TargetType.LOCAL:
        return _local_destination(dst)

    filtered = filter_candidates(dst, candidates)
    if not filtered and dst.platform_family in (PlatformFamily.MACOS, PlatformFamily.CATALYST):
        return _local_destination(dst)

    target = dst.target_id.strip()
    if target:
        ids, names = match_target(filtered, target)
        if len(ids) == 1:
            return destination_from_candidate(dst, ids[0])
        if len(ids) > 1:
            raise DestinationAmbiguous(f"destination id {target!r} is ambiguous", ids)
        if len(names) == 1:
            return destination_from_candidate(dst, names[0])
        if len(names) > 1:
            raise DestinationAmbiguous(f"destination name {target!r} is ambiguous", names)
        raise DestinationNotFound(f"destination target {target!r} was not found")

    name = dst.name.strip()
    if name:
        ids, names = match_target(filtered, name)
        if len(ids) == 1:
            return destination_from_candidate(dst, ids[0])
        if len(names) == 1:
            return destination_from_candidate(dst, names[0])
        if len(ids) + len(names) > 1:
            raise DestinationAmbiguous(f"destination name {name!r} is ambiguous", ids + names)
        raise DestinationNotFound(f"destination target {name!r} was not found")

    if not filtered:
        raise DestinationNotFound("no destinations available for the selected platform/target type")
    return destination_from_candidate(dst, rank_candidates(filtered)[0])


def resolve_for_config(toolchain: Toolchain, scope: CancelScope,
                       requested: Destination) -> Destination:
    return resolve_destination(requested, list_candidates(toolchain, scope))
