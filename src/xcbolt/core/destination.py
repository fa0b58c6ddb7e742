# Copyright 2026. Destination model: kinds, platform families, target types and normalization.

import dataclasses
import enum
from dataclasses import dataclass


class DestinationKind(str, enum.Enum):
    AUTO = "auto"
    SIMULATOR = "simulator"
    DEVICE = "device"
    MACOS = "macos"
    CATALYST = "catalyst"


class PlatformFamily(str, enum.Enum):
    UNKNOWN = ""
    IOS = "ios"
    IPADOS = "ipados"
    TVOS = "tvos"
    VISIONOS = "visionos"
    WATCHOS = "watchos"
    MACOS = "macos"
    CATALYST = "catalyst"


class TargetType(str, enum.Enum):
    AUTO = "auto"
    SIMULATOR = "simulator"
    DEVICE = "device"
    LOCAL = "local"


_FAMILY_ALIASES = {
    "ios": PlatformFamily.IOS,
    "iphoneos": PlatformFamily.IOS,
    "ipados": PlatformFamily.IPADOS,
    "ipadair": PlatformFamily.IPADOS,
    "ipad": PlatformFamily.IPADOS,
    "tvos": PlatformFamily.TVOS,
    "appletv": PlatformFamily.TVOS,
    "visionos": PlatformFamily.VISIONOS,
    "xros": PlatformFamily.VISIONOS,
    "xr": PlatformFamily.VISIONOS,
    "watchos": PlatformFamily.WATCHOS,
    "watch": PlatformFamily.WATCHOS,
    "macos": PlatformFamily.MACOS,
    "mac": PlatformFamily.MACOS,
    "catalyst": PlatformFamily.CATALYST,
    "maccatalyst": PlatformFamily.CATALYST,
}

_TARGET_ALIASES = {
    "": TargetType.AUTO,
    "auto": TargetType.AUTO,
    "sim": TargetType.SIMULATOR,
    "simulator": TargetType.SIMULATOR,
    "dev": TargetType.DEVICE,
    "device": TargetType.DEVICE,
    "local": TargetType.LOCAL,
    "mac": TargetType.LOCAL,
    "host": TargetType.LOCAL,
}

_SIMULATOR_PLATFORMS = {
    PlatformFamily.IOS: "iOS Simulator",
    PlatformFamily.IPADOS: "iOS Simulator",
    PlatformFamily.TVOS: "tvOS Simulator",
    PlatformFamily.VISIONOS: "visionOS Simulator",
    PlatformFamily.WATCHOS: "watchOS Simulator",
}

_DEVICE_PLATFORMS = {
    PlatformFamily.IOS: "iOS",
    PlatformFamily.IPADOS: "iOS",
    PlatformFamily.TVOS: "tvOS",
    PlatformFamily.VISIONOS: "visionOS",
    PlatformFamily.WATCHOS: "watchOS",
}

FAMILY_PRIORITY = {
    PlatformFamily.IOS: 0,
    PlatformFamily.IPADOS: 1,
    PlatformFamily.TVOS: 2,
    PlatformFamily.VISIONOS: 3,
    PlatformFamily.WATCHOS: 4,
    PlatformFamily.MACOS: 5,
    PlatformFamily.CATALYST: 6,
}

LOCAL_MAC_NAME = "My Mac"
LOCAL_CATALYST_NAME = "My Mac (Catalyst)"


def normalize_platform_family(value: str) -> PlatformFamily:
    """Map free-form spellings ("iPadOS", "apple tv", "watch os") to a family."""
    key = (value or "").strip().lower()
    for ch in ("_", "-", " "):
        key = key.replace(ch, "")
    return _FAMILY_ALIASES.get(key, PlatformFamily.UNKNOWN)


def normalize_target_type(value: str) -> TargetType:
    return _TARGET_ALIASES.get((value or "").strip().lower(), TargetType.AUTO)


def normalize_kind(value: str) -> DestinationKind:
    try:
        return DestinationKind((value or "").strip().lower() or "auto")
    except ValueError:
        return DestinationKind.AUTO


def infer_family_from_runtime(runtime_id: str, runtime_name: str,
                              device_name: str) -> PlatformFamily:
    text = f"{runtime_id} {runtime_name}".lower()
    if "watch" in text:
        return PlatformFamily.WATCHOS
    if "tvos" in text or "apple tv" in text:
        return PlatformFamily.TVOS
    if "xros" in text or "vision" in text:
        return PlatformFamily.VISIONOS
    if "ios" in text:
        if "ipad" in device_name.lower():
            return PlatformFamily.IPADOS
        return PlatformFamily.IOS
    return PlatformFamily.UNKNOWN


def infer_family_from_device(platform: str, model: str, name: str) -> PlatformFamily:
    text = f"{platform} {model} {name}".strip().lower()
    if "watch" in text:
        return PlatformFamily.WATCHOS
    if "tvos" in text or "apple tv" in text:
        return PlatformFamily.TVOS
    if "vision" in text or "xros" in text:
        return PlatformFamily.VISIONOS
    if "ipad" in text:
        return PlatformFamily.IPADOS
    if "ios" in text or "iphone" in text:
        return PlatformFamily.IOS
    if "catalyst" in text:
        return PlatformFamily.CATALYST
    if "mac" in text:
        return PlatformFamily.MACOS
    return PlatformFamily.UNKNOWN


def platform_string(family: PlatformFamily, target_type: TargetType) -> str:
    """xcodebuild `platform=` value for a family/target type, or "" when undefined."""
    if target_type == TargetType.SIMULATOR:
        return _SIMULATOR_PLATFORMS.get(family, "")
    if target_type == TargetType.DEVICE:
        return _DEVICE_PLATFORMS.get(family, "")
    if target_type == TargetType.LOCAL and family in (PlatformFamily.MACOS,
                                                      PlatformFamily.CATALYST):
        return "macOS"
    return ""


def kind_for(target_type: TargetType, family: PlatformFamily) -> DestinationKind:
    if target_type == TargetType.SIMULATOR:
        return DestinationKind.SIMULATOR
    if target_type == TargetType.DEVICE:
        return DestinationKind.DEVICE
    if target_type == TargetType.LOCAL:
        if family == PlatformFamily.CATALYST:
            return DestinationKind.CATALYST
        return DestinationKind.MACOS
    return DestinationKind.AUTO


def _target_type_for_kind(kind: DestinationKind) -> TargetType:
    if kind == DestinationKind.SIMULATOR:
        return TargetType.SIMULATOR
    if kind == DestinationKind.DEVICE:
        return TargetType.DEVICE
    if kind in (DestinationKind.MACOS, DestinationKind.CATALYST):
        return TargetType.LOCAL
    return TargetType.AUTO


@dataclass(frozen=True)
class Destination:
    kind: DestinationKind = DestinationKind.AUTO
    target_id: str = ""
    udid: str = ""
    name: str = ""
    platform: str = ""
    os: str = ""
    platform_family: PlatformFamily = PlatformFamily.UNKNOWN
    target_type: TargetType = TargetType.AUTO
    runtime_id: str = ""
    companion_target_id: str = ""
    companion_bundle_id: str = ""

    @property
    def is_local(self) -> bool:
        return self.target_type == TargetType.LOCAL

    @property
    def is_watch_device(self) -> bool:
        return (self.target_type == TargetType.DEVICE
                and self.platform_family == PlatformFamily.WATCHOS)


def normalize_destination(dst: Destination) -> Destination:
    """Reconcile legacy fields with the kind/target-type/family triple.

    Pure and idempotent. After normalization target_id == udid, both empty
    for local targets, and kind follows from (target_type, platform_family)
    whenever target_type is not auto.
    """
    target_type = dst.target_type
    if target_type == TargetType.AUTO and dst.kind != DestinationKind.AUTO:
        target_type = _target_type_for_kind(dst.kind)

    family = dst.platform_family
    if family == PlatformFamily.UNKNOWN:
        if dst.kind == DestinationKind.MACOS:
            family = PlatformFamily.MACOS
        elif dst.kind == DestinationKind.CATALYST:
            family = PlatformFamily.CATALYST
        else:
            family = normalize_platform_family(dst.platform)
    if family == PlatformFamily.UNKNOWN and target_type == TargetType.LOCAL:
        family = PlatformFamily.MACOS

    canonical = dst.target_id.strip() or dst.udid.strip()
    kind = kind_for(target_type, family) if target_type != TargetType.AUTO else dst.kind
    platform = dst.platform or platform_string(family, target_type)
    if target_type == TargetType.LOCAL:
        canonical = ""

    return dataclasses.replace(
        dst,
        kind=kind,
        target_id=canonical,
        udid=canonical,
        platform=platform,
        platform_family=family,
        target_type=target_type,
    )


def destination_string(dst: Destination) -> str:
    """The `-destination` argument for xcodebuild, or "" when unresolved."""
    if dst.kind == DestinationKind.SIMULATOR:
        if not dst.udid:
            return ""
        return f"platform={dst.platform or 'iOS Simulator'},id={dst.udid}"
    if dst.kind == DestinationKind.DEVICE:
        if not dst.udid:
            return ""
        return f"platform={dst.platform or 'iOS'},id={dst.udid}"
    if dst.kind == DestinationKind.MACOS:
        return "platform=macOS"
    if dst.kind == DestinationKind.CATALYST:
        return "platform=macOS,variant=Mac Catalyst"
    return ""


def destination_metadata(dst: Destination) -> dict:
    dst = normalize_destination(dst)
    return {
        "platformFamily": dst.platform_family.value,
        "targetType": dst.target_type.value,
        "targetId": dst.target_id,
        "resolvedDestination": dst.platform,
        "companionTargetId": dst.companion_target_id,
        "companionBundleId": dst.companion_bundle_id,
    }


def destination_to_dict(dst: Destination) -> dict:
    d = {"kind": dst.kind.value}
    for key, val in (
        ("udid", dst.udid),
        ("name", dst.name),
        ("platform", dst.platform),
        ("os", dst.os),
        ("platformFamily", dst.platform_family.value),
        ("targetType", dst.target_type.value),
        ("id", dst.target_id),
        ("runtimeId", dst.runtime_id),
        ("companionTargetId", dst.companion_target_id),
        ("companionBundleId", dst.companion_bundle_id),
    ):
        if val:
            d[key] = val
    return d


def dict_to_destination(d: dict) -> Destination:
    return Destination(
        kind=normalize_kind(d.get("kind", "")),
        target_id=d.get("id", "") or "",
        udid=d.get("udid", "") or "",
        name=d.get("name", "") or "",
        platform=d.get("platform", "") or "",
        os=d.get("os", "") or "",
        platform_family=normalize_platform_family(d.get("platformFamily", "") or ""),
        target_type=normalize_target_type(d.get("targetType", "") or ""),
        runtime_id=d.get("runtimeId", "") or "",
        companion_target_id=d.get("companionTargetId", "") or "",
        companion_bundle_id=d.get("companionBundleId", "") or "",
    )
