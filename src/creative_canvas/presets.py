from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from creative_canvas.errors import InvalidInput


@dataclass(frozen=True)
class PlatformPreset:
    platform: str  # instagram|facebook|google|linkedin|others
    name: str
    ratio: str
    width: int
    height: int
    description: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


PLATFORM_PRESETS: list[PlatformPreset] = [
    PlatformPreset("instagram", "Instagram Post", "1:1", 1080, 1080, "Instagram square post"),
    PlatformPreset("instagram", "Instagram Story", "9:16", 1080, 1920, "Instagram story"),
    PlatformPreset("instagram", "Instagram Reel", "9:16", 1080, 1920, "Instagram Reels"),
    PlatformPreset("instagram", "Instagram Portrait", "4:5", 1080, 1350, "Instagram portrait post"),
    PlatformPreset("facebook", "Facebook Post", "1:1", 1200, 1200, "Facebook square post"),
    PlatformPreset("facebook", "Facebook Cover", "16:9", 1640, 859, "Facebook cover photo"),
    PlatformPreset("facebook", "Facebook Story", "9:16", 1080, 1920, "Facebook story"),
    PlatformPreset("google", "Google Display", "16:9", 1200, 628, "Google display ad"),
    PlatformPreset("google", "Google Square", "1:1", 1200, 1200, "Google square ad"),
    PlatformPreset("google", "Google Vertical", "4:5", 1200, 1500, "Google vertical ad"),
    PlatformPreset("linkedin", "LinkedIn Post", "1:1", 1200, 1200, "LinkedIn post"),
    PlatformPreset("linkedin", "LinkedIn Cover", "16:9", 1584, 396, "LinkedIn cover photo"),
    PlatformPreset("linkedin", "LinkedIn Article", "16:9", 1200, 644, "LinkedIn article cover"),
    PlatformPreset("others", "Ultra Wide (21:9)", "21:9", 2520, 1080, "Ultra wide landscape format"),
    PlatformPreset("others", "Classic TV (4:3)", "4:3", 1440, 1080, "Classic television format"),
    PlatformPreset("others", "Photo (3:2)", "3:2", 1800, 1200, "Standard photo format"),
    PlatformPreset("others", "Portrait Wide (5:4)", "5:4", 1350, 1080, "Wide portrait format"),
    PlatformPreset("others", "Square (1:1)", "1:1", 1200, 1200, "Perfect square format"),
    PlatformPreset("others", "Mobile Portrait (9:16)", "9:16", 1080, 1920, "Mobile portrait format"),
    PlatformPreset("others", "Portrait Classic (3:4)", "3:4", 1080, 1440, "Classic portrait format"),
    PlatformPreset("others", "Portrait Tall (2:3)", "2:3", 1080, 1620, "Tall portrait format"),
    PlatformPreset("others", "Flexible Wide (5:4)", "5:4", 1500, 1200, "Flexible wide format"),
    PlatformPreset("others", "Flexible Tall (4:5)", "4:5", 1200, 1500, "Flexible tall format"),
]


def platform_presets(platform: str | None = None, ratio: str | None = None) -> list[PlatformPreset]:
    return [
        p
        for p in PLATFORM_PRESETS
        if (not platform or p.platform == platform) and (not ratio or p.ratio == ratio)
    ]


def preset_by_name(name: str) -> PlatformPreset | None:
    return next((p for p in PLATFORM_PRESETS if p.name == name), None)


def available_platforms() -> list[str]:
    # dict keeps first-seen order
    return list(dict.fromkeys(p.platform for p in PLATFORM_PRESETS))


def ratios_by_platform(platform: str) -> list[str]:
    return list(dict.fromkeys(p.ratio for p in PLATFORM_PRESETS if p.platform == platform))


def ratio_value(ratio: str) -> float:
    try:
        w, h = (float(part) for part in ratio.split(":"))
    except ValueError as exc:
        raise InvalidInput(f"not an aspect ratio: {ratio!r}") from exc
    if w <= 0 or h <= 0:
        raise InvalidInput(f"not an aspect ratio: {ratio!r}")
    return w / h


def fit_scale(width: float, height: float, target_width: float, target_height: float) -> float:
    """Largest scale at which (width, height) still fits inside the target box."""
    return min(target_width / width, target_height / height)
