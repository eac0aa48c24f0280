"""
Named settings presets.

The catalog is assembled once at startup from the built-in presets plus any
extra presets declared in the config file, and is read-only afterwards.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional


@dataclass(frozen=True)
class Preset:
    """An immutable template of settings values."""

    name: str
    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


BUILTIN_PRESETS: Dict[str, Dict[str, Any]] = {
    "default": {
        "delta_encoding": True,
        "adaptive_quality": True,
        "encryption_enabled": False,
        "use_webrtc": True,
        "use_h264": True,
        "use_h265": False,
        "use_av1": False,
        "hardware_acceleration": False,
        "audio_bitrate": 128,
        "video_bitrate": 4000,
        "framerate": 30,
        "quality_profile": "medium",
    },
    "highQuality": {
        "delta_encoding": True,
        "adaptive_quality": True,
        "encryption_enabled": False,
        "use_webrtc": True,
        "use_h264": True,
        "use_h265": False,
        "use_av1": False,
        "hardware_acceleration": True,
        "audio_bitrate": 192,
        "video_bitrate": 8000,
        "framerate": 60,
        "quality_profile": "high",
    },
    "lowBandwidth": {
        "delta_encoding": True,
        "adaptive_quality": True,
        "encryption_enabled": False,
        "use_webrtc": True,
        "use_h264": True,
        "use_h265": False,
        "use_av1": False,
        "hardware_acceleration": False,
        "audio_bitrate": 64,
        "video_bitrate": 1500,
        "framerate": 24,
        "quality_profile": "low",
    },
    "secure": {
        "delta_encoding": True,
        "adaptive_quality": True,
        "encryption_enabled": True,
        "use_webrtc": True,
        "use_h264": True,
        "use_h265": False,
        "use_av1": False,
        "hardware_acceleration": False,
        "audio_bitrate": 128,
        "video_bitrate": 4000,
        "framerate": 30,
        "quality_profile": "medium",
    },
}


class PresetCatalog:
    """Read-only lookup of presets by name."""

    def __init__(self, extra: Optional[Mapping[str, Mapping[str, Any]]] = None):
        presets = {name: Preset(name, values) for name, values in BUILTIN_PRESETS.items()}

        # Extra presets only carry the fields they name
        for name, values in (extra or {}).items():
            presets[name] = Preset(name, values or {})

        self._presets = MappingProxyType(presets)

    def get(self, name: str) -> Optional[Preset]:
        return self._presets.get(name)

    def names(self) -> list[str]:
        return list(self._presets)

    def __contains__(self, name: object) -> bool:
        return name in self._presets

    def __iter__(self) -> Iterator[Preset]:
        return iter(self._presets.values())

    def __len__(self) -> int:
        return len(self._presets)
