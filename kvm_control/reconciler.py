"""
Editable server settings and the rules that keep them consistent.

Every mutation goes through ConfigReconciler so the session controller never
sees a config with two codecs selected or an out-of-range value.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .errors import ConfigFieldError
from .presets import PresetCatalog

logger = logging.getLogger(__name__)


# Codec selector fields, in order of precedence when more than one is set
CODEC_SELECTORS: Tuple[str, ...] = ("use_h265", "use_av1", "use_h264")
CODEC_NAMES = {"use_h264": "h264", "use_h265": "h265", "use_av1": "av1"}
DEFAULT_CODEC_FIELD = "use_h264"

# Inclusive (min, max) bounds of the integer settings
BOUNDS: Dict[str, Tuple[int, int]] = {
    "audio_bitrate": (32, 512),
    "video_bitrate": (500, 50000),
    "framerate": (1, 60),
}


@dataclass
class ServerConfig:
    """Encoding, transport and security settings passed to the backend."""

    delta_encoding: bool = True
    adaptive_quality: bool = True
    encryption_enabled: bool = False
    use_webrtc: bool = True
    use_h264: bool = True
    use_h265: bool = False
    use_av1: bool = False
    hardware_acceleration: bool = False
    selected_monitor: int = 0
    audio_bitrate: int = 128
    video_bitrate: int = 4000
    framerate: int = 30

    @property
    def selected_codec(self) -> str:
        for name in CODEC_SELECTORS:
            if getattr(self, name):
                return CODEC_NAMES[name]
        return CODEC_NAMES[DEFAULT_CODEC_FIELD]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_backend_options(self) -> Dict[str, Any]:
        """Serialize to the options object of the start_server command."""
        codec = self.selected_codec
        return {
            "deltaEncoding": self.delta_encoding,
            "adaptiveQuality": self.adaptive_quality,
            "encryption": self.encryption_enabled,
            "webrtc": self.use_webrtc,
            "h264": codec == "h264",
            "h265": codec == "h265",
            "av1": codec == "av1",
            "hardwareAcceleration": self.hardware_acceleration,
            "monitor": self.selected_monitor,
            "audioBitrate": self.audio_bitrate * 1000,
            "videoBitrate": self.video_bitrate * 1000,
            "framerate": self.framerate,
        }


FIELD_TYPES: Dict[str, type] = {f.name: f.type for f in fields(ServerConfig)}


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class ConfigReconciler:
    """
    Single owner of the live ServerConfig.

    Enforces:
    - exactly one codec selector is true
    - bitrates and framerate stay inside BOUNDS
    - selected_monitor indexes the current monitor snapshot, else 0
    """

    def __init__(self, presets: Optional[PresetCatalog] = None):
        self.presets = presets or PresetCatalog()
        self._config = ServerConfig()
        self._monitor_count: Optional[int] = None
        self._monitor_chosen = False

    @property
    def config(self) -> ServerConfig:
        """Return a copy of the current settings."""
        return replace(self._config)

    @property
    def selected_codec(self) -> str:
        return self._config.selected_codec

    @property
    def monitor_chosen(self) -> bool:
        return self._monitor_chosen

    def _check_value(self, name: str, value: Any) -> Any:
        expected = FIELD_TYPES.get(name)
        if expected is None:
            raise ConfigFieldError(f"Unknown setting: {name}")

        # bool is an int subclass, so reject it explicitly for integer fields
        if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigFieldError(f"{name} expects an integer, got {value!r}")
        if expected is bool and not isinstance(value, bool):
            raise ConfigFieldError(f"{name} expects true/false, got {value!r}")

        return value

    def _select_codec(self, name: str) -> None:
        for selector in CODEC_SELECTORS:
            setattr(self._config, selector, selector == name)

    def _normalize_codecs(self) -> None:
        active = [name for name in CODEC_SELECTORS if getattr(self._config, name)]
        self._select_codec(active[0] if active else DEFAULT_CODEC_FIELD)

    def _set(self, name: str, value: Any) -> None:
        value = self._check_value(name, value)

        if name in CODEC_SELECTORS:
            if value:
                self._select_codec(name)
            elif getattr(self._config, name):
                # Deselecting the active codec falls back to the default one
                self._select_codec(DEFAULT_CODEC_FIELD)
            return

        if name == "selected_monitor":
            self._monitor_chosen = True

        setattr(self._config, name, value)

    def set_field(self, name: str, value: Any) -> None:
        """
        Set a single setting.

        Raises:
            ConfigFieldError: Unknown field or value of the wrong type
        """
        self._set(name, value)
        self.validate_bounds()
        logger.debug("Set %s = %r", name, value)

    def update(self, values: Mapping[str, Any]) -> None:
        """
        Set several settings as one mutation.

        Raises:
            ConfigFieldError: Unknown field or value of the wrong type; nothing is changed
        """
        for name, value in values.items():
            self._check_value(name, value)
        for name, value in values.items():
            self._set(name, value)
        self.validate_bounds()

    def apply_preset(self, name: str) -> bool:
        """
        Overwrite the settings the named preset defines.

        Unknown preset names are ignored.

        Returns:
            True if a preset was applied
        """
        preset = self.presets.get(name)
        if preset is None:
            logger.debug("Ignoring unknown preset %r", name)
            return False

        values = {key: value for key, value in preset.values.items() if key in FIELD_TYPES}
        for key, value in values.items():
            self._check_value(key, value)

        for key, value in values.items():
            if key == "selected_monitor":
                self._monitor_chosen = True
            setattr(self._config, key, value)

        chosen = [name for name in CODEC_SELECTORS if values.get(name)]
        if chosen:
            self._select_codec(chosen[0])
        else:
            self._normalize_codecs()
        self.validate_bounds()
        logger.info("Applied preset %s", name)
        return True

    def validate_bounds(self, monitor_count: Optional[int] = None) -> None:
        """Clamp integer settings and reset an invalid monitor index to 0."""
        if monitor_count is not None:
            self._monitor_count = monitor_count

        for name, (low, high) in BOUNDS.items():
            value = getattr(self._config, name)
            bounded = clamp(value, low, high)
            if bounded != value:
                logger.debug("Clamped %s from %d to %d", name, value, bounded)
                setattr(self._config, name, bounded)

        index = self._config.selected_monitor
        if index != 0 and (index < 0 or (self._monitor_count is not None and index >= self._monitor_count)):
            logger.debug("Monitor index %d out of range, using 0", index)
            self._config.selected_monitor = 0
            self._monitor_chosen = False

    def adopt_monitors(self, monitors: Sequence[Any], default_index: int) -> None:
        """
        Reconcile the monitor selection with a fresh monitor snapshot.

        Keeps a user choice that is still valid; otherwise selects
        default_index.
        """
        count = len(monitors)
        index = self._config.selected_monitor
        in_bounds = 0 <= index < count

        if count and (not self._monitor_chosen or not in_bounds):
            self._config.selected_monitor = default_index if 0 <= default_index < count else 0

        self.validate_bounds(count)

    def reset(self) -> None:
        """Restore the default preset and forget the monitor choice."""
        self._config = ServerConfig()
        self._monitor_chosen = False
        self.apply_preset("default")
