"""
Configuration loader for KVM Control.
Supports YAML config files with sensible defaults.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import netifaces
import yaml

logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_CONFIG = {
    "backend": {
        "endpoint": "http://127.0.0.1:9920",
        "timeout": 5.0,
    },
    "server": {
        "port": 9921,
        "preset": "default",
        "settings": {},
    },
    "polling": {
        "interval": 5.0,
        "recheck_delay": 1.0,
    },
    "panel": {
        "host": "127.0.0.1",
        "port": 9930,
    },
    "presets": {},
    "logging": {
        "level": "INFO",
    },
}


def get_config_paths() -> list[Path]:
    """Get list of possible config file locations (in priority order)."""
    paths = []

    # 1. Current directory
    paths.append(Path.cwd() / "config.yaml")

    # 2. XDG config directory
    xdg_config = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config:
        paths.append(Path(xdg_config) / "kvm-control" / "config.yaml")

    # 3. ~/.config/kvm-control/
    paths.append(Path.home() / ".config" / "kvm-control" / "config.yaml")

    # 4. ~/.kvm-control.yaml
    paths.append(Path.home() / ".kvm-control.yaml")

    return paths


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from file.

    Args:
        config_path: Explicit config file path. If None, searches default locations.

    Returns:
        Configuration dictionary with defaults filled in.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    # Find config file
    if config_path:
        paths = [config_path]
    else:
        paths = get_config_paths()

    # Try each path
    for path in paths:
        if path.exists():
            try:
                with open(path, "r") as f:
                    file_config = yaml.safe_load(f) or {}
                config = deep_merge(config, file_config)
                logger.debug("Loaded config from %s", path)
                break
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load config from %s: %s", path, e)

    return config


def get_local_ip() -> str:
    """
    Get the local network IP address.

    Returns:
        Local IP address string (e.g., "192.168.1.100")
    """
    interfaces = netifaces.interfaces()

    # Priority order for interface names
    priority = ["eth", "enp", "wlan", "wlp", "eno", "ens"]
    ordered = [iface for prefix in priority for iface in interfaces if iface.startswith(prefix)]
    ordered += [iface for iface in interfaces if iface not in ordered and iface != "lo"]

    for iface in ordered:
        addrs = netifaces.ifaddresses(iface)
        for addr in addrs.get(netifaces.AF_INET, []):
            ip = addr.get("addr", "")
            if ip and not ip.startswith("127."):
                return ip

    # Final fallback
    return "127.0.0.1"


class Config:
    """Configuration wrapper with easy access to settings."""

    def __init__(self, config_path: Optional[Path] = None):
        self._config = load_config(config_path)

    @property
    def backend_endpoint(self) -> str:
        return self._config["backend"]["endpoint"]

    @property
    def backend_timeout(self) -> float:
        return float(self._config["backend"]["timeout"])

    @property
    def port(self) -> int:
        return int(self._config["server"]["port"])

    @property
    def preset(self) -> str:
        return self._config["server"]["preset"]

    @property
    def settings(self) -> Dict[str, Any]:
        return dict(self._config["server"].get("settings") or {})

    @property
    def poll_interval(self) -> float:
        return float(self._config["polling"]["interval"])

    @property
    def recheck_delay(self) -> float:
        return float(self._config["polling"]["recheck_delay"])

    @property
    def panel_host(self) -> str:
        return self._config["panel"]["host"]

    @property
    def panel_port(self) -> int:
        return int(self._config["panel"]["port"])

    @property
    def presets(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._config.get("presets") or {})

    @property
    def log_level(self) -> str:
        return str(self._config["logging"]["level"]).upper()

    def set(self, section: str, key: str, value: Any) -> None:
        """Override a single value (used for CLI flags)."""
        self._config.setdefault(section, {})[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Return config as dictionary."""
        return copy.deepcopy(self._config)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config(config_path: Optional[Path] = None) -> Config:
    """Reload configuration from file."""
    global _config
    _config = Config(config_path)
    return _config
