"""
Builds the address a client opens to join a session.

Grammar: ``base/kvm[?param(;param)*]``. Parameters are always emitted in the
order audio, encryption, codec, monitor and are separated by ``;``, which is
what the KVM web client parses.
"""

from dataclasses import dataclass
from typing import Tuple

from .reconciler import ServerConfig

SESSION_PATH = "/kvm"
PARAM_SEPARATOR = ";"


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Base address plus ordered query parameters."""

    base: str
    params: Tuple[str, ...] = ()

    @property
    def url(self) -> str:
        if not self.params:
            return self.base
        lead = PARAM_SEPARATOR if "?" in self.base else "?"
        return self.base + lead + PARAM_SEPARATOR.join(self.params)

    def __str__(self) -> str:
        return self.url


def normalize_base(base: str) -> str:
    """Make sure the address ends with the session path."""
    if base.endswith(SESSION_PATH):
        return base
    if base.endswith("/"):
        base = base[:-1]
    return base + SESSION_PATH


def build_connection(base: str, config: ServerConfig) -> ConnectionDescriptor:
    """Derive the connection descriptor for a running session."""
    params = []

    if config.use_webrtc:
        params.append("audio=true")

    if config.encryption_enabled:
        params.append("encryption=true")

    params.append(f"codec={config.selected_codec}")

    if config.selected_monitor > 0:
        params.append(f"monitor={config.selected_monitor}")

    return ConnectionDescriptor(normalize_base(base), tuple(params))


def build_connection_url(base: str, config: ServerConfig) -> str:
    """Return the client URL, or "" when there is no base address."""
    if not base:
        return ""
    return build_connection(base, config).url
