"""
KVM Control - Control surface for a local-network remote desktop server

Starts and stops the native streaming backend, keeps track of its live
status and derives the URL a client opens to join the session.

Features:
- Start/stop state machine with periodic status polling
- Encoding and transport settings with named presets
- Monitor selection
- JSON control panel over HTTP

Usage:
    kvm-control start     # Start a session
    kvm-control stop      # Stop the session
    kvm-control status    # Check session status
    kvm-control url       # Print the client URL
"""

from .connection import ConnectionDescriptor, build_connection, build_connection_url
from .reconciler import ConfigReconciler, ServerConfig
from .session import SessionController, SessionPhase, SessionState

__version__ = "1.0.0"
__author__ = "KVM Control"

__all__ = [
    "ConfigReconciler",
    "ConnectionDescriptor",
    "ServerConfig",
    "SessionController",
    "SessionPhase",
    "SessionState",
    "build_connection",
    "build_connection_url",
]
