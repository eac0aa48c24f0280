"""
Error types raised by the KVM control layer.
"""


class KvmControlError(Exception):
    """Base class for all control-layer errors."""


class BackendUnavailable(KvmControlError):
    """The backend could not be reached or the command call failed."""


class CommandRejected(BackendUnavailable):
    """The backend answered a command with an error message."""

    def __init__(self, command: str, message: str):
        super().__init__(message)
        self.command = command
        self.message = message


class InvalidConfig(KvmControlError):
    """The start parameters were rejected."""


class InconsistentState(KvmControlError):
    """The backend reports a running session but no usable address."""


class TransitionInProgress(KvmControlError):
    """A start or stop is already pending."""


class InvalidTransition(KvmControlError):
    """The requested transition is not valid from the current state."""


class ConfigFieldError(KvmControlError, ValueError):
    """Unknown settings field or a value of the wrong type."""
