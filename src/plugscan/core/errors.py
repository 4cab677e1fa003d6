"""Structured error handling for plugscan."""

import sys
from typing import Any, NoReturn

from plugscan.models.error import ErrorCode, StructuredError


class PlugscanError(Exception):
    """Base exception for plugscan errors.

    Wraps a StructuredError for consistent error handling.
    """

    def __init__(
        self,
        code: str,
        message: str,
        remediation: str,
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        self.error = StructuredError(
            code=code,
            message=message,
            remediation=remediation,
            retryable=retryable,
            context=context,
        )
        super().__init__(message)

    def to_structured(self) -> StructuredError:
        """Convert to StructuredError."""
        return self.error

    def to_structured_error(self) -> dict:
        """Convert to JSON-serializable dict for output."""
        return self.error.model_dump(mode="json", exclude_none=True)


class LaunchFailureError(PlugscanError):
    """The scan worker process could not be spawned."""

    def __init__(self, command: list[str], reason: str):
        super().__init__(
            code=ErrorCode.LAUNCH_FAILURE,
            message=f"Could not launch scan worker: {reason}",
            remediation="Check that the worker command is installed and executable",
            retryable=False,
            context={"command": command},
        )


class ProtocolError(PlugscanError):
    """Malformed or unrecognized message on the worker channel."""

    def __init__(self, message: str, raw: bytes | None = None):
        super().__init__(
            code=ErrorCode.PROTOCOL_ERROR,
            message=message,
            remediation="This usually means the worker and host versions differ",
            retryable=False,
            context={"raw": raw[:64].hex()} if raw else None,
        )


class ConnectionLostError(PlugscanError):
    """The byte channel to the peer process was closed."""

    def __init__(self, message: str = "Connection to peer lost"):
        super().__init__(
            code=ErrorCode.WORKER_CRASH,
            message=message,
            remediation="The peer process exited or closed its pipe",
            retryable=True,
        )


class WorkerCrashError(PlugscanError):
    """The worker died or stalled while a scan was outstanding."""

    def __init__(self, reason: str, identifier: str | None = None, attempts: int = 0):
        context: dict[str, Any] = {"attempts": attempts}
        if identifier:
            context["identifier"] = identifier
        super().__init__(
            code=ErrorCode.WORKER_CRASH,
            message=f"Scan worker crashed: {reason}",
            remediation="Blacklisted plugins can be re-enabled with 'plugscan blacklist remove'",
            retryable=True,
            context=context,
        )


class PersistenceError(PlugscanError):
    """Plugin list file unreadable or corrupt."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.PERSISTENCE_ERROR,
            message=message,
            remediation="Delete the file to start from an empty plugin list",
            retryable=True,
            context={"path": path} if path else None,
        )


class FormatNotFoundError(PlugscanError):
    """Requested plugin format is not registered."""

    def __init__(self, format_name: str, available: list[str]):
        super().__init__(
            code=ErrorCode.FORMAT_NOT_FOUND,
            message=f"Plugin format '{format_name}' is not registered",
            remediation=f"Available formats: {', '.join(available)}",
            retryable=False,
            context={"format": format_name, "available": available},
        )


class ProbeError(PlugscanError):
    """A candidate plugin could not be probed."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        super().__init__(
            code=ErrorCode.PROBE_FAILED,
            message=f"Failed to probe {identifier}: {reason}",
            remediation="The plugin has been blacklisted; fix or remove it and rescan",
            retryable=False,
            context={"identifier": identifier},
        )


class ValidationError(PlugscanError):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            remediation="Check the input parameters and try again",
            retryable=False,
            context={"field": field} if field else None,
        )


def handle_error(error: PlugscanError | Exception, exit_code: int = 1) -> NoReturn:
    """Handle an error by outputting it and exiting.

    Args:
        error: The error to handle
        exit_code: Exit code to use
    """
    from plugscan.cli.output import output_error

    if isinstance(error, PlugscanError):
        output_error(error.to_structured())
    else:
        structured = StructuredError(
            code=ErrorCode.INTERNAL_ERROR,
            message=str(error),
            remediation="This is an unexpected error. Please report it.",
            retryable=False,
            context={"type": type(error).__name__},
        )
        output_error(structured)

    sys.exit(exit_code)
