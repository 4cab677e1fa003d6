"""Structured error model for plugscan."""

from typing import Any

from pydantic import BaseModel, Field


class StructuredError(BaseModel):
    """Structured error response format.

    All errors surfaced by plugscan follow this schema so that the CLI and
    host collaborators can handle them programmatically.
    """

    code: str = Field(
        ...,
        pattern=r"^[A-Z][A-Z0-9_]*$",
        description="Error code (e.g., WORKER_CRASH)",
        examples=[
            "LAUNCH_FAILURE",
            "PROTOCOL_ERROR",
            "WORKER_CRASH",
            "PERSISTENCE_ERROR",
            "FORMAT_NOT_FOUND",
            "PROBE_FAILED",
        ],
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    remediation: str = Field(
        ...,
        description="Suggested fix or next step",
    )

    retryable: bool = Field(
        ...,
        description="Whether retry may succeed",
    )

    context: dict[str, Any] | None = Field(
        default=None,
        description="Additional context (identifier, path, etc.)",
    )

    model_config = {"extra": "forbid"}


class ErrorCode:
    """Standard error codes for plugscan."""

    LAUNCH_FAILURE = "LAUNCH_FAILURE"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    WORKER_CRASH = "WORKER_CRASH"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    FORMAT_NOT_FOUND = "FORMAT_NOT_FOUND"
    PROBE_FAILED = "PROBE_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
