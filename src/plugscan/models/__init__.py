"""Data models for plugscan."""

from plugscan.models.description import PluginDescription
from plugscan.models.error import ErrorCode, StructuredError

__all__ = [
    "ErrorCode",
    "PluginDescription",
    "StructuredError",
]
