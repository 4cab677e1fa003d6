"""Plugin interface definitions.

Defines the abstract base class that Python and bundle plugins implement
so the scanner can describe them.
"""

from abc import ABC, abstractmethod
from typing import Any


class AudioPlugin(ABC):
    """Abstract base class for audio processing plugins.

    Only the descriptive surface matters to the scanner; audio processing
    itself is out of scope here. Abstract properties may be satisfied with
    plain class attributes.

    Example:
        class Gain(AudioPlugin):
            name = "Gain"
            version = "1.0.0"
            manufacturer = "Example Audio"
            category = "Utility"
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Plugin display name."""
        ...

    @property
    @abstractmethod
    def version(self) -> str:
        """Plugin version (semver format)."""
        ...

    @property
    def manufacturer(self) -> str:
        return ""

    @property
    def description(self) -> str:
        """Human-readable plugin description."""
        return ""

    @property
    def category(self) -> str:
        return "Effect"

    @property
    def is_instrument(self) -> bool:
        return False

    @property
    def num_inputs(self) -> int:
        return 0 if self.is_instrument else 2

    @property
    def num_outputs(self) -> int:
        return 2

    @property
    def unique_id(self) -> str:
        return ""

    def validate(self) -> list[str]:
        """Validate plugin metadata.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.name:
            errors.append("Plugin name is required")
        if not self.version:
            errors.append("Plugin version is required")
        if self.num_inputs < 0 or self.num_outputs < 0:
            errors.append("Channel counts must not be negative")

        return errors

    def describe(self) -> dict[str, Any]:
        """Descriptive fields for a PluginDescription."""
        return {
            "name": self.name,
            "descriptive_name": self.description or self.name,
            "manufacturer": self.manufacturer,
            "version": self.version,
            "category": self.category,
            "is_instrument": self.is_instrument,
            "num_inputs": self.num_inputs,
            "num_outputs": self.num_outputs,
            "unique_id": self.unique_id,
        }
