"""Plugin description model."""

from typing import Any

from pydantic import BaseModel, Field


class PluginDescription(BaseModel):
    """Identifies one discoverable plugin.

    Descriptions are immutable once created. Two descriptions are equal
    when they share the same ``(format_name, file_or_identifier)`` key,
    regardless of the descriptive fields; use ``same_as`` to compare the
    full contents.
    """

    format_name: str = Field(..., min_length=1, description="Plugin format, e.g. 'Python'")
    file_or_identifier: str = Field(..., min_length=1, description="Path or format-specific ID")

    name: str = ""
    descriptive_name: str = ""
    manufacturer: str = ""
    version: str = ""
    category: str = ""
    is_instrument: bool = False
    num_inputs: int = Field(default=0, ge=0)
    num_outputs: int = Field(default=0, ge=0)
    unique_id: str = ""

    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Format-specific data, opaque to the scanner",
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def key(self) -> tuple[str, str]:
        """Identity of this description inside a plugin list."""
        return (self.format_name, self.file_or_identifier)

    def same_as(self, other: "PluginDescription") -> bool:
        """Compare every field, not just the key."""
        return self.model_dump() == other.model_dump()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PluginDescription):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)
