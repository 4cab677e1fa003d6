"""Plugin bundle manifest definitions.

A bundle is a directory holding ``plugin.json`` next to the Python entry
point that implements the plugin.
"""

import sys
from typing import Literal

from pydantic import BaseModel, Field

MANIFEST_FILENAME = "plugin.json"

Platform = Literal["windows", "linux", "darwin"]


def current_platform() -> Platform:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


class PluginManifest(BaseModel):
    """Manifest describing a plugin bundle.

    Example:
        {
            "name": "Tape Delay",
            "version": "1.2.0",
            "manufacturer": "Example Audio",
            "entry_point": "delay.py",
            "plugin_class": "TapeDelay",
            "category": "Delay",
            "num_inputs": 2,
            "num_outputs": 2
        }
    """

    name: str = Field(..., min_length=1, max_length=64)
    version: str = Field(..., pattern=r"^\d+\.\d+\.\d+")
    description: str = ""
    manufacturer: str = ""
    license: str = ""
    homepage: str = ""

    entry_point: str = Field(..., description="Python file containing the plugin class")
    plugin_class: str = Field(..., description="Name of the AudioPlugin subclass")

    category: str = "Effect"
    is_instrument: bool = False
    num_inputs: int = Field(default=2, ge=0)
    num_outputs: int = Field(default=2, ge=0)
    unique_id: str = ""

    supported_platforms: list[Platform] = [
        "windows",
        "linux",
        "darwin",
    ]
    tags: list[str] = []

    def supports_platform(self, platform: str | None = None) -> bool:
        """Check if the bundle runs on a platform (default: this one)."""
        return (platform or current_platform()) in self.supported_platforms
