"""Crash marker ("dead man's pedal") for risky plugin probes.

Before a candidate is probed its identifier is written to a small file,
and it is removed again once the probe returns. If the process dies in
between, the identifier is still in the file on the next start and gets
blacklisted instead of being probed again.
"""

import os
from pathlib import Path

from plugscan.core import logging as log
from plugscan.plugins.known_list import PluginList


class CrashMarker:
    """File-backed list of identifiers currently being probed."""

    def __init__(self, path: Path) -> None:
        """Initialize the marker.

        Args:
            path: Marker file location (shared by host and worker)
        """
        self.path = path

    def pending(self) -> list[str]:
        """Identifiers whose probe never completed."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            log.warning(f"Cannot read crash marker: {e}", path=str(self.path))
            return []
        return [line.strip() for line in text.splitlines() if line.strip()]

    def is_armed(self) -> bool:
        return bool(self.pending())

    def arm(self, identifier: str) -> None:
        """Record that ``identifier`` is about to be probed."""
        entries = self.pending()
        if identifier not in entries:
            entries.append(identifier)
        self._write(entries)

    def disarm(self, identifier: str) -> None:
        """Record that the probe of ``identifier`` returned."""
        entries = [e for e in self.pending() if e != identifier]
        self._write(entries)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def apply_to(self, plugin_list: PluginList) -> list[str]:
        """Blacklist every pending identifier and clear the marker.

        Returns:
            Identifiers that were blacklisted
        """
        pending = self.pending()
        for identifier in pending:
            plugin_list.add_to_blacklist(identifier)
            log.warning(f"Blacklisting plugin that crashed the scanner: {identifier}")
        if pending:
            self.clear()
        return pending

    def _write(self, entries: list[str]) -> None:
        if not entries:
            self.clear()
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        # Must hit the disk before the probe starts: the probe may kill us.
        with open(tmp, "w", encoding="utf-8") as f:
            f.write("\n".join(entries) + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
