"""Sequential probing of one format's candidates."""

from collections.abc import Iterable
from pathlib import Path

from plugscan.core import logging as log
from plugscan.core.errors import ProbeError
from plugscan.plugins.formats import PluginFormat
from plugscan.plugins.known_list import PluginList
from plugscan.plugins.pedal import CrashMarker


class DirectoryScanner:
    """Probes the candidates of a single format one at a time.

    Blacklisted identifiers are never probed. Identifiers already in the
    list are skipped unless ``rescan_known`` is set. Each probe is wrapped
    in the crash marker so a probe that kills the process is blacklisted
    on the next start.
    """

    def __init__(
        self,
        plugin_list: PluginList,
        plugin_format: PluginFormat,
        search_paths: Iterable[Path],
        crash_marker: CrashMarker,
        rescan_known: bool = False,
        recursive: bool = True,
    ) -> None:
        """Initialize the scanner and enumerate candidates.

        Args:
            plugin_list: List receiving descriptions and blacklist entries
            plugin_format: Format to scan
            search_paths: Directories to search
            crash_marker: Marker armed around each probe
            rescan_known: Probe identifiers that are already listed
            recursive: Search subdirectories
        """
        self._list = plugin_list
        self._format = plugin_format
        self._marker = crash_marker
        self._failed: list[str] = []
        self._next_index = 0

        candidates = plugin_format.search_paths_for_plugins(search_paths, recursive)
        self._files = [
            c
            for c in candidates
            if not plugin_list.is_blacklisted(c)
            and (rescan_known or not plugin_list.is_listed(plugin_format.name, c))
        ]
        log.debug(
            f"{plugin_format.name}: {len(self._files)} of {len(candidates)} candidates to probe"
        )

    @property
    def files(self) -> list[str]:
        return list(self._files)

    @property
    def failed_files(self) -> list[str]:
        return list(self._failed)

    @property
    def progress(self) -> float:
        """Fraction of candidates probed so far, 1.0 when there are none."""
        if not self._files:
            return 1.0
        return self._next_index / len(self._files)

    def next_plugin_file(self) -> str | None:
        """Identifier the next ``scan_next_file`` call will probe."""
        if self._next_index >= len(self._files):
            return None
        return self._files[self._next_index]

    def scan_next_file(self) -> bool:
        """Probe the next candidate.

        Returns:
            True if the probe produced at least one description, False if
            it failed or nothing was left to probe
        """
        identifier = self.next_plugin_file()
        if identifier is None:
            return False
        self._next_index += 1

        failure: str | None = None
        self._marker.arm(identifier)
        try:
            descriptions = self._format.find_descriptions(identifier)
            if not descriptions:
                raise ProbeError(identifier, "No plugins found")
        except ProbeError as e:
            failure = e.error.message
        except Exception as e:
            # Plugin code may raise anything from its describe/validate hooks.
            failure = f"{type(e).__name__}: {e}"
        # Not in a finally: SystemExit from plugin code must leave the marker armed.
        self._marker.disarm(identifier)

        if failure is not None:
            self._record_failure(identifier, failure)
            return False

        for desc in descriptions:
            self._list.add(desc)
        log.debug(f"Found {len(descriptions)} plugin(s) in {identifier}")
        return True

    def _record_failure(self, identifier: str, reason: str) -> None:
        log.warning(f"Probe failed, blacklisting: {reason}", identifier=identifier)
        self._list.add_to_blacklist(identifier)
        self._failed.append(identifier)
