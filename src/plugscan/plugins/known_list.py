"""Known plugin list: the scanner's result store.

Holds every discovered PluginDescription keyed by (format, identifier)
together with the blacklist of identifiers that must not be probed again.
Host and scan worker both persist this list as JSON; the file is always
replaced atomically so a reader never sees a half-written document.
"""

import json
import os
import tempfile
import threading
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path

import pydantic
from pydantic import BaseModel, Field

from plugscan.core import logging as log
from plugscan.core.errors import PersistenceError
from plugscan.models.description import PluginDescription

LIST_FORMAT_VERSION = 1


class PluginListDocument(BaseModel):
    """On-disk representation of a PluginList."""

    format_version: int = LIST_FORMAT_VERSION
    plugins: list[PluginDescription] = []
    blacklist: list[str] = []
    updated_at: datetime = Field(default_factory=datetime.now)


class PluginList:
    """Ordered, thread-safe collection of plugin descriptions plus a blacklist.

    Membership only grows through ``add``/``merge``; entries disappear
    only through the explicit ``remove``/``remove_from_blacklist``/
    ``clear*`` calls.
    """

    def __init__(
        self,
        plugins: Iterable[PluginDescription] = (),
        blacklist: Iterable[str] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._plugins: dict[tuple[str, str], PluginDescription] = {}
        self._blacklist: dict[str, None] = {}

        for desc in plugins:
            self._plugins[desc.key] = desc
        for identifier in blacklist:
            self._blacklist[identifier] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._plugins)

    def __iter__(self) -> Iterator[PluginDescription]:
        return iter(self.types)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, PluginDescription):
            item = item.key
        with self._lock:
            return item in self._plugins

    def __repr__(self) -> str:
        with self._lock:
            return f"PluginList(plugins={len(self._plugins)}, blacklisted={len(self._blacklist)})"

    @property
    def types(self) -> list[PluginDescription]:
        """Snapshot of all descriptions in insertion order."""
        with self._lock:
            return list(self._plugins.values())

    @property
    def blacklist(self) -> list[str]:
        """Snapshot of blacklisted identifiers in insertion order."""
        with self._lock:
            return list(self._blacklist)

    def get(self, format_name: str, identifier: str) -> PluginDescription | None:
        with self._lock:
            return self._plugins.get((format_name, identifier))

    def is_listed(self, format_name: str, identifier: str) -> bool:
        with self._lock:
            return (format_name, identifier) in self._plugins

    def types_for_file(self, identifier: str) -> list[PluginDescription]:
        """All descriptions (of any format) for an identifier."""
        with self._lock:
            return [d for d in self._plugins.values() if d.file_or_identifier == identifier]

    def add(self, desc: PluginDescription) -> bool:
        """Insert or update a description.

        Returns:
            True if the list changed
        """
        with self._lock:
            existing = self._plugins.get(desc.key)
            if existing is not None and existing.same_as(desc):
                return False
            self._plugins[desc.key] = desc
            return True

    def remove(self, format_name: str, identifier: str) -> bool:
        with self._lock:
            return self._plugins.pop((format_name, identifier), None) is not None

    def clear(self) -> None:
        """Remove every description (the blacklist is kept)."""
        with self._lock:
            self._plugins.clear()

    def is_blacklisted(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._blacklist

    def add_to_blacklist(self, identifier: str) -> bool:
        with self._lock:
            if identifier in self._blacklist:
                return False
            self._blacklist[identifier] = None
            return True

    def remove_from_blacklist(self, identifier: str) -> bool:
        with self._lock:
            if identifier not in self._blacklist:
                return False
            del self._blacklist[identifier]
            return True

    def clear_blacklist(self) -> None:
        with self._lock:
            self._blacklist.clear()

    def merge(self, other: "PluginList") -> bool:
        """Union ``other`` into this list.

        Membership is the union of both lists. For a key present in both,
        the description from ``other`` wins.

        Returns:
            True if anything changed
        """
        if other is self:
            return False

        plugins, blacklist = other.types, other.blacklist
        changed = False
        with self._lock:
            for desc in plugins:
                changed = self.add(desc) or changed
            for identifier in blacklist:
                changed = self.add_to_blacklist(identifier) or changed
        return changed

    def replace_with(self, other: "PluginList") -> None:
        """Make this list an exact copy of ``other``."""
        plugins, blacklist = other.types, other.blacklist
        with self._lock:
            self._plugins = {d.key: d for d in plugins}
            self._blacklist = dict.fromkeys(blacklist)

    def copy(self) -> "PluginList":
        with self._lock:
            return PluginList(self._plugins.values(), self._blacklist)

    def to_document(self) -> PluginListDocument:
        with self._lock:
            return PluginListDocument(
                plugins=list(self._plugins.values()),
                blacklist=list(self._blacklist),
            )

    def serialize(self) -> bytes:
        """Serialize to UTF-8 JSON."""
        return self.to_document().model_dump_json(indent=2).encode("utf-8")

    @classmethod
    def deserialize(cls, data: bytes, source: str | None = None) -> "PluginList":
        """Parse a serialized list.

        Args:
            data: Bytes produced by ``serialize``
            source: Optional path for error context

        Raises:
            PersistenceError: If the data is not a valid plugin list
        """
        try:
            raw = json.loads(data.decode("utf-8"))
            document = PluginListDocument.model_validate(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Plugin list is not valid JSON: {e}", path=source)
        except pydantic.ValidationError as e:
            raise PersistenceError(
                f"Plugin list failed validation ({e.error_count()} errors)", path=source
            )

        if document.format_version > LIST_FORMAT_VERSION:
            raise PersistenceError(
                f"Unsupported plugin list version {document.format_version}", path=source
            )

        return cls(document.plugins, document.blacklist)

    @classmethod
    def load_file(cls, path: Path) -> "PluginList":
        """Load a list from disk.

        Raises:
            PersistenceError: If the file is missing, unreadable or corrupt
        """
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PersistenceError(f"Cannot read plugin list: {e}", path=str(path))
        return cls.deserialize(data, source=str(path))

    def save_file(self, path: Path) -> None:
        """Atomically write the list to disk.

        Raises:
            PersistenceError: If the file cannot be written
        """
        data = self.serialize()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise PersistenceError(f"Cannot write plugin list: {e}", path=str(path))

    def merge_file(self, path: Path) -> bool:
        """Merge a list file into this one, keeping the current contents on failure.

        Returns:
            True if the file was loaded
        """
        try:
            loaded = PluginList.load_file(path)
        except PersistenceError as e:
            log.warning(f"Keeping current plugin list: {e}", path=str(path))
            return False
        self.merge(loaded)
        return True

    def replace_from_file(self, path: Path) -> bool:
        """Replace this list with a file's contents, keeping it on failure.

        Returns:
            True if the file was loaded
        """
        try:
            loaded = PluginList.load_file(path)
        except PersistenceError as e:
            log.warning(f"Keeping current plugin list: {e}", path=str(path))
            return False
        self.replace_with(loaded)
        return True
