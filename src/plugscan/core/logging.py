"""Logging and progress utilities for plugscan.

All progress and log output goes to stderr. In the scan worker stdout is
the message channel to the host, so nothing may ever be printed there.
"""

import json
import sys
import threading
import time
from datetime import UTC, datetime
from typing import Any, Literal

Level = Literal["debug", "info", "warning", "error"]
LogFormat = Literal["text", "json"]

_SEVERITY: dict[str, int] = {"debug": 0, "info": 1, "warning": 2, "error": 3}

_verbose = False
_quiet = False
_log_format: LogFormat = "text"
_process_label: str | None = None
_write_lock = threading.Lock()


def set_verbose(verbose: bool) -> None:
    """Enable debug messages and context fields in text mode."""
    global _verbose
    _verbose = verbose


def set_process_label(label: str | None) -> None:
    """Tag every log line with the emitting process role (e.g. ``worker``)."""
    global _process_label
    _process_label = label


def configure_logging(log_format: LogFormat = "text", quiet: bool = False) -> None:
    """Choose the stderr format and whether progress and info lines are shown.

    Args:
        log_format: ``text`` for people, ``json`` for one object per line
        quiet: Only warnings and errors; no progress output
    """
    global _log_format, _quiet
    _log_format = log_format
    _quiet = quiet


def _min_severity() -> int:
    if _quiet:
        return _SEVERITY["warning"]
    return _SEVERITY["debug"] if _verbose else _SEVERITY["info"]


def _render(level: Level, message: str, context: dict[str, Any]) -> str:
    if _log_format == "json":
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": level,
        }
        if _process_label:
            entry["process"] = _process_label
        entry["message"] = message
        entry.update(context)
        return json.dumps(entry, default=str)

    tags = f"[{_process_label}]" if _process_label else ""
    if level != "info":
        tags += f"[{level.upper()}]"
    line = f"{tags} {message}" if tags else message
    if _verbose and context:
        line += " " + " ".join(f"{key}={value}" for key, value in context.items())
    return line


def _emit(line: str, end: str = "\n") -> None:
    with _write_lock:
        print(line, end=end, file=sys.stderr, flush=True)


def log(message: str, level: Level = "info", **context: Any) -> None:
    """Write one log line to stderr if ``level`` passes the current filter.

    Args:
        message: Human-readable message
        level: Severity
        **context: Structured fields (always in json mode, verbose-only in text)
    """
    if _SEVERITY[level] < _min_severity():
        return
    _emit(_render(level, message, context))


def debug(message: str, **context: Any) -> None:
    log(message, "debug", **context)


def info(message: str, **context: Any) -> None:
    log(message, "info", **context)


def warning(message: str, **context: Any) -> None:
    log(message, "warning", **context)


def error(message: str, **context: Any) -> None:
    log(message, "error", **context)


class ProgressReporter:
    """Reports scan progress to stderr.

    The scanner reports a fraction per format pass rather than item
    counts, so progress is driven by ``set_fraction``.
    """

    REFRESH_INTERVAL = 0.1

    def __init__(self, description: str = "Scanning"):
        self.description = description
        self.fraction = -1.0
        self.label = ""
        self.probed = 0
        self._started_at = time.perf_counter()
        self._last_draw = 0.0

    def started(self, label: str) -> None:
        """Record that a new candidate started probing."""
        self.label = label
        self.probed += 1
        self._draw(force=False)

    def set_fraction(self, fraction: float) -> None:
        """Update the current fraction (negative means unknown)."""
        self.fraction = fraction
        self._draw(force=fraction >= 1.0)

    def _draw(self, force: bool) -> None:
        if _quiet:
            return
        now = time.perf_counter()
        if not force and now - self._last_draw < self.REFRESH_INTERVAL:
            return
        self._last_draw = now

        percent = round(self.fraction * 100, 1) if self.fraction >= 0 else None
        if _log_format == "json":
            _emit(
                json.dumps(
                    {
                        "progress": {
                            "description": self.description,
                            "percentage": percent,
                            "current": self.label,
                            "probed": self.probed,
                        }
                    }
                )
            )
            return

        shown = f"{percent:5.1f}%" if percent is not None else "  ?  "
        _emit(f"\r{self.description}: {shown} {_shorten(self.label)}", end="")

    def finish(self, outcome: str = "Complete") -> None:
        """Print the closing summary line."""
        if _quiet:
            return
        elapsed = time.perf_counter() - self._started_at

        if _log_format == "json":
            summary = {
                "description": self.description,
                "outcome": outcome,
                "probed": self.probed,
                "seconds": round(elapsed, 2),
            }
            _emit(json.dumps({"complete": summary}))
        else:
            _emit(
                f"\n{self.description}: {outcome}, {self.probed} plugin(s) probed "
                f"in {_duration(elapsed)}"
            )


def _shorten(text: str, width: int = 60) -> str:
    """Pad or left-truncate a path so the progress line keeps its width."""
    if len(text) <= width:
        return text.ljust(width)
    return "..." + text[-(width - 3):]


def _duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
