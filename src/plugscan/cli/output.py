"""Output formatting for the plugscan CLI.

stdout carries results only (json, jsonl or a human-readable rendering);
logs and progress go to stderr through ``plugscan.core.logging``.
"""

import json
import sys
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import Any, Literal, TextIO

from pydantic import BaseModel

OutputFormat = Literal["json", "jsonl", "human"]

_output_format: OutputFormat = "json"

TABLE_MAX_WIDTH = 50
TABLE_SAMPLE = 100


def set_output_format(format: OutputFormat) -> None:
    """Set the format used by ``output`` when none is given."""
    global _output_format
    _output_format = format


def _jsonable(obj: Any) -> Any:
    """``json.dumps`` fallback for plugscan types."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _dumps(data: Any) -> str:
    return json.dumps(data, default=_jsonable, ensure_ascii=False)


def _write_lines(lines: Iterable[str], file: TextIO | None) -> None:
    file = file or sys.stdout
    for line in lines:
        file.write(line + "\n")
    file.flush()


def _heading(title: str | None) -> list[str]:
    if not title:
        return []
    return ["", title, "-" * len(title), ""]


def _human_lines(data: Any, indent: int = 0) -> list[str]:
    """Render nested dicts and lists as indented ``key: value`` lines."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    pad = "  " * indent

    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, (dict, list, BaseModel)) and value:
                lines.append(f"{pad}{key}:")
                lines.extend(_human_lines(value, indent + 1))
            else:
                lines.append(f"{pad}{key}: {'' if value is None else value}")
        return lines

    if isinstance(data, list):
        lines = []
        for item in data:
            if isinstance(item, (dict, BaseModel)):
                nested = _human_lines(item, indent + 1)
                lines.append(f"{pad}- {nested[0].lstrip()}" if nested else f"{pad}-")
                lines.extend(nested[1:])
            else:
                lines.append(f"{pad}- {item}")
        return lines

    return [f"{pad}{data}"]


def _cell(value: Any, width: int) -> str:
    if isinstance(value, list):
        text = ", ".join(str(v) for v in value)
    else:
        text = "" if value is None else str(value)
    # Identifiers are paths: keep the informative tail.
    if len(text) > width:
        text = "..." + text[-(width - 3):]
    return text.ljust(width)


def table_lines(
    records: list[dict[str, Any]],
    columns: list[str] | None = None,
    title: str | None = None,
    max_width: int = TABLE_MAX_WIDTH,
) -> list[str]:
    """Render records as a fixed-width table.

    Args:
        records: Rows as dictionaries
        columns: Columns to show (default: the first row's first six keys)
        title: Optional heading
        max_width: Upper bound for any column width
    """
    lines = _heading(title)
    if not records:
        return lines + ["(none)"]

    columns = columns or list(records[0])[:6]
    widths = {}
    for column in columns:
        longest = max(
            (len(_cell(r.get(column), 10_000).rstrip()) for r in records[:TABLE_SAMPLE]),
            default=0,
        )
        widths[column] = min(max_width, max(len(column), longest))

    header = "  ".join(column.upper().ljust(widths[column]) for column in columns)
    lines += [header, "-" * len(header)]
    for record in records:
        lines.append(
            "  ".join(_cell(record.get(column), widths[column]) for column in columns).rstrip()
        )
    lines += ["", f"{len(records)} row(s)"]
    return lines


def output(data: Any, format: OutputFormat | None = None, file: TextIO | None = None) -> None:
    """Write one result document to stdout.

    Lists are written one element per line in ``jsonl`` mode; anything
    else is a single JSON document.
    """
    format = format or _output_format
    if format == "human":
        _write_lines(_human_lines(data), file)
    elif format == "jsonl" and isinstance(data, (list, tuple)):
        _write_lines((_dumps(item) for item in data), file)
    else:
        _write_lines([_dumps(data)], file)


def output_error(error: Any, file: TextIO | None = None) -> None:
    """Write a structured error to stdout so callers can parse it."""
    output(error, file=file)


class OutputFormatter:
    """Per-invocation output settings handed to commands via ``ctx.obj``."""

    def __init__(self, format: OutputFormat = "json"):
        self.format = format

    def output(self, data: Any) -> None:
        output(data, format=self.format)

    def error(self, error: Any) -> None:
        output(error, format=self.format)

    def records(
        self,
        records: list[dict[str, Any]],
        columns: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        """Output rows: a table, one JSON object per line, or a JSON array."""
        if self.format == "human":
            _write_lines(table_lines(records, columns=columns, title=title), None)
        else:
            output(records, format=self.format)

    def is_human(self) -> bool:
        return self.format == "human"
