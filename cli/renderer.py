"""
DS_Store Record Renderer
========================
Formats decoded records for the terminal.

Features:
  - Modes: table, vertical, raw, json
  - Auto-column-width with configurable max
  - Values rendered by type: blobs as hex, dutc as ISO timestamps
  - Footer with record count, corruption markers and integrity warnings
"""

import json
import sys
from typing import Any, Dict, Iterable, List, Optional, TextIO

from storage.record import Record
from storage.types import ValueType

COLUMNS = ["filename", "code", "type", "value"]
MODES = ("table", "vertical", "raw", "json")


class Renderer:
    """
    Record renderer with configurable display modes.
    """

    def __init__(self, output: TextIO = None):
        self.output = output or sys.stdout
        self.mode: str = "table"        # table, vertical, raw, json
        self.display_limit: Optional[int] = None  # None = no limit
        self.max_col_width: int = 60

    # ─── Public API ─────────────────────────────────────────────────

    def render_model(self, model) -> int:
        """Render records followed by the corruption/warning summary."""
        if self.mode == "json":
            self._print(json.dumps(model.to_json(), indent=2, ensure_ascii=False))
            return len(model.records)
        count = self.render_records(model.records)
        self.render_summary(model)
        return count

    def render_records(self, records: Iterable[Record]) -> int:
        """Render records in the current mode. Returns number rendered."""
        rows = (self._extract_values(r) for r in records)
        if self.mode == "raw":
            count = self._render_raw(rows)
        elif self.mode == "vertical":
            count = self._render_vertical(rows)
        else:
            count = self._render_table(rows)
        self._print(f"\n{count} record(s)")
        return count

    def render_summary(self, model) -> None:
        """Print corruption markers and integrity warnings, if any."""
        if model.corrupt:
            self._print(f"{len(model.corrupt)} corrupt subtree(s):")
            for marker in model.corrupt:
                self._print(f"  {marker}")
        for warning in model.warnings:
            self._print(f"warning: {warning}")

    def render_error(self, error: Exception):
        """Render an error with its kind as prefix."""
        prefix = getattr(error, "kind", type(error).__name__)
        self._print(f"{prefix}: {error}")

    # ─── Table Mode ─────────────────────────────────────────────────

    def _render_table(self, rows) -> int:
        buffer = []
        for vals in rows:
            if self.display_limit is not None and len(buffer) >= self.display_limit:
                break
            buffer.append(vals)

        if not buffer:
            return 0

        cells = [[self._clip(self._format_value(vals.get(h))) for h in COLUMNS]
                 for vals in buffer]
        widths = [max([len(h)] + [len(row[i]) for row in cells])
                  for i, h in enumerate(COLUMNS)]
        separator = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

        self._print(separator)
        self._print_cells(widths, COLUMNS, [False] * len(COLUMNS))
        self._print(separator)
        for vals, row in zip(buffer, cells):
            # Numbers right-aligned, everything else left-aligned
            numeric = [isinstance(vals.get(h), int) and not isinstance(vals.get(h), bool)
                       for h in COLUMNS]
            self._print_cells(widths, row, numeric)
        self._print(separator)
        return len(buffer)

    def _clip(self, text: str) -> str:
        if len(text) > self.max_col_width:
            return text[:self.max_col_width - 3] + "..."
        return text

    def _print_cells(self, widths: List[int], cells: List[str], numeric: List[bool]):
        line = "|"
        for width, text, right in zip(widths, cells, numeric):
            line += f" {text:>{width}} |" if right else f" {text:<{width}} |"
        self._print(line)

    # ─── Vertical Mode ──────────────────────────────────────────────

    def _render_vertical(self, rows) -> int:
        """Render each record as key: value pairs."""
        count = 0
        max_key_len = max(len(h) for h in COLUMNS)
        for vals in rows:
            if self.display_limit is not None and count >= self.display_limit:
                self._print(f"... (display limit {self.display_limit} reached)")
                break
            count += 1
            self._print(f"*** Record {count} ***")
            for h in COLUMNS:
                self._print(f"  {h:>{max_key_len}}: {self._format_value(vals.get(h))}")
        return count

    # ─── Raw Mode ───────────────────────────────────────────────────

    def _render_raw(self, rows) -> int:
        """Render values separated by pipes, no formatting."""
        count = 0
        self._print("|".join(COLUMNS))
        for vals in rows:
            if self.display_limit is not None and count >= self.display_limit:
                break
            self._print("|".join(self._format_value(vals.get(h)) for h in COLUMNS))
            count += 1
        return count

    # ─── Helpers ────────────────────────────────────────────────────

    def _extract_values(self, record: Record) -> Dict[str, Any]:
        value = record.value
        data = value.data
        if value.kind == ValueType.DUTC:
            try:
                data = value.as_datetime().isoformat()
            except ValueError:
                pass
        return {
            "filename": record.filename,
            "code": record.code,
            "type": value.tag,
            "value": data,
        }

    def _format_value(self, value) -> str:
        """Format a single value for display."""
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, bytes):
            return value.hex()
        return str(value)

    def _print(self, text: str):
        """Print a line to the output stream."""
        print(text, file=self.output)
