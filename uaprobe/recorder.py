"""
Per-run log recorder.

Headline records are short, human-facing lines that go to the log file and to
any live observer. Detailed records (sections, tables, error dumps) only go
to the file. Every warning and error is also kept in memory so the run can
close with a consolidated summary block.
"""
from __future__ import annotations
import itertools
import json
import logging
import os
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

LOG_FILE_PREFIX = "uaprobe_"
DEFAULT_COLUMN_WIDTH = 24
TRUNCATION_MARK = ".."

_logger_ids = itertools.count(1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2026-10-16T20:20:00.123Z."""
    moment = (moment or utc_now()).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def log_file_name(started_at: datetime) -> str:
    stamp = iso_timestamp(started_at).replace(":", "-").replace(".", "-")
    return f"{LOG_FILE_PREFIX}{stamp}.log"


def make_log_path(directory: str, started_at: datetime) -> str:
    """Creates the log directory if needed and returns the file path for a run."""
    os.makedirs(directory, exist_ok=True)
    return os.path.join(directory, log_file_name(started_at))


def truncate_cell(value: Any, width: int) -> str:
    text = "" if value is None else str(value)
    if len(text) <= width:
        return text
    if width <= len(TRUNCATION_MARK):
        return TRUNCATION_MARK[:width]
    return text[:width - len(TRUNCATION_MARK)] + TRUNCATION_MARK


def format_table(
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    max_width: int = DEFAULT_COLUMN_WIDTH,
) -> List[str]:
    """
    Formats rows as fixed-width text columns.
    Column width is the widest cell, capped at max_width; longer cells end in '..'.
    """
    widths = []
    for idx, header in enumerate(columns):
        cells = [len(str(row[idx])) if idx < len(row) and row[idx] is not None else 0 for row in rows]
        widths.append(min(max([len(header)] + cells), max_width))

    def _line(values: Sequence[Any]) -> str:
        padded = [truncate_cell(values[i] if i < len(values) else "", w).ljust(w) for i, w in enumerate(widths)]
        return "  ".join(padded).rstrip()

    lines = [_line(columns), "  ".join("-" * w for w in widths)]
    lines.extend(_line(row) for row in rows)
    return lines


@dataclass(frozen=True)
class RecordedIssue:
    """An error or warning collected during a run."""
    timestamp: str
    context: str
    message: str
    kind: str
    traceback: Optional[str] = None
    fatal: bool = False


class _IsoFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        return iso_timestamp(datetime.fromtimestamp(record.created, timezone.utc))


class LogRecorder:
    """Append-only record sink for one probe run."""

    def __init__(
        self,
        log_path: Optional[str] = None,
        on_headline: Optional[Callable[[str], None]] = None,
    ):
        self.log_path = log_path
        self.on_headline = on_headline
        self.errors: List[RecordedIssue] = []
        self.warnings: List[RecordedIssue] = []

        self._logger = logging.getLogger(f"uaprobe.run.{next(_logger_ids)}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        if log_path:
            handler: logging.Handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            handler.setFormatter(_IsoFormatter("[%(asctime)s] %(message)s"))
        else:
            handler = logging.NullHandler()
        self._handler = handler
        self._logger.addHandler(handler)

    # ------------------- Raw writing -------------------

    def _write(self, text: str):
        for line in text.split("\n"):
            self._logger.info(line)

    def headline(self, text: str):
        """Short human-facing record: written to the file and forwarded to the observer."""
        if self.on_headline:
            self.on_headline(text)
        self._write(text)

    def detail(self, text: str):
        """File-only record."""
        self._write(text)

    # ------------------- Structured sections -------------------

    def begin_section(self, title: str):
        self.detail(f"===== {title} =====")

    def end_section(self, title: str):
        self.detail(f"===== End {title} =====")

    def section(self, title: str, data: Any = None, summary: Optional[str] = None):
        """Writes a delimited section with an optional summary line and a JSON dump."""
        self.begin_section(title)
        if summary:
            self.detail(f"Summary: {summary}")
        if data is not None:
            try:
                self.detail(f"Detailed Data: {json.dumps(data, default=str)}")
            except (TypeError, ValueError):
                self.detail(f"Detailed Data (stringified): {data}")
        self.end_section(title)

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        summary: Optional[str] = None,
    ):
        self.begin_section(title)
        if summary:
            self.detail(f"Summary: {summary}")
        if rows:
            for line in format_table(columns, rows):
                self.detail(line)
        else:
            self.detail("(no rows)")
        self.end_section(title)

    # ------------------- Errors and warnings -------------------

    def dump_exception(self, exc: BaseException, context: str):
        """Writes the full error context to the file without collecting it."""
        self.begin_section("ERROR DETECTED")
        self.detail(f"Context: {context}")
        self.detail(f"Error Name: {type(exc).__name__}")
        self.detail(f"Error Message: {exc}")
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        if exc.__traceback__ is not None:
            self.detail(f"Stack Trace:\n{tb}")
        else:
            self.detail(f"Full Error: {exc!r}")
        self.end_section("ERROR DETECTED")

    def error(self, exc: BaseException, context: str, fatal: bool = False) -> RecordedIssue:
        tb = None
        if exc.__traceback__ is not None:
            tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        issue = RecordedIssue(
            timestamp=iso_timestamp(),
            context=context,
            message=str(exc),
            kind=type(exc).__name__,
            traceback=tb,
            fatal=fatal,
        )
        self.errors.append(issue)
        self.dump_exception(exc, context)
        return issue

    def warning(self, message: str, context: str) -> RecordedIssue:
        issue = RecordedIssue(
            timestamp=iso_timestamp(),
            context=context,
            message=str(message),
            kind="Warning",
        )
        self.warnings.append(issue)
        self.detail(f"[WARNING] {context}: {issue.message}")
        return issue

    def write_issue_summary(self):
        """Replays every collected error and warning. Writes nothing when the run was clean."""
        if not self.errors and not self.warnings:
            return

        title = "ERROR AND WARNING SUMMARY"
        self.begin_section(title)
        if self.errors:
            self.detail(f"Total Errors: {len(self.errors)}")
            for idx, err in enumerate(self.errors, start=1):
                self.detail(f"--- Error {idx}{' (fatal)' if err.fatal else ''} ---")
                self.detail(f"  Time: {err.timestamp}")
                self.detail(f"  Context: {err.context or 'Unknown'}")
                self.detail(f"  Type: {err.kind}")
                self.detail(f"  Message: {err.message}")
                if err.traceback:
                    self.detail("  Stack Trace:\n" + "\n".join("    " + l for l in err.traceback.splitlines()))
        if self.warnings:
            self.detail(f"Total Warnings: {len(self.warnings)}")
            for idx, warn in enumerate(self.warnings, start=1):
                self.detail(f"--- Warning {idx} ---")
                self.detail(f"  Time: {warn.timestamp}")
                self.detail(f"  Context: {warn.context or 'Unknown'}")
                self.detail(f"  Message: {warn.message}")
        self.end_section(title)

    def close(self):
        self._logger.removeHandler(self._handler)
        self._handler.close()
