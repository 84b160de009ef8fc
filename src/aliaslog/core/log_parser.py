"""Plain-text log parser: raw file content to structured LogEntry records."""

import re
import logging
from datetime import date, datetime, time
from typing import List, Optional, Pattern, Sequence, Tuple

from .models import LogEntry, LogLevel

logger = logging.getLogger(__name__)


# Ordered: first match wins and is stripped from the message.
TIMESTAMP_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"^\[(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})\]"), "%Y-%m-%d %H:%M:%S"),
    (re.compile(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})"), "%Y-%m-%d %H:%M:%S"),
    (re.compile(r"^\[(\d{2}:\d{2}:\d{2})\]"), "%H:%M:%S"),
    (re.compile(r"^(\d{2}:\d{2}:\d{2})"), "%H:%M:%S"),
]

# Ordered by priority: a line with both a critical and a warning keyword is CRITICAL.
LEVEL_KEYWORDS: List[Tuple[LogLevel, Sequence[str]]] = [
    (LogLevel.CRITICAL, ("fatal", "critical", "crash", "abort", "emergency", "panic")),
    (LogLevel.ERROR, ("error", "failed", "failure", "exception", "traceback", "stderr")),
    (LogLevel.WARNING, ("warning", "warn", "deprecated", "timeout", "retry")),
    (LogLevel.INFO, ("info", "starting", "started", "success", "completed", "finished")),
]


class LogParser:
    """
    Turns raw log text into LogEntry records.

    Lines are split on newlines, right-trimmed and empty lines dropped.
    Timestamps are never backfilled: a line without a recognizable
    timestamp keeps ``timestamp=None``.
    """

    def parse(
        self,
        content: str,
        source_file: str,
        reference_date: Optional[date] = None,
    ) -> List[LogEntry]:
        """
        Parse file content into entries in original line order.

        Args:
            content: Raw UTF-8 text of the file
            source_file: File name used to derive stable entry ids
            reference_date: Date applied to time-only timestamps

        Returns:
            List of LogEntry, one per non-empty line
        """
        entries = []
        line_number = 0
        for raw_line in content.split("\n"):
            line = raw_line.rstrip()
            if not line:
                continue
            line_number += 1
            entries.append(self.parse_line(line, line_number, source_file, reference_date))

        logger.debug(f"Parsed {len(entries)} entries from {source_file}")
        return entries

    def parse_line(
        self,
        line: str,
        line_number: int,
        source_file: str,
        reference_date: Optional[date] = None,
    ) -> LogEntry:
        """Parse a single right-trimmed, non-empty line."""
        timestamp, message = self.extract_timestamp(line, reference_date)
        return LogEntry(
            id=self.entry_id(source_file, line_number),
            source_file=source_file,
            line_number=line_number,
            raw_text=line,
            message=message,
            level=self.detect_level(message),
            timestamp=timestamp,
        )

    @staticmethod
    def entry_id(source_file: str, line_number: int) -> str:
        return f"{source_file}:{line_number}"

    def extract_timestamp(
        self,
        line: str,
        reference_date: Optional[date] = None,
    ) -> Tuple[Optional[datetime], str]:
        """
        Find a leading timestamp and strip it from the message.

        Returns:
            (timestamp or None, remaining message)
        """
        for pattern, fmt in TIMESTAMP_PATTERNS:
            match = pattern.match(line)
            if not match:
                continue
            try:
                parsed = datetime.strptime(match.group(1), fmt)
            except ValueError:
                # e.g. 25:61:00 - not a real timestamp, try the next pattern
                continue

            message = line[match.end():].strip()
            if fmt == "%H:%M:%S":
                if reference_date is None:
                    return None, message
                parsed = datetime.combine(reference_date, time(parsed.hour, parsed.minute, parsed.second))
            return parsed, message

        return None, line.strip()

    @staticmethod
    def detect_level(message: str) -> LogLevel:
        """Keyword-based level detection; falls back to DEBUG."""
        lowered = message.lower()
        for level, keywords in LEVEL_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return level
        return LogLevel.DEBUG
