"""Test plain-text log parsing."""

from datetime import date, datetime

import pytest

from aliaslog.core.log_parser import LogParser
from aliaslog.core.models import LogLevel


@pytest.fixture
def parser():
    return LogParser()


def test_parse_skips_empty_lines_and_numbers_kept_lines(parser):
    """Line numbers count only non-empty lines, starting at 1."""
    content = "first line\n\n   \nsecond line\r\n"
    entries = parser.parse(content, "app.log")

    assert [e.line_number for e in entries] == [1, 2]
    assert [e.raw_text for e in entries] == ["first line", "second line"]
    assert entries[1].id == "app.log:2"


def test_parse_empty_content(parser):
    """Empty or whitespace-only content yields no entries."""
    assert parser.parse("", "app.log") == []
    assert parser.parse("\n \n\t\n", "app.log") == []


def test_bracketed_full_timestamp(parser):
    """A leading [YYYY-MM-DD HH:MM:SS] is parsed and stripped."""
    entry = parser.parse("[2024-05-10 10:00:00] ERROR db down", "app.log")[0]

    assert entry.timestamp == datetime(2024, 5, 10, 10, 0, 0)
    assert entry.message == "ERROR db down"
    assert entry.level is LogLevel.ERROR
    assert entry.raw_text == "[2024-05-10 10:00:00] ERROR db down"


def test_bare_full_timestamp(parser):
    entry = parser.parse("2024-05-10 23:59:01 service started", "app.log")[0]

    assert entry.timestamp == datetime(2024, 5, 10, 23, 59, 1)
    assert entry.message == "service started"
    assert entry.level is LogLevel.INFO


def test_time_only_uses_reference_date(parser):
    """Time-only stamps take the reference date when one is supplied."""
    entries = parser.parse("[08:15:30] warning: disk low", "app.log", reference_date=date(2024, 5, 10))

    assert entries[0].timestamp == datetime(2024, 5, 10, 8, 15, 30)
    assert entries[0].message == "warning: disk low"
    assert entries[0].level is LogLevel.WARNING


def test_time_only_without_reference_date(parser):
    """Without a reference date the time is stripped but no timestamp is set."""
    entry = parser.parse("08:15:30 job completed", "app.log")[0]

    assert entry.timestamp is None
    assert entry.message == "job completed"


def test_invalid_timestamp_is_not_backfilled(parser):
    """Impossible values are not timestamps; the line is left intact."""
    entry = parser.parse("2024-13-45 99:99:99 something odd", "app.log")[0]

    assert entry.timestamp is None
    assert entry.message == "2024-13-45 99:99:99 something odd"


def test_no_timestamp(parser):
    entry = parser.parse("plain message", "app.log")[0]
    assert entry.timestamp is None
    assert entry.level is LogLevel.DEBUG


@pytest.mark.parametrize("message,level", [
    ("FATAL: kernel panic", LogLevel.CRITICAL),
    ("process crash detected, retry scheduled", LogLevel.CRITICAL),
    ("Unhandled exception in worker", LogLevel.ERROR),
    ("request failed", LogLevel.ERROR),
    ("API deprecated, will be removed", LogLevel.WARNING),
    ("Request timeout after 30s", LogLevel.WARNING),
    ("Backup completed", LogLevel.INFO),
    ("heartbeat", LogLevel.DEBUG),
])
def test_detect_level(parser, message, level):
    """Keyword priority: critical > error > warning > info > debug."""
    assert parser.detect_level(message) is level


def test_level_detection_ignores_timestamp_prefix(parser):
    """Keywords are matched against the message, not the stripped timestamp."""
    entry = parser.parse("[2024-05-10 10:00:00] all good", "app.log")[0]
    assert entry.level is LogLevel.DEBUG


def test_parse_is_deterministic(parser):
    content = "[2024-05-10 10:00:00] ERROR a\n[2024-05-10 10:01:00] INFO b\n"
    assert parser.parse(content, "x.log") == parser.parse(content, "x.log")


def test_raw_text_reconstructs_trimmed_lines(parser):
    """Joining raw_text in order gives back the non-empty, right-trimmed lines."""
    content = "[2024-05-10 10:00:00] ERROR a  \n\n08:00:00 b\nplain\t\n"
    expected = [line.rstrip() for line in content.split("\n") if line.strip()]

    assert [e.raw_text for e in parser.parse(content, "x.log")] == expected
