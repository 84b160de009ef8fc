"""Tabular statistics over parsed log entries (pandas based)."""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from .models import ISSUE_LEVELS, LogEntry, TaggedEntry

EntryLike = Union[LogEntry, TaggedEntry]

BASE_COLUMNS = [
    "id", "source_file", "line_number", "timestamp", "level",
    "severity_rank", "category", "message",
]
TAG_COLUMNS = ["user_id", "alias_name", "file_name", "file_path", "file_modified_at"]

ISSUE_LEVEL_NAMES = [level.value for level in ISSUE_LEVELS]


def entries_to_frame(entries: Iterable[EntryLike]) -> pd.DataFrame:
    """
    Build a DataFrame with one row per entry.

    Tagged entries get the extra user/alias/file columns.
    """
    rows = []
    tagged = False
    for item in entries:
        entry = item.entry if isinstance(item, TaggedEntry) else item
        row: Dict[str, Any] = {
            "id": item.id,
            "source_file": entry.source_file,
            "line_number": entry.line_number,
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "severity_rank": entry.severity_rank,
            "category": entry.category,
            "message": entry.message,
        }
        if isinstance(item, TaggedEntry):
            tagged = True
            row.update({
                "user_id": item.user_id,
                "alias_name": item.alias_name,
                "file_name": item.file_name,
                "file_path": item.file_path,
                "file_modified_at": item.file_modified_at,
            })
        rows.append(row)

    columns = BASE_COLUMNS + (TAG_COLUMNS if tagged else [])
    df = pd.DataFrame(rows, columns=columns)
    df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce")
    return df


def _iso(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime().isoformat()


def calculate_log_statistics(
    entries: Iterable[EntryLike],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Summarize a set of entries.

    Returns:
        Dictionary with total, by_level counts, time_range, recent_activity
        (entries in the last hour) and the five most repeated issue messages
    """
    df = entries_to_frame(entries)
    stats: Dict[str, Any] = {
        "total": int(len(df)),
        "by_level": {},
        "time_range": {},
        "recent_activity": 0,
        "top_errors": [],
    }
    if df.empty:
        return stats

    stats["by_level"] = {level: int(count) for level, count in df["level"].value_counts().items()}

    timestamps = df["timestamp"].dropna()
    if not timestamps.empty:
        stats["time_range"] = {
            "earliest": _iso(timestamps.min()),
            "latest": _iso(timestamps.max()),
        }
        cutoff = pd.Timestamp((now or datetime.now()) - timedelta(hours=1))
        stats["recent_activity"] = int((timestamps > cutoff).sum())

    issues = df[df["level"].isin(ISSUE_LEVEL_NAMES)]
    if not issues.empty:
        counts = issues["message"].str.slice(0, 100).value_counts().head(5)
        stats["top_errors"] = [
            {"message": message, "count": int(count)} for message, count in counts.items()
        ]

    return stats


def error_timeline(entries: Iterable[EntryLike], limit: int = 24) -> List[Dict[str, Any]]:
    """Hourly buckets (oldest first) of entries that carry a timestamp."""
    df = entries_to_frame(entries).dropna(subset=["timestamp"])
    if df.empty:
        return []

    df = df.assign(hour=df["timestamp"].dt.strftime("%Y-%m-%d %H:00"))
    timeline = []
    for hour, group in df.groupby("hour", sort=True):
        timeline.append({
            "hour": hour,
            "total": int(len(group)),
            "by_level": {level: int(count) for level, count in group["level"].value_counts().items()},
        })
    return timeline[:limit]


def repeating_messages(entries: Iterable[EntryLike], min_count: int = 4) -> Dict[str, Dict[str, Any]]:
    """Messages (first 100 chars) seen at least ``min_count`` times."""
    df = entries_to_frame(entries)
    if df.empty:
        return {}

    df = df.assign(short=df["message"].str.slice(0, 100))
    repeating = {}
    for message, group in df.groupby("short", sort=False):
        if len(group) < min_count:
            continue
        repeating[message] = {
            "count": int(len(group)),
            "first_seen": _iso(group["timestamp"].min()),
            "last_seen": _iso(group["timestamp"].max()),
            "level": group["level"].iloc[0],
        }
    return repeating
