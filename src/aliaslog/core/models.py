"""
Data model shared by the parser, classifier, aggregator and watcher.

Entries produced by the parser are immutable; the aggregator wraps them in
TaggedEntry records that carry the user/alias/file they came from.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LogLevel(Enum):
    """Log levels ordered CRITICAL > ERROR > WARNING > INFO > DEBUG."""
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"
    DEBUG = "DEBUG"

    @property
    def rank(self) -> int:
        return SEVERITY_RANKS[self]

    @classmethod
    def parse(cls, value: Any) -> "LogLevel":
        """Parse a level name case-insensitively (WARN is accepted for WARNING)."""
        if isinstance(value, LogLevel):
            return value
        name = str(value).strip().upper()
        if name == "WARN":
            name = "WARNING"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}")


SEVERITY_RANKS = {
    LogLevel.CRITICAL: 5,
    LogLevel.ERROR: 4,
    LogLevel.WARNING: 3,
    LogLevel.INFO: 2,
    LogLevel.DEBUG: 1,
}

ISSUE_LEVELS = frozenset({LogLevel.CRITICAL, LogLevel.ERROR, LogLevel.WARNING})


class GroupBy(Enum):
    USER = "user"
    ALIAS = "alias"
    LEVEL = "level"
    FILE = "file"
    HOUR = "hour"
    DATE = "date"


class SortBy(Enum):
    TIMESTAMP = "timestamp"
    USER = "user"
    ALIAS = "alias"
    LEVEL = "level"
    FILE = "file"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def format_bytes(size: int, decimals: int = 2) -> str:
    """Format a byte count as a human-readable string."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, decimals):g} {units[index]}"


@dataclass(frozen=True)
class LogEntry:
    """One parsed line of a log file."""
    id: str
    source_file: str
    line_number: int
    raw_text: str
    message: str
    level: LogLevel
    timestamp: Optional[datetime] = None
    category: Optional[str] = None

    @property
    def severity_rank(self) -> int:
        return self.level.rank

    @property
    def is_error(self) -> bool:
        return self.level in (LogLevel.ERROR, LogLevel.CRITICAL)

    @property
    def is_warning(self) -> bool:
        return self.level is LogLevel.WARNING

    def with_category(self, category: Optional[str]) -> "LogEntry":
        return replace(self, category=category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceFile": self.source_file,
            "lineNumber": self.line_number,
            "timestamp": _iso(self.timestamp),
            "rawText": self.raw_text,
            "message": self.message,
            "level": self.level.value,
            "category": self.category,
            "severityRank": self.severity_rank,
        }


@dataclass(frozen=True)
class LogFile:
    """Point-in-time snapshot of a file found by discovery."""
    path: str
    name: str
    size: int
    modified_at: datetime
    created_at: datetime
    extension: str

    @property
    def modified_date(self) -> date:
        return self.modified_at.date()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "sizeFormatted": format_bytes(self.size),
            "modifiedAt": self.modified_at.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "extension": self.extension,
        }


@dataclass
class AliasDescriptor:
    """A user's named base directory."""
    user_id: str
    alias_name: str
    base_path: str
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "aliasName": self.alias_name,
            "basePath": self.base_path,
            "accessCount": self.access_count,
            "lastAccessedAt": _iso(self.last_accessed_at),
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, user_id: str, data: Dict[str, Any]) -> "AliasDescriptor":
        def _dt(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            user_id=user_id,
            alias_name=data["aliasName"],
            base_path=data["basePath"],
            access_count=int(data.get("accessCount", 0)),
            last_accessed_at=_dt(data.get("lastAccessedAt")),
            created_at=_dt(data.get("createdAt")),
        )


CACHE_KEY_DELIMITER = "|"


@dataclass(frozen=True)
class AggregationQuery:
    """Filter/sort/group/paginate parameters for one retrieval request."""
    user_ids: Tuple[str, ...] = ()
    alias_names: Tuple[str, ...] = ()
    log_levels: Tuple[LogLevel, ...] = ()
    date: Optional[date] = None
    limit: int = 1000
    offset: int = 0
    group_by: Optional[GroupBy] = None
    sort_by: SortBy = SortBy.TIMESTAMP
    sort_order: SortOrder = SortOrder.DESC
    include_metadata: bool = True
    use_cache: bool = True

    def canonical(self, today: Optional[date] = None) -> "AggregationQuery":
        """
        Return the canonical form used for execution and cache keys.

        Ids are lower-cased, de-duplicated and sorted; an empty level set
        becomes every level; a missing date becomes today.
        """
        levels = set(self.log_levels) or set(LogLevel)
        return replace(
            self,
            user_ids=tuple(sorted({u.strip().lower() for u in self.user_ids if u.strip()})),
            alias_names=tuple(sorted({a.strip().lower() for a in self.alias_names if a.strip()})),
            log_levels=tuple(sorted(levels, key=lambda level: -level.rank)),
            date=self.date or today or date.today(),
        )

    def cache_key(self, today: Optional[date] = None) -> str:
        query = self.canonical(today)
        parts = [
            ",".join(query.user_ids) or "all",
            ",".join(query.alias_names) or "all",
            query.date.isoformat(),
            ",".join(level.value for level in query.log_levels),
            str(query.limit),
            str(query.offset),
            query.group_by.value if query.group_by else "none",
            query.sort_by.value,
            query.sort_order.value,
            "meta" if query.include_metadata else "nometa",
        ]
        return CACHE_KEY_DELIMITER.join(parts)


@dataclass(frozen=True)
class TaggedEntry:
    """A parsed entry tagged with the source it was aggregated from."""
    entry: LogEntry
    user_id: str
    alias_name: str
    file_name: str
    file_path: str
    file_modified_at: datetime

    @property
    def id(self) -> str:
        return f"{self.user_id}/{self.alias_name}/{self.entry.id}"

    @property
    def level(self) -> LogLevel:
        return self.entry.level

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.entry.timestamp

    @property
    def effective_timestamp(self) -> datetime:
        """Entry timestamp, falling back to the file's modified time."""
        return self.entry.timestamp or self.file_modified_at

    @property
    def message(self) -> str:
        return self.entry.message

    @property
    def line_number(self) -> int:
        return self.entry.line_number

    @property
    def category(self) -> Optional[str]:
        return self.entry.category

    @property
    def severity_rank(self) -> int:
        return self.entry.severity_rank

    def to_dict(self) -> Dict[str, Any]:
        data = self.entry.to_dict()
        data.update({
            "id": self.id,
            "userId": self.user_id,
            "aliasName": self.alias_name,
            "fileName": self.file_name,
            "filePath": self.file_path,
            "fileModifiedAt": self.file_modified_at.isoformat(),
        })
        return data


@dataclass
class EntryGroup:
    """One bucket of a grouped aggregation."""
    key: str
    entries: List[TaggedEntry] = field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0

    @property
    def count(self) -> int:
        return len(self.entries)

    def add(self, entry: TaggedEntry) -> None:
        self.entries.append(entry)
        if entry.entry.is_error:
            self.error_count += 1
        elif entry.entry.is_warning:
            self.warning_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "count": self.count,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
        }


@dataclass(frozen=True)
class Pagination:
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    @property
    def next_offset(self) -> Optional[int]:
        return self.offset + self.limit if self.has_more else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "hasMore": self.has_more,
            "nextOffset": self.next_offset,
        }


@dataclass(frozen=True)
class SourceFailure:
    """A user, alias or file that could not be read during aggregation."""
    kind: str
    message: str
    user_id: str
    alias_name: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "userId": self.user_id,
            "aliasName": self.alias_name,
            "path": self.path,
        }


@dataclass
class AggregationResult:
    """Outcome of one aggregation; cached by query signature."""
    entries: List[TaggedEntry]
    pagination: Pagination
    total_before_filter: int
    total_after_filter: int
    total_users: int = 0
    processed_users: int = 0
    total_files: int = 0
    groups: Optional[Dict[str, EntryGroup]] = None
    failures: List[SourceFailure] = field(default_factory=list)
    from_cache: bool = False
    include_metadata: bool = True
    executed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """
        Wire form. Without ``include_metadata`` the metadata block carries
        only the per-source failures.
        """
        if not self.include_metadata:
            return {
                "entries": [e.to_dict() for e in self.entries],
                "metadata": {"failures": [f.to_dict() for f in self.failures]},
                "pagination": self.pagination.to_dict(),
                "fromCache": self.from_cache,
            }

        metadata: Dict[str, Any] = {
            "totalUsers": self.total_users,
            "processedUsers": self.processed_users,
            "totalFiles": self.total_files,
            "totalLogs": self.total_after_filter,
            "totalBeforeFilter": self.total_before_filter,
            "failures": [f.to_dict() for f in self.failures],
            "executedAt": self.executed_at.isoformat(),
        }
        if self.groups is not None:
            metadata["groupedData"] = {key: group.to_dict() for key, group in self.groups.items()}
        return {
            "entries": [e.to_dict() for e in self.entries],
            "metadata": metadata,
            "pagination": self.pagination.to_dict(),
            "fromCache": self.from_cache,
        }

    def to_dataframe(self):
        """Return the page of entries as a pandas DataFrame."""
        from .statistics import entries_to_frame

        return entries_to_frame(self.entries)


class WatchStatus(Enum):
    UNWATCHED = "UNWATCHED"
    STARTING = "STARTING"
    READY = "READY"
    RETRYING = "RETRYING"
    FAILED = "FAILED"


@dataclass
class WatchState:
    """Per-directory watcher state; lives from watch start until stop."""
    directory: str
    context: Dict[str, Any] = field(default_factory=dict)
    status: WatchStatus = WatchStatus.UNWATCHED
    retry_count: int = 0
    last_error: Optional[str] = None
    observer: Any = None
    debounce_timers: Dict[str, Any] = field(default_factory=dict)
    retry_timer: Any = None
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directory": self.directory,
            "context": dict(self.context),
            "status": self.status.value,
            "retryCount": self.retry_count,
            "lastError": self.last_error,
            "pendingChanges": sorted(self.debounce_timers),
            "retryScheduled": self.retry_timer is not None,
        }
