# Core Aggregation and Watching Module

from .models import (
    AggregationQuery,
    AggregationResult,
    AliasDescriptor,
    GroupBy,
    LogEntry,
    LogFile,
    LogLevel,
    SortBy,
    SortOrder,
    TaggedEntry,
    WatchState,
    WatchStatus,
)
from .log_parser import LogParser
from .error_classifier import ErrorClassifier, ClassificationReport
from .file_discovery import FileDiscovery
from .result_cache import ResultCache
from .aggregator import Aggregator
from .events import EventType, WatchEvent, InMemoryBroadcaster
from .alias_registry import AliasRegistry, InMemoryAliasRegistry, JsonAliasRegistry
from .watcher import Watcher, WatcherSettings

__all__ = [
    "AggregationQuery",
    "AggregationResult",
    "AliasDescriptor",
    "GroupBy",
    "LogEntry",
    "LogFile",
    "LogLevel",
    "SortBy",
    "SortOrder",
    "TaggedEntry",
    "WatchState",
    "WatchStatus",
    "LogParser",
    "ErrorClassifier",
    "ClassificationReport",
    "FileDiscovery",
    "ResultCache",
    "Aggregator",
    "EventType",
    "WatchEvent",
    "InMemoryBroadcaster",
    "AliasRegistry",
    "InMemoryAliasRegistry",
    "JsonAliasRegistry",
    "Watcher",
    "WatcherSettings",
]
