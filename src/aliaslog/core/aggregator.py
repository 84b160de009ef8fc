"""
Log aggregation across many (user, alias) sources.

Resolves users and aliases through the registry, scans each alias directory
on a bounded worker pool, parses and classifies every matching file, then
filters, sorts, groups and paginates the merged entries. Results are
memoized in a ResultCache keyed by the canonical query.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .alias_registry import AliasRegistry
from .error_classifier import ErrorClassifier
from .events import CHANGE_EVENTS, WatchEvent
from .file_discovery import FileDiscovery
from .log_parser import LogParser
from .models import (
    AggregationQuery,
    AggregationResult,
    AliasDescriptor,
    EntryGroup,
    GroupBy,
    Pagination,
    SortBy,
    SortOrder,
    SourceFailure,
    TaggedEntry,
)
from .result_cache import ResultCache
from ..utils.config import ConfigManager, config as default_config
from ..utils.exceptions import LogFileError, ResolutionError, SourceTimeoutError, ValidationError

logger = logging.getLogger(__name__)


SORT_KEYS: Dict[SortBy, Callable[[TaggedEntry], Any]] = {
    SortBy.TIMESTAMP: lambda e: e.effective_timestamp,
    SortBy.USER: lambda e: e.user_id.lower(),
    SortBy.ALIAS: lambda e: e.alias_name.lower(),
    SortBy.LEVEL: lambda e: e.severity_rank,
    SortBy.FILE: lambda e: e.file_name.lower(),
}

GROUP_KEYS: Dict[GroupBy, Callable[[TaggedEntry], str]] = {
    GroupBy.USER: lambda e: e.user_id,
    GroupBy.ALIAS: lambda e: f"{e.user_id}/{e.alias_name}",
    GroupBy.LEVEL: lambda e: e.level.value,
    GroupBy.FILE: lambda e: e.file_name,
    GroupBy.HOUR: lambda e: e.effective_timestamp.strftime("%H:00"),
    GroupBy.DATE: lambda e: e.effective_timestamp.date().isoformat(),
}


def sort_entries(entries: Iterable[TaggedEntry], sort_by: SortBy, sort_order: SortOrder) -> List[TaggedEntry]:
    """
    Stable sort by the requested key.

    Ties keep (file mtime desc, line number asc), then collection order.
    """
    ordered = sorted(entries, key=lambda e: (-e.file_modified_at.timestamp(), e.line_number))
    return sorted(ordered, key=SORT_KEYS[sort_by], reverse=sort_order is SortOrder.DESC)


def group_entries(entries: Iterable[TaggedEntry], group_by: GroupBy) -> Dict[str, EntryGroup]:
    """Partition an already sorted sequence; buckets keep first-seen order."""
    key_of = GROUP_KEYS[group_by]
    groups: Dict[str, EntryGroup] = {}
    for entry in entries:
        key = key_of(entry)
        if key not in groups:
            groups[key] = EntryGroup(key=key)
        groups[key].add(entry)
    return groups


@dataclass
class _SourceScan:
    """Outcome of scanning one alias directory."""
    user_id: str
    alias_name: str
    entries: List[TaggedEntry] = field(default_factory=list)
    files: int = 0
    failures: List[SourceFailure] = field(default_factory=list)
    ok: bool = True


@dataclass
class _Collection:
    entries: List[TaggedEntry]
    failures: List[SourceFailure]
    total_users: int
    processed_users: int
    total_files: int


class Aggregator:
    """
    Canonical log aggregator.

    Partial failures (missing alias directory, unreadable file, timed out
    share) are attached to the result; only a query that resolves zero users
    or zero aliases, or a malformed query, raises.
    """

    def __init__(
        self,
        registry: AliasRegistry,
        discovery: Optional[FileDiscovery] = None,
        parser: Optional[LogParser] = None,
        classifier: Optional[ErrorClassifier] = None,
        cache: Optional[ResultCache] = None,
        max_workers: Optional[int] = None,
        read_timeout: Optional[float] = None,
        config_manager: Optional[ConfigManager] = None,
    ):
        cfg = config_manager or default_config
        settings = cfg.get_aggregation_config()

        self.registry = registry
        self.discovery = discovery or FileDiscovery(config_manager=cfg)
        self.parser = parser or LogParser()
        self.classifier = classifier or ErrorClassifier(config_manager=cfg)
        self.cache = cache if cache is not None else ResultCache()
        self.max_workers = int(max_workers or settings.get("max_workers", 4))
        self.read_timeout = float(read_timeout or settings.get("read_timeout", 30.0))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def aggregate(self, query: AggregationQuery) -> AggregationResult:
        """
        Run (or fetch from cache) one aggregation.

        Raises:
            ValidationError: negative limit or offset
            ResolutionError: no users or aliases resolved
        """
        if query.limit < 0 or query.offset < 0:
            raise ValidationError("limit and offset must be non-negative")

        canonical = query.canonical()
        key = canonical.cache_key()

        if query.use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Returning cached aggregation result")
                return cached

        logger.info(
            f"Aggregating logs: users={len(canonical.user_ids) or 'ALL'} "
            f"aliases={len(canonical.alias_names) or 'ALL'} date={canonical.date.isoformat()}"
        )

        collection = self._collect(canonical)
        total_before = len(collection.entries)

        wanted = set(canonical.log_levels)
        filtered = [e for e in collection.entries if e.level in wanted]
        ordered = sort_entries(filtered, canonical.sort_by, canonical.sort_order)

        groups = None
        if canonical.group_by is not None and canonical.include_metadata:
            groups = group_entries(ordered, canonical.group_by)

        page = ordered[canonical.offset:canonical.offset + canonical.limit]

        result = AggregationResult(
            entries=page,
            pagination=Pagination(total=len(ordered), limit=canonical.limit, offset=canonical.offset),
            total_before_filter=total_before,
            total_after_filter=len(ordered),
            total_users=collection.total_users,
            processed_users=collection.processed_users,
            total_files=collection.total_files,
            groups=groups,
            failures=collection.failures,
            include_metadata=canonical.include_metadata,
        )

        if query.use_cache:
            self.cache.set(key, result)

        logger.info(
            f"Aggregation complete: {len(page)} of {len(ordered)} entries returned, "
            f"{len(collection.failures)} sources failed"
        )
        return result

    def search(
        self,
        text: str,
        user_ids: Sequence[str] = (),
        target_date: Optional[date] = None,
        case_sensitive: bool = False,
        max_results: int = 200,
    ) -> List[TaggedEntry]:
        """
        Find entries containing ``text`` across users.

        Ranked by number of occurrences in the line, then newest first.
        """
        if not text:
            raise ValidationError("Search text must not be empty")

        canonical = AggregationQuery(user_ids=tuple(user_ids), date=target_date).canonical()
        collection = self._collect(canonical)

        needle = text if case_sensitive else text.lower()
        scored: List[Tuple[int, TaggedEntry]] = []
        for entry in collection.entries:
            haystack = entry.entry.raw_text if case_sensitive else entry.entry.raw_text.lower()
            hits = haystack.count(needle)
            if hits:
                scored.append((hits, entry))

        scored.sort(key=lambda item: (item[0], item[1].effective_timestamp), reverse=True)
        logger.info(f"Search for '{text}' matched {len(scored)} entries")
        return [entry for _, entry in scored[:max_results]]

    def user_statistics(self, user_ids: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Alias and access counts per user."""
        targets = list(user_ids) if user_ids else self.registry.list_all_users()
        users = []
        total_aliases = 0
        active = 0
        for user_id in targets:
            aliases = self.registry.get_aliases_for_user(user_id)
            total_aliases += len(aliases)
            if aliases:
                active += 1
            users.append({
                "userId": user_id,
                "aliasCount": len(aliases),
                "aliases": [a.to_dict() for a in aliases],
                "isActive": bool(aliases),
                "totalAccess": sum(a.access_count for a in aliases),
            })

        return {
            "users": users,
            "overview": {
                "totalUsers": len(targets),
                "totalAliases": total_aliases,
                "activeUsers": active,
                "inactiveUsers": len(targets) - active,
            },
        }

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate_on(self, event: WatchEvent) -> None:
        """Broadcaster subscriber: drop cached results when files change."""
        if event.type in CHANGE_EVENTS:
            self.clear_cache()

    # ------------------------------------------------------------------
    # Resolution and scanning
    # ------------------------------------------------------------------

    def _resolve_users(self, canonical: AggregationQuery) -> Tuple[List[str], List[SourceFailure]]:
        known = self.registry.list_all_users()
        if not canonical.user_ids:
            return list(known), []

        by_lower = {user_id.lower(): user_id for user_id in known}
        users, failures = [], []
        for requested in canonical.user_ids:
            if requested in by_lower:
                users.append(by_lower[requested])
            else:
                failures.append(SourceFailure(
                    kind="not_found",
                    message=f"Unknown user: {requested}",
                    user_id=requested,
                ))
        return users, failures

    def _resolve_aliases(
        self,
        users: List[str],
        canonical: AggregationQuery,
    ) -> Tuple[List[AliasDescriptor], List[SourceFailure]]:
        wanted = set(canonical.alias_names)
        sources, failures = [], []
        for user_id in users:
            aliases = self.registry.get_aliases_for_user(user_id)
            if not aliases:
                failures.append(SourceFailure(
                    kind="not_found",
                    message=f"No aliases found for user {user_id}",
                    user_id=user_id,
                ))
                continue
            if wanted:
                aliases = [a for a in aliases if a.alias_name.lower() in wanted]
                if not aliases:
                    logger.debug(f"No matching aliases for user {user_id}")
                    continue
            sources.extend(aliases)
        return sources, failures

    def _collect(self, canonical: AggregationQuery) -> _Collection:
        users, failures = self._resolve_users(canonical)
        if not users:
            raise ResolutionError("No users found for query")

        sources, alias_failures = self._resolve_aliases(users, canonical)
        failures.extend(alias_failures)
        if not sources:
            raise ResolutionError("No aliases found for query")

        scans = self._scan_all(sources, canonical.date)

        entries: List[TaggedEntry] = []
        processed = set()
        total_files = 0
        for scan in scans:
            entries.extend(scan.entries)
            failures.extend(scan.failures)
            total_files += scan.files
            if scan.ok:
                processed.add(scan.user_id)

        for failure in failures:
            logger.warning(f"Source failed ({failure.kind}): {failure.message}")

        return _Collection(
            entries=entries,
            failures=failures,
            total_users=len(canonical.user_ids) if canonical.user_ids else len(users),
            processed_users=len(processed),
            total_files=total_files,
        )

    def _scan_all(self, sources: List[AliasDescriptor], target_date: date) -> List[_SourceScan]:
        """
        Scan every alias on the worker pool.

        Every alias shares one deadline, ``read_timeout`` after submission.
        Sources still running or still queued when it passes are reported as
        timed out, so a hung share cannot hold up aliases queued behind it.
        Results come back in source order.
        """
        outcomes: Dict[int, _SourceScan] = {}

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="aliaslog-scan")
        try:
            pending = {
                executor.submit(self._scan_alias, alias, target_date): i
                for i, alias in enumerate(sources)
            }
            deadline = time.monotonic() + self.read_timeout
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, _ = wait(list(pending), timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    outcomes[index] = self._outcome(sources[index], future)

            for future, index in pending.items():
                future.cancel()
                error = SourceTimeoutError(
                    f"Timed out after {self.read_timeout}s reading {sources[index].base_path}",
                    path=sources[index].base_path,
                )
                outcomes[index] = self._failed_scan(sources[index], error.kind, str(error))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return [outcomes[i] for i in range(len(sources))]

    def _outcome(self, alias: AliasDescriptor, future) -> _SourceScan:
        try:
            return future.result()
        except LogFileError as e:
            return self._failed_scan(alias, e.kind, str(e))
        except OSError as e:
            return self._failed_scan(alias, "error", f"{alias.base_path}: {e}")

    @staticmethod
    def _failed_scan(alias: AliasDescriptor, kind: str, message: str) -> _SourceScan:
        scan = _SourceScan(user_id=alias.user_id, alias_name=alias.alias_name, ok=False)
        scan.failures.append(SourceFailure(
            kind=kind,
            message=message,
            user_id=alias.user_id,
            alias_name=alias.alias_name,
            path=alias.base_path,
        ))
        return scan

    def _scan_alias(self, alias: AliasDescriptor, target_date: date) -> _SourceScan:
        files = self.discovery.find_files(alias.base_path, target_date)
        scan = _SourceScan(user_id=alias.user_id, alias_name=alias.alias_name)

        for log_file in files:
            try:
                content = self.discovery.read_text(log_file.path)
            except LogFileError as e:
                scan.failures.append(SourceFailure(
                    kind=e.kind,
                    message=str(e),
                    user_id=alias.user_id,
                    alias_name=alias.alias_name,
                    path=log_file.path,
                ))
                continue

            parsed = self.parser.parse(content, log_file.name, reference_date=log_file.modified_date)
            for entry in self.classifier.annotate(parsed):
                scan.entries.append(TaggedEntry(
                    entry=entry,
                    user_id=alias.user_id,
                    alias_name=alias.alias_name,
                    file_name=log_file.name,
                    file_path=log_file.path,
                    file_modified_at=log_file.modified_at,
                ))
            scan.files += 1

        logger.debug(
            f"Scanned {alias.user_id}/{alias.alias_name}: {scan.files} files, {len(scan.entries)} entries"
        )
        return scan
