"""
Per-directory polling watcher with debounce and bounded retry.

State machine per directory:

    UNWATCHED -> STARTING -> READY
    READY <-> RETRYING            (subscribe/poll errors)
    RETRYING -> FAILED            (max_retries reached)
    any -> UNWATCHED              (stop)

A directory that is unreachable at start produces one PATH_NOT_FOUND event
and is not retried until watch() is called again. Changes are debounced per
(directory, file name); each quiet period triggers one reprocessing pass on
a worker pool, and the classifier outcome is published to the broadcaster.
"""

import logging
import os
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

from .alias_registry import AliasRegistry
from .error_classifier import ErrorClassifier
from .events import Broadcaster, EventType, WatchEvent
from .file_discovery import FileDiscovery, check_reachable
from .log_parser import LogParser
from .models import AliasDescriptor, WatchState, WatchStatus
from ..utils.config import ConfigManager, config as default_config
from ..utils.exceptions import LogFileError, WatcherTransientError

logger = logging.getLogger(__name__)


@dataclass
class WatcherSettings:
    """Tuning knobs; they trade responsiveness against network load."""
    poll_interval: float = 5.0
    stability_threshold: float = 2.0
    debounce_seconds: float = 3.0
    max_retries: int = 3
    retry_delay: float = 10.0
    reachability_timeout: float = 5.0
    reprocess_workers: int = 2

    @classmethod
    def from_config(cls, config_manager: Optional[ConfigManager] = None) -> "WatcherSettings":
        section = (config_manager or default_config).get_watcher_config()
        defaults = cls()
        return cls(
            poll_interval=float(section.get("poll_interval", defaults.poll_interval)),
            stability_threshold=float(section.get("stability_threshold", defaults.stability_threshold)),
            debounce_seconds=float(section.get("debounce_seconds", defaults.debounce_seconds)),
            max_retries=int(section.get("max_retries", defaults.max_retries)),
            retry_delay=float(section.get("retry_delay", defaults.retry_delay)),
            reachability_timeout=float(section.get("reachability_timeout", defaults.reachability_timeout)),
            reprocess_workers=int(section.get("reprocess_workers", defaults.reprocess_workers)),
        )


def polling_observer_factory(settings: WatcherSettings) -> PollingObserver:
    # Native inotify/FSEvents do not see changes made on network shares.
    return PollingObserver(timeout=settings.poll_interval)


class _DirectoryHandler(FileSystemEventHandler):
    """Forwards watchdog events for one directory to the Watcher."""

    def __init__(self, watcher: "Watcher", state: WatchState):
        super().__init__()
        self._watcher = watcher
        self._state = state

    def on_created(self, event):
        if not event.is_directory:
            self._watcher._on_file_event(self._state, "created", event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._watcher._on_file_event(self._state, "modified", event.src_path)

    def on_deleted(self, event):
        if event.is_directory:
            if os.path.abspath(event.src_path) == self._state.directory:
                self._watcher._handle_error(
                    self._state, WatcherTransientError(f"Watched directory removed: {event.src_path}")
                )
            return
        self._watcher._on_file_event(self._state, "deleted", event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        self._watcher._on_file_event(self._state, "deleted", event.src_path)
        if os.path.dirname(os.path.abspath(event.dest_path)) == self._state.directory:
            self._watcher._on_file_event(self._state, "created", event.dest_path)


class Watcher:
    """
    Watches alias directories and publishes change notifications.

    Collaborators are injected: the broadcaster receives events, the
    observer factory creates one subscription per directory and the timer
    factory creates debounce/retry timers (``threading.Timer`` signature).
    """

    def __init__(
        self,
        broadcaster: Broadcaster,
        discovery: Optional[FileDiscovery] = None,
        parser: Optional[LogParser] = None,
        classifier: Optional[ErrorClassifier] = None,
        settings: Optional[WatcherSettings] = None,
        observer_factory: Optional[Callable[[WatcherSettings], Any]] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.time,
        config_manager: Optional[ConfigManager] = None,
    ):
        cfg = config_manager or default_config
        self.broadcaster = broadcaster
        self.settings = settings or WatcherSettings.from_config(cfg)
        self.discovery = discovery or FileDiscovery(config_manager=cfg)
        self.parser = parser or LogParser()
        self.classifier = classifier or ErrorClassifier(config_manager=cfg)

        self._observer_factory = observer_factory or polling_observer_factory
        self._timer_factory = timer_factory
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.reprocess_workers, thread_name_prefix="aliaslog-reprocess"
        )
        self._clock = clock
        self._states: Dict[str, WatchState] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def watch(self, directory: str, context: Optional[Dict[str, Any]] = None) -> WatchStatus:
        """
        Start watching ``directory``.

        A directory that is already STARTING, READY or RETRYING keeps its
        existing subscription. A FAILED or unreachable one starts fresh.
        """
        key = os.path.abspath(directory)
        replaced = None
        with self._lock:
            existing = self._states.get(key)
            if existing is not None and existing.status in (
                WatchStatus.STARTING, WatchStatus.READY, WatchStatus.RETRYING
            ):
                return existing.status
            if existing is not None:
                replaced = self._teardown(existing)
            state = WatchState(directory=key, context=dict(context or {}), status=WatchStatus.STARTING)
            self._states[key] = state

        self._close_observer(replaced)

        if not check_reachable(key, self.settings.reachability_timeout):
            with self._lock:
                if not self._is_current(state):
                    return state.status
                state.status = WatchStatus.UNWATCHED
                state.last_error = f"Path not found: {key}"
            logger.warning(f"Path not found or unreadable, not watching: {key}")
            self._emit(EventType.PATH_NOT_FOUND, state, {"path": key})
            return state.status

        self._subscribe(state)
        return state.status

    def watch_alias(self, alias: AliasDescriptor) -> WatchStatus:
        return self.watch(alias.base_path, {"userId": alias.user_id, "aliasName": alias.alias_name})

    def watch_registry(self, registry: AliasRegistry) -> Dict[str, WatchStatus]:
        """Watch every alias directory known to the registry."""
        statuses = {}
        for user_id in registry.list_all_users():
            for alias in registry.get_aliases_for_user(user_id):
                statuses[f"{user_id}/{alias.alias_name}"] = self.watch_alias(alias)
        return statuses

    def restart(self, directory: str) -> WatchStatus:
        """Explicit restart; the only way out of FAILED or path-not-found."""
        key = os.path.abspath(directory)
        with self._lock:
            existing = self._states.get(key)
            context = dict(existing.context) if existing else {}
        self.stop(key)
        return self.watch(key, context)

    def stop(self, directory: Optional[str] = None) -> None:
        """
        Stop one directory (or all when ``directory`` is None).

        Cancels pending debounce and retry timers and closes the
        subscription. Idempotent; safe for directories never watched.
        """
        with self._lock:
            if directory is None:
                targets = list(self._states.values())
                self._states.clear()
            else:
                state = self._states.pop(os.path.abspath(directory), None)
                targets = [state] if state else []

            observers = [self._teardown(state) for state in targets]

        for observer in observers:
            self._close_observer(observer)
        for state in targets:
            logger.info(f"Stopped watching {state.directory}")

    def close(self) -> None:
        """Stop all watchers and release the reprocessing pool."""
        self.stop()
        self._executor.shutdown(wait=False)

    def get_state(self, directory: str) -> Optional[WatchState]:
        with self._lock:
            return self._states.get(os.path.abspath(directory))

    def status(self) -> Dict[str, Any]:
        with self._lock:
            states = [state.to_dict() for state in self._states.values()]
        return {
            "watching": any(s["status"] == WatchStatus.READY.value for s in states),
            "watcherCount": len(states),
            "watchers": states,
        }

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    def _is_current(self, state: WatchState) -> bool:
        return state.active and self._states.get(state.directory) is state

    def _start_timer(self, delay: float, callback: Callable[[Any], None]):
        """Start a timer whose callback receives the timer itself."""
        holder = {}
        timer = self._timer_factory(delay, lambda: callback(holder["timer"]))
        holder["timer"] = timer
        timer.daemon = True
        timer.start()
        return timer

    @staticmethod
    def _detach_observer(state: WatchState):
        observer, state.observer = state.observer, None
        return observer

    def _close_observer(self, observer) -> None:
        if observer is None:
            return
        try:
            observer.stop()
            if observer is not threading.current_thread() and observer.is_alive():
                observer.join(timeout=self.settings.poll_interval + 1)
        except Exception as e:
            logger.warning(f"Error closing directory observer: {e}")

    def _teardown(self, state: WatchState):
        """Deactivate a state and cancel its timers; returns its observer to close."""
        state.active = False
        if state.retry_timer is not None:
            state.retry_timer.cancel()
            state.retry_timer = None
        for timer in state.debounce_timers.values():
            timer.cancel()
        state.debounce_timers.clear()
        state.status = WatchStatus.UNWATCHED
        return self._detach_observer(state)

    def _subscribe(self, state: WatchState) -> None:
        with self._lock:
            if not self._is_current(state):
                return
            previous = self._detach_observer(state)
        self._close_observer(previous)

        observer = None
        try:
            observer = self._observer_factory(self.settings)
            observer.schedule(_DirectoryHandler(self, state), state.directory, recursive=False)
            observer.start()
        except Exception as e:
            self._close_observer(observer)
            self._handle_error(state, e)
            return

        with self._lock:
            if self._is_current(state):
                state.observer = observer
                state.status = WatchStatus.READY
                state.retry_count = 0
                state.last_error = None
                observer = None

        if observer is not None:
            # stopped while the subscription was being created
            self._close_observer(observer)
            return
        logger.info(f"Watcher ready for {state.directory}")

    def _handle_error(self, state: WatchState, error: Exception) -> None:
        failed = False
        with self._lock:
            if not self._is_current(state):
                return
            previous = self._detach_observer(state)
            state.retry_count += 1
            state.last_error = str(error)
            if state.retry_count < self.settings.max_retries:
                state.status = WatchStatus.RETRYING
                state.retry_timer = self._start_timer(
                    self.settings.retry_delay, lambda timer: self._retry(state, timer)
                )
            else:
                state.status = WatchStatus.FAILED
                failed = True
            attempt = state.retry_count

        self._close_observer(previous)

        if failed:
            logger.error(f"Max retries reached for {state.directory}, giving up: {error}")
            self._emit(EventType.WATCHER_FAILED, state, {
                "error": str(error),
                "retryCount": attempt,
                "message": "Max retry attempts reached",
            })
        else:
            logger.warning(
                f"Watcher error for {state.directory} (attempt {attempt}/{self.settings.max_retries}): {error}"
            )

    def _retry(self, state: WatchState, timer) -> None:
        with self._lock:
            if not self._is_current(state) or state.retry_timer is not timer:
                return
            state.retry_timer = None
        logger.info(f"Retrying watcher for {state.directory}")
        self._subscribe(state)

    # ------------------------------------------------------------------
    # File events, debounce and reprocessing
    # ------------------------------------------------------------------

    def _is_log_file(self, name: str) -> bool:
        return not name.startswith(".") and Path(name).suffix.lower() in self.discovery.extensions

    def _on_file_event(self, state: WatchState, kind: str, path: str) -> None:
        name = os.path.basename(path)
        if not self._is_log_file(name):
            return

        with self._lock:
            if not self._is_current(state):
                return
            if kind == "deleted":
                pending = state.debounce_timers.pop(name, None)
                if pending is not None:
                    pending.cancel()

        if kind == "created":
            logger.info(f"New log file added: {name} in {state.directory}")
            self._emit(EventType.FILE_ADDED, state, {"fileName": name, "path": path})
            self._schedule_reprocess(state, name, path, self.settings.debounce_seconds)
        elif kind == "modified":
            logger.debug(f"Log file updated: {name} in {state.directory}")
            self._schedule_reprocess(state, name, path, self.settings.debounce_seconds)
        elif kind == "deleted":
            logger.info(f"Log file deleted: {name} in {state.directory}")
            self._emit(EventType.FILE_REMOVED, state, {"fileName": name, "path": path})

    def _schedule_reprocess(self, state: WatchState, name: str, path: str, delay: float) -> None:
        """(Re)start the quiet-period timer for one file; rapid writes coalesce."""
        with self._lock:
            if not self._is_current(state):
                return
            existing = state.debounce_timers.pop(name, None)
            if existing is not None:
                existing.cancel()
            state.debounce_timers[name] = self._start_timer(
                delay, lambda timer: self._debounce_fired(state, name, path, timer)
            )

    def _debounce_fired(self, state: WatchState, name: str, path: str, timer) -> None:
        with self._lock:
            if not self._is_current(state) or state.debounce_timers.get(name) is not timer:
                return

        try:
            age = self._clock() - os.stat(path).st_mtime
        except FileNotFoundError:
            with self._lock:
                if state.debounce_timers.get(name) is timer:
                    del state.debounce_timers[name]
            return
        except OSError as e:
            logger.warning(f"Cannot stat {path}, reprocessing anyway: {e}")
            age = self.settings.stability_threshold

        if age < self.settings.stability_threshold:
            # still being written
            self._schedule_reprocess(state, name, path, self.settings.stability_threshold - age)
            return

        with self._lock:
            if not self._is_current(state) or state.debounce_timers.get(name) is not timer:
                return
            del state.debounce_timers[name]

        self._emit(EventType.FILE_CHANGED, state, {"fileName": name, "path": path})
        future = self._executor.submit(self._reprocess, state, name, path)
        future.add_done_callback(self._log_reprocess_failure)

    @staticmethod
    def _log_reprocess_failure(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Reprocessing failed: {error}")

    def _reprocess(self, state: WatchState, name: str, path: str) -> None:
        """Parse and classify one changed file, then publish the outcome."""
        try:
            content = self.discovery.read_text(path)
            reference_date = datetime.fromtimestamp(os.stat(path).st_mtime).date()
        except (LogFileError, OSError) as e:
            logger.warning(f"Reprocessing skipped for {path}: {e}")
            return

        entries = self.parser.parse(content, name, reference_date=reference_date)
        report = self.classifier.classify(entries)

        with self._lock:
            if not self._is_current(state):
                return

        self._emit(EventType.ANALYSIS_UPDATE, state, {
            "fileName": name,
            "path": path,
            "totalEntries": len(entries),
            "errorCount": report.total_issues,
            "status": report.overall_status.value,
            "mostCommonIssue": report.most_common_category,
            "categories": {category: len(items) for category, items in report.categories.items()},
        })

        if report.has_critical:
            criticals = report.critical_entries
            self._emit(EventType.CRITICAL_ERROR_ALERT, state, {
                "fileName": name,
                "path": path,
                "criticalCount": len(criticals),
                "sample": criticals[0].message[:100],
            })

    def _emit(self, event_type: EventType, state: WatchState, payload: Dict[str, Any]) -> None:
        event = WatchEvent(
            type=event_type,
            context={"directory": state.directory, **state.context},
            payload=payload,
        )
        try:
            self.broadcaster.publish(event)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type.value}: {e}")
