"""Test the directory watcher state machine, debounce and notifications."""

import threading
import time

import pytest
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileModifiedEvent

from aliaslog.core.error_classifier import ErrorClassifier
from aliaslog.core.events import EventType
from aliaslog.core.file_discovery import FileDiscovery
from aliaslog.core.models import AliasDescriptor, WatchStatus
from aliaslog.core.watcher import Watcher, WatcherSettings

class Clock:
    def __init__(self, now=None):
        self.now = now if now is not None else time.time()

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(time.time() + 100)


@pytest.fixture
def make_watcher(broadcaster, timers, executor, clock, config_manager):
    def _make(observer_factory):
        return Watcher(
            broadcaster,
            discovery=FileDiscovery(config_manager=config_manager),
            classifier=ErrorClassifier(config_manager=config_manager),
            settings=WatcherSettings(max_retries=3, debounce_seconds=3.0, stability_threshold=2.0),
            observer_factory=observer_factory,
            timer_factory=timers,
            executor=executor,
            clock=clock,
            config_manager=config_manager,
        )

    return _make


@pytest.fixture
def watcher(make_watcher, observers):
    return make_watcher(observers)


def test_watch_ready(watcher, observers, tmp_path):
    assert watcher.watch(str(tmp_path)) is WatchStatus.READY

    observer = observers.last
    assert observer.started
    assert observer.handlers[0][1] == str(tmp_path)
    assert watcher.get_state(str(tmp_path)).retry_count == 0


def test_watch_twice_keeps_subscription(watcher, observers, tmp_path):
    watcher.watch(str(tmp_path))
    assert watcher.watch(str(tmp_path)) is WatchStatus.READY
    assert len(observers.created) == 1


def test_watch_during_subscription_sees_starting(make_watcher, failing_observers, tmp_path):
    """A second watch() arriving mid-subscription joins the one in flight."""
    nested = []

    class ReentrantFactory(failing_observers):
        def __call__(self, settings):
            if not nested:
                nested.append(watcher.watch(str(tmp_path)))
            return super().__call__(settings)

    factory = ReentrantFactory()
    watcher = make_watcher(factory)

    assert watcher.watch(str(tmp_path)) is WatchStatus.READY
    assert nested == [WatchStatus.STARTING]
    assert len(factory.created) == 1


def test_concurrent_watch_creates_one_subscription(watcher, observers, tmp_path):
    """Racing watch() calls leave a single observer, and stop() reaches it."""
    barrier = threading.Barrier(8)

    def start():
        barrier.wait()
        watcher.watch(str(tmp_path))

    threads = [threading.Thread(target=start) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(observers.created) == 1
    watcher.stop()
    assert all(o.stopped for o in observers.created)


def test_rewatch_after_failure_closes_replaced_state(make_watcher, failing_observers, timers, tmp_path):
    observers = failing_observers(failures=3)
    watcher = make_watcher(observers)
    watcher.watch(str(tmp_path))
    timers.fire_all()
    timers.fire_all()
    failed = watcher.get_state(str(tmp_path))

    assert watcher.watch(str(tmp_path)) is WatchStatus.READY
    assert failed.active is False
    assert watcher.get_state(str(tmp_path)) is not failed


def test_unreachable_path_emits_one_event_and_no_retry(watcher, broadcaster, observers, timers, tmp_path):
    """A missing directory is reported once and never retried on its own."""
    missing = tmp_path / "missing"

    assert watcher.watch(str(missing)) is WatchStatus.UNWATCHED

    events = broadcaster.of_type(EventType.PATH_NOT_FOUND)
    assert len(events) == 1
    assert events[0].payload["path"] == str(missing)
    assert observers.created == []
    assert timers.created == []
    assert watcher.get_state(str(missing)).retry_count == 0

    # creating the directory later does not start a watch without restart
    missing.mkdir()
    timers.fire_all()
    assert watcher.get_state(str(missing)).status is WatchStatus.UNWATCHED

    assert watcher.restart(str(missing)) is WatchStatus.READY


def test_three_failures_end_in_one_failed_event(make_watcher, failing_observers, broadcaster, timers, tmp_path):
    """max_retries consecutive subscribe failures give exactly one WATCHER_FAILED."""
    observers = failing_observers(failures=3)
    watcher = make_watcher(observers)

    assert watcher.watch(str(tmp_path)) is WatchStatus.RETRYING
    assert timers.pending[0].interval == 10.0

    timers.fire_all()
    assert watcher.get_state(str(tmp_path)).status is WatchStatus.RETRYING

    timers.fire_all()
    state = watcher.get_state(str(tmp_path))
    assert state.status is WatchStatus.FAILED
    assert state.retry_count == 3

    failed = broadcaster.of_type(EventType.WATCHER_FAILED)
    assert len(failed) == 1
    assert failed[0].payload["retryCount"] == 3
    assert timers.pending == []
    assert len(observers.created) == 3

    timers.fire_all()
    assert len(broadcaster.of_type(EventType.WATCHER_FAILED)) == 1


def test_retry_success_resets_count(make_watcher, failing_observers, timers, tmp_path):
    watcher = make_watcher(failing_observers(failures=1))

    assert watcher.watch(str(tmp_path)) is WatchStatus.RETRYING
    timers.fire_all()

    state = watcher.get_state(str(tmp_path))
    assert state.status is WatchStatus.READY
    assert state.retry_count == 0
    assert state.last_error is None


def test_failed_watch_can_be_restarted(make_watcher, failing_observers, timers, tmp_path):
    observers = failing_observers(failures=3)
    watcher = make_watcher(observers)
    watcher.watch(str(tmp_path))
    timers.fire_all()
    timers.fire_all()

    assert watcher.watch(str(tmp_path)) is WatchStatus.READY


def test_rapid_changes_are_debounced(watcher, observers, broadcaster, timers, tmp_path, write_log, old_mtime):
    """Several modifications inside the quiet period produce one reprocess."""
    path = write_log(tmp_path, "app.log", ["[2024-05-10 10:00:00] ERROR connection refused"], mtime=old_mtime)
    watcher.watch(str(tmp_path))
    handler = observers.last.handler

    for _ in range(3):
        handler.on_modified(FileModifiedEvent(str(path)))

    assert len(timers.pending) == 1
    assert timers.pending[0].interval == 3.0

    timers.fire_all()

    assert len(broadcaster.of_type(EventType.FILE_CHANGED)) == 1
    updates = broadcaster.of_type(EventType.ANALYSIS_UPDATE)
    assert len(updates) == 1
    payload = updates[0].payload
    assert payload["fileName"] == "app.log"
    assert payload["totalEntries"] == 1
    assert payload["mostCommonIssue"] == "Network Issues"
    assert payload["status"] == "NEEDS_ATTENTION"
    assert broadcaster.of_type(EventType.CRITICAL_ERROR_ALERT) == []


def test_unstable_file_waits_for_stability(watcher, observers, broadcaster, timers, clock, tmp_path, write_log):
    path = write_log(tmp_path, "app.log", ["INFO writing"])
    clock.now = path.stat().st_mtime + 0.5
    watcher.watch(str(tmp_path))

    observers.last.handler.on_modified(FileModifiedEvent(str(path)))
    timers.fire_all()

    assert broadcaster.of_type(EventType.FILE_CHANGED) == []
    assert len(timers.pending) == 1
    assert timers.pending[0].interval == pytest.approx(1.5)

    clock.now += 5
    timers.fire_all()
    assert len(broadcaster.of_type(EventType.FILE_CHANGED)) == 1


def test_new_file_emits_added_then_analysis(watcher, observers, broadcaster, timers, tmp_path, write_log, old_mtime):
    path = write_log(tmp_path, "new.log", ["CRITICAL disk crash imminent"], mtime=old_mtime)
    watcher.watch_alias(AliasDescriptor("alice", "web", str(tmp_path)))

    observers.last.handler.on_created(FileCreatedEvent(str(path)))
    added = broadcaster.of_type(EventType.FILE_ADDED)
    assert len(added) == 1
    assert added[0].context == {"directory": str(tmp_path), "userId": "alice", "aliasName": "web"}

    timers.fire_all()

    alerts = broadcaster.of_type(EventType.CRITICAL_ERROR_ALERT)
    assert len(alerts) == 1
    assert alerts[0].payload["criticalCount"] == 1
    assert alerts[0].payload["sample"] == "CRITICAL disk crash imminent"


def test_delete_cancels_pending_reprocess(watcher, observers, broadcaster, timers, tmp_path, write_log, old_mtime):
    path = write_log(tmp_path, "app.log", ["INFO ok"], mtime=old_mtime)
    watcher.watch(str(tmp_path))
    handler = observers.last.handler

    handler.on_modified(FileModifiedEvent(str(path)))
    pending = timers.pending[0]
    handler.on_deleted(FileDeletedEvent(str(path)))

    assert pending.cancelled
    assert len(broadcaster.of_type(EventType.FILE_REMOVED)) == 1
    assert broadcaster.of_type(EventType.FILE_CHANGED) == []


def test_ignores_hidden_and_unsupported_files(watcher, observers, timers, tmp_path):
    watcher.watch(str(tmp_path))
    handler = observers.last.handler

    handler.on_modified(FileModifiedEvent(str(tmp_path / ".hidden.log")))
    handler.on_modified(FileModifiedEvent(str(tmp_path / "image.png")))

    assert timers.created == []


def test_stop_cancels_timers_and_is_idempotent(watcher, observers, broadcaster, timers, tmp_path, write_log, old_mtime):
    path = write_log(tmp_path, "app.log", ["ERROR x"], mtime=old_mtime)
    watcher.watch(str(tmp_path))
    observers.last.handler.on_modified(FileModifiedEvent(str(path)))
    pending = timers.pending[0]

    watcher.stop(str(tmp_path))
    watcher.stop(str(tmp_path))
    watcher.stop(str(tmp_path / "never-watched"))

    assert pending.cancelled
    assert observers.last.stopped
    assert watcher.get_state(str(tmp_path)) is None

    # a callback that raced with stop finds no live state
    pending.function()
    assert broadcaster.of_type(EventType.FILE_CHANGED) == []


def test_status_and_close(watcher, tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.mkdir()
    second.mkdir()
    watcher.watch(str(first))
    watcher.watch(str(second))

    status = watcher.status()
    assert status["watching"] is True
    assert status["watcherCount"] == 2

    watcher.close()
    assert watcher.status()["watcherCount"] == 0


def test_watch_registry(watcher, registry, tmp_path):
    registry.add_alias("alice", "web", str(tmp_path))
    registry.add_alias("bob", "gone", str(tmp_path / "gone"))

    statuses = watcher.watch_registry(registry)

    assert statuses == {"alice/web": WatchStatus.READY, "bob/gone": WatchStatus.UNWATCHED}


def test_settings_from_config(config_manager):
    settings = WatcherSettings.from_config(config_manager)

    assert settings.poll_interval == 5.0
    assert settings.debounce_seconds == 3.0
    assert settings.max_retries == 3
    assert settings.retry_delay == 10.0
