"""Shared fixtures: config, log directories and fake watcher collaborators."""

import os
import sys
import time
from concurrent.futures import Future
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))

from aliaslog.core.alias_registry import InMemoryAliasRegistry  # noqa: E402
from aliaslog.core.events import InMemoryBroadcaster  # noqa: E402
from aliaslog.utils.config import ConfigManager  # noqa: E402


CONFIG_DIR = ROOT / "config"


@pytest.fixture
def config_manager():
    """ConfigManager pointed at the repository config directory."""
    return ConfigManager(str(CONFIG_DIR))


@pytest.fixture
def write_log():
    """Write a log file and set its modified time (epoch seconds)."""

    def _write(directory, name, lines, mtime=None):
        path = Path(directory) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _write


@pytest.fixture
def registry():
    return InMemoryAliasRegistry()


class RecordingBroadcaster(InMemoryBroadcaster):
    """Broadcaster that keeps every published event."""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, event):
        self.events.append(event)
        super().publish(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.type is event_type]


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


class FakeTimer:
    """threading.Timer stand-in that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fired = True
            self.function()


class ManualTimers:
    """Timer factory recording every timer it creates."""

    def __init__(self):
        self.created = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.created.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def fire_all(self):
        for timer in list(self.pending):
            timer.fire()


@pytest.fixture
def timers():
    return ManualTimers()


class FakeObserver:
    """Observer stand-in; records scheduled handlers and can fail to start."""

    def __init__(self, fail=False):
        self.fail = fail
        self.handlers = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.handlers.append((handler, path))

    def start(self):
        if self.fail:
            raise OSError("subscription refused")
        self.started = True

    def stop(self):
        self.stopped = True

    def is_alive(self):
        return False

    def join(self, timeout=None):
        pass

    @property
    def handler(self):
        return self.handlers[0][0]


class ObserverFactory:
    """Hands out FakeObservers; ``failures`` is how many fail before one succeeds."""

    def __init__(self, failures=0):
        self.failures = failures
        self.created = []

    def __call__(self, settings):
        observer = FakeObserver(fail=len(self.created) < self.failures)
        self.created.append(observer)
        return observer

    @property
    def last(self):
        return self.created[-1]


@pytest.fixture
def observers():
    return ObserverFactory()


@pytest.fixture
def failing_observers():
    """Build an observer factory whose first ``failures`` observers fail to start."""
    return ObserverFactory


class ImmediateExecutor:
    """Executor that runs submitted work inline."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


@pytest.fixture
def executor():
    return ImmediateExecutor()


@pytest.fixture
def old_mtime():
    """A modification time well past any stability threshold."""
    return time.time() - 3600
