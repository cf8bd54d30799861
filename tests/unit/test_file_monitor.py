#!/usr/bin/env python3
"""
Tests for Directory Watcher
"""

from unittest.mock import Mock

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileModifiedEvent

from gc_connector.file_monitor import DirectoryWatcher, LogFileHandler
from gc_connector.sync_engine import SyncEngine
from tests.helpers import GC_LINES, wait_until


@pytest.fixture
def log_dir(temp_dir):
    directory = temp_dir / 'logs'
    directory.mkdir()
    return directory


@pytest.fixture
def engine(temp_dir):
    return SyncEngine(temp_dir / 'upload', extension='.log')


def test_event_on_live_log_triggers_sync(log_dir, engine):
    engine.sync = Mock(return_value=0)
    watcher = DirectoryWatcher('jvm-1', str(log_dir), engine)

    watcher._on_file_event(str(log_dir / 'gc.log'))

    engine.sync.assert_called_once_with(log_dir, 'jvm-1', trigger=log_dir / 'gc.log')


def test_event_on_rotated_log_is_ignored(log_dir, engine):
    """The next event on the live log picks rotated files up"""
    engine.sync = Mock(return_value=0)
    watcher = DirectoryWatcher('jvm-1', str(log_dir), engine)

    watcher._on_file_event(str(log_dir / 'gc.log.3'))
    watcher._on_file_event(str(log_dir / 'gc.log.3.gz'))

    engine.sync.assert_not_called()


def test_hidden_files_are_ignored(log_dir, engine):
    engine.sync = Mock(return_value=0)
    watcher = DirectoryWatcher('jvm-1', str(log_dir), engine)

    watcher._on_file_event(str(log_dir / '.gc.log.swp'))

    engine.sync.assert_not_called()


def test_sync_error_is_contained(log_dir, engine):
    engine.sync = Mock(side_effect=OSError('disk full'))
    watcher = DirectoryWatcher('jvm-1', str(log_dir), engine)

    watcher._on_file_event(str(log_dir / 'gc.log'))

    engine.sync.assert_called_once()


def test_handler_ignores_directory_events():
    callback = Mock()
    handler = LogFileHandler(callback)

    handler.on_created(DirCreatedEvent('/logs/sub'))
    callback.assert_not_called()

    handler.on_created(FileCreatedEvent('/logs/gc.log'))
    handler.on_modified(FileModifiedEvent('/logs/gc.log'))
    assert callback.call_count == 2
    callback.assert_called_with('/logs/gc.log')


def test_observer_failure_ends_thread(log_dir, engine):
    factory = Mock(side_effect=OSError('inotify limit reached'))
    watcher = DirectoryWatcher('jvm-1', str(log_dir), engine, observer_factory=factory)

    watcher.start()

    assert wait_until(lambda: not watcher.running, timeout=5, description="watcher thread exit")
    watcher.stop()


def test_live_rotation_is_staged(log_dir, engine, temp_dir):
    """Real watchdog: a write to the live log stages the rotated file"""
    (log_dir / 'gc.log.1').write_text(GC_LINES)
    live = log_dir / 'gc.log'
    live.write_text("0.001: start\n")

    watcher = DirectoryWatcher('jvm-1', str(log_dir), engine)
    watcher.start()

    staging = temp_dir / 'upload' / 'jvm-1'

    def staged():
        with open(live, 'a') as f:
            f.write("0.002: [GC]\n")
        return staging.exists() and any(p.name.endswith('.log.gz') for p in staging.iterdir())

    try:
        assert wait_until(staged, timeout=10, interval=0.2, description="rotated log staged")
    finally:
        watcher.stop()

    artifacts = [p for p in staging.iterdir() if p.name.endswith('.log.gz')]
    # Only the rotated file; the live log is the trigger and never staged
    assert len(artifacts) == 1
