#!/usr/bin/env python3
"""
Directory Watcher for GC Log Connector
Turns filesystem events into sync passes

Uses the watchdog library to receive create/modify events for one JVM's
log directory. Events may be dropped, duplicated or coalesced by the OS;
correctness only depends on *some* event arriving soon after a change,
with the periodic rescan as the backstop.
"""

import logging
import os
import threading
import traceback
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from gc_connector.sync_engine import SyncEngine, extension_matches, is_rotated_log

logger = logging.getLogger(__name__)

OBSERVER_CHECK_SECONDS = 1


class DirectoryWatcher:
    """
    Watches one log directory and triggers SyncEngine passes.

    A create/modify event on file F runs ``sync(directory, jvm_id, trigger=F)``,
    which stages every other matching file. Events on files that already
    carry a rotation suffix do not trigger a pass: the next write to the
    live log will.

    Example:
        >>> watcher = DirectoryWatcher('jvm-1', '/var/log/app', engine)
        >>> watcher.start()
        >>> # ... runs in background ...
        >>> watcher.stop()

    Attributes:
        jvm_id (str): JVM the directory belongs to
        directory (Path): Directory being watched
        recursive (bool): Whether subdirectory events are observed
    """

    def __init__(self, jvm_id: str, directory: str, sync_engine: SyncEngine,
                 recursive: bool = True, observer_factory: Callable = Observer):
        self.jvm_id = jvm_id
        self.directory = Path(directory)
        self.sync_engine = sync_engine
        self.recursive = recursive
        self.observer_factory = observer_factory

        self.handler = LogFileHandler(self._on_file_event)

        # One sync pass at a time per directory
        self._sync_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """
        Start the watcher thread.

        Note:
            Safe to call multiple times - will not start if already running
        """
        if self.running:
            logger.warning(f"Watcher for {self.jvm_id} already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"watcher-{self.jvm_id}",
            daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5):
        """Stop watching and wait for the watcher thread to exit."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self):
        """
        Watcher thread body.

        A fatal error is logged and ends the thread; the process keeps
        running and relies on the periodic rescan until restart.
        """
        logger.info(f"Starting directory [{self.directory}] watcher daemon for JVM [{self.jvm_id}].")
        observer = None
        try:
            logger.debug(f"Registering watcher on {self.directory}")
            observer = self.observer_factory()
            observer.schedule(self.handler, str(self.directory), recursive=self.recursive)
            observer.start()

            while not self._stop_event.wait(OBSERVER_CHECK_SECONDS):
                if not observer.is_alive():
                    raise RuntimeError(f"Filesystem observer for {self.directory} exited")

        except Exception as e:
            logger.error(f"Directory watcher for {self.jvm_id} failed: {e}")
            logger.debug(traceback.format_exc())
        finally:
            if observer is not None and observer.is_alive():
                observer.stop()
                observer.join(timeout=2)
            logger.info(f"Stopping directory watcher daemon for JVM [{self.jvm_id}].")

    def _on_file_event(self, file_path: str):
        """
        Called when watchdog reports a create or modify event.

        Note:
            This runs in watchdog's event dispatch thread
        """
        path = Path(file_path)

        if path.name.startswith('.'):
            return

        if not extension_matches(path.name, self.sync_engine.extension):
            logger.debug(f"Directory Watcher: Extension doesn't match for {path.name}")

        if is_rotated_log(path.name):
            logger.debug(f"Directory Watcher: {path.name} is already rotated, waiting for live log event")
            return

        with self._sync_lock:
            try:
                staged = self.sync_engine.sync(self.directory, self.jvm_id, trigger=path)
                if staged:
                    logger.debug(f"Directory Watcher: {staged} new artifacts after event on {path.name}")
            except Exception as e:
                logger.error(f"Sync after event on {path.name} failed: {e}")
                logger.debug(traceback.format_exc())


class LogFileHandler(FileSystemEventHandler):
    """
    Watchdog event handler for log files.

    Forwards file create and modify events to a callback function.
    Ignores directory events.
    """

    def __init__(self, callback: Callable[[str], None]):
        self.callback = callback

    def on_created(self, event):
        if not event.is_directory:
            logger.debug(f"Directory Watcher: Received notify about '{event.src_path}' with kind created")
            self.callback(os.fsdecode(event.src_path))

    def on_modified(self, event):
        if not event.is_directory:
            logger.debug(f"Directory Watcher: Received notify about '{event.src_path}' with kind modified")
            self.callback(os.fsdecode(event.src_path))
