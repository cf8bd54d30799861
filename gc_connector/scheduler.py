#!/usr/bin/env python3
"""
Periodic tasks for GC Log Connector

Each periodic concern (config reload, conductor scan, TTL sweep, backstop
rescan) runs in its own daemon thread with its own stop handle. The body
is wrapped so that an exception never ends the schedule: the next run is
the retry.
"""

import logging
import threading
import traceback
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs a callable at a fixed period in a background thread.

    Example:
        >>> task = PeriodicTask('conductor', conductor.run_once, period_seconds=5)
        >>> task.start()
        >>> # ... runs every 5 seconds ...
        >>> task.stop()

    Attributes:
        name (str): Task name used in logs and as thread name
        period_seconds (float): Delay between the end of one run and the next
        initial_delay (float): Delay before the first run (defaults to the period)
    """

    def __init__(self, name: str, func: Callable[[], None], period_seconds: float,
                 initial_delay: float = None):
        if period_seconds <= 0:
            raise ValueError(f"period_seconds must be positive, got {period_seconds}")

        self.name = name
        self.func = func
        self.period_seconds = period_seconds
        self.initial_delay = period_seconds if initial_delay is None else initial_delay

        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the task thread. Safe to call multiple times."""
        if self.running:
            logger.warning(f"{self.name}: already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"{self.name}: started (period: {self.period_seconds}s)")

    def stop(self, timeout: float = 5):
        """Signal the task to stop and wait for the current run to finish."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning(f"{self.name}: did not stop within {timeout}s")
        else:
            logger.info(f"{self.name}: stopped")
        self._thread = None

    def run_once(self):
        """Run the body once, logging (never raising) any error."""
        logger.debug(f"{self.name}: started run")
        try:
            self.func()
        except Exception as e:
            logger.error(f"{self.name}: run failed: {e}")
            logger.debug(traceback.format_exc())
        finally:
            logger.debug(f"{self.name}: completed run")

    def _loop(self):
        if self._stop_event.wait(self.initial_delay):
            return

        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.period_seconds):
                break
