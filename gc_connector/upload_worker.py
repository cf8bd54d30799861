#!/usr/bin/env python3
"""
Upload Worker Pool for GC Log Connector
Bounded executor running one upload task per claimed artifact

Task outcome:
- uploaded, or skipped (no active target / no timestamps):
  artifact truncated to zero bytes ("delivered, safe to reap"), marker removed
- failed: artifact left intact, marker removed, so the next conductor
  cycle retries the same content from scratch
"""

import logging
import os
import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from gc_connector.sync_engine import looks_timestamped
from gc_connector.upload_target import ActiveTarget

logger = logging.getLogger(__name__)

WORKERS_PER_CPU = 4


def default_pool_size() -> int:
    return (os.cpu_count() or 1) * WORKERS_PER_CPU


class UploadWorkerPool:
    """
    Runs upload tasks against the currently active UploadTarget.

    Example:
        >>> pool = UploadWorkerPool(active_target, max_workers=8)
        >>> pool.submit(Path('/data/upload/jvm-1/abc.log.gz'),
        ...             Path('/data/upload/jvm-1/abc.log.gz.progress'), 'jvm-1')
        >>> pool.shutdown()

    Attributes:
        active_target (ActiveTarget): Shared destination reference
        max_workers (int): Maximum concurrent uploads
    """

    def __init__(self, active_target: ActiveTarget, max_workers: Optional[int] = None):
        self.active_target = active_target
        self.max_workers = max_workers or default_pool_size()

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix='upload'
        )
        self._in_flight = set()
        self._lock = threading.Lock()

        # Statistics
        self.stats = {
            'uploaded': 0,
            'skipped': 0,
            'failed': 0,
        }

        logger.info(f"Upload pool initialized with {self.max_workers} workers")

    def is_in_flight(self, artifact: Path) -> bool:
        """True while a task for this artifact is queued or running."""
        with self._lock:
            return str(artifact) in self._in_flight

    def submit(self, artifact: Path, marker: Path, jvm_id: str) -> Future:
        """
        Queue an upload task for a claimed artifact.

        Raises:
            RuntimeError: If the pool has been shut down
        """
        with self._lock:
            self._in_flight.add(str(artifact))
        try:
            return self._executor.submit(self.process, Path(artifact), Path(marker), jvm_id)
        except RuntimeError:
            with self._lock:
                self._in_flight.discard(str(artifact))
            raise

    def process(self, artifact: Path, marker: Path, jvm_id: str) -> bool:
        """
        Upload one artifact, then truncate it and release its marker.

        Returns:
            bool: True if the artifact was delivered or deliberately skipped,
                False if the upload failed and will be retried
        """
        # Counted once the task is fully done (truncated and released)
        outcome = 'failed'
        try:
            target = self.active_target.get()

            if target is None:
                logger.debug(f"Not uploading {jvm_id}: {artifact.name} (no upload target)")
                outcome = 'skipped'
            elif not looks_timestamped(artifact):
                logger.error(
                    f"Conductor ERROR: Log File {artifact.name} doesn't contain timestamps, "
                    f"can't process it. Consider using -XX:+PrintGCDateStamps flag."
                )
                outcome = 'skipped'
            else:
                logger.debug(f"Uploading {jvm_id}: {artifact.name}")
                target.upload(artifact, jvm_id)
                outcome = 'uploaded'

            self._truncate(artifact)
            return True

        except Exception as e:
            logger.error(f"Upload of {jvm_id}: {artifact.name} failed, will retry next cycle: {e}")
            logger.debug(traceback.format_exc())
            outcome = 'failed'
            return False

        finally:
            self._release(artifact, marker)
            self._record(outcome)

    def shutdown(self, wait: bool = True):
        """Stop accepting tasks; optionally wait for running uploads."""
        self._executor.shutdown(wait=wait)
        logger.info(
            f"Upload pool stopped (uploaded: {self.stats['uploaded']}, "
            f"skipped: {self.stats['skipped']}, failed: {self.stats['failed']})"
        )

    def _truncate(self, artifact: Path):
        """Zero the artifact to mark it delivered."""
        logger.debug(f"Zeroing {artifact.name}")
        try:
            with open(artifact, 'wb'):
                pass
        except OSError as e:
            logger.warning(f"Failed to zero {artifact.name}, it may be uploaded again: {e}")

    def _release(self, artifact: Path, marker: Path):
        try:
            marker.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove marker {marker.name}: {e}")
        with self._lock:
            self._in_flight.discard(str(artifact))

    def _record(self, outcome: str):
        with self._lock:
            self.stats[outcome] += 1
