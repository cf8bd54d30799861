#!/usr/bin/env python3
"""
Conductor for GC Log Connector
Claims staged artifacts and dispatches them to the upload pool

The claim is the creation of ``<artifact>.progress`` with create-if-absent
semantics. The check (non-empty, no marker) and the creation run in the
single conductor thread, so one artifact is never dispatched twice while
its marker exists.
"""

import logging
import time
from pathlib import Path
from typing import List

from gc_connector.sync_engine import is_staged_artifact, marker_path
from gc_connector.upload_worker import UploadWorkerPool

logger = logging.getLogger(__name__)

DEFAULT_MARKER_STALE_SECONDS = 6 * 3600


class Conductor:
    """
    Periodic scanner of the staging directories.

    Example:
        >>> conductor = Conductor(Path('/data/upload'), ['jvm-1'], pool)
        >>> conductor.run_once()

    Attributes:
        upload_dir (Path): Root of the staging tree
        jvm_ids (List[str]): JVMs whose staging directories are scanned
        pool (UploadWorkerPool): Destination for claimed artifacts
        marker_stale_seconds (float): Age after which a marker with no
            in-process task is treated as orphaned
    """

    def __init__(self, upload_dir: Path, jvm_ids: List[str], pool: UploadWorkerPool,
                 marker_stale_seconds: float = DEFAULT_MARKER_STALE_SECONDS):
        self.upload_dir = Path(upload_dir)
        self.jvm_ids = list(jvm_ids)
        self.pool = pool
        self.marker_stale_seconds = marker_stale_seconds

    def run_once(self):
        """Scan every JVM's staging directory once."""
        logger.debug("Conductor process started.")
        for jvm_id in self.jvm_ids:
            try:
                self.scan(jvm_id)
            except Exception as e:
                logger.error(f"Conductor {jvm_id}: scan failed: {e}")
        logger.debug("Conductor process finished.")

    def scan(self, jvm_id: str) -> int:
        """
        Claim and dispatch every unclaimed, non-empty artifact of one JVM.

        Returns:
            int: Number of artifacts dispatched
        """
        staging = self.upload_dir / jvm_id
        staging.mkdir(parents=True, exist_ok=True)

        dispatched = 0
        for artifact in sorted(staging.iterdir()):
            if not is_staged_artifact(artifact):
                continue

            logger.debug(f"Conductor {jvm_id}: Checking {artifact.name}")
            try:
                if self._claim(artifact):
                    self._dispatch(artifact, jvm_id)
                    dispatched += 1
            except FileNotFoundError:
                # Reaped between listing and claim
                logger.debug(f"Conductor {jvm_id}: {artifact.name} disappeared")
            except Exception as e:
                logger.error(f"Conductor {jvm_id}: failed to dispatch {artifact.name}: {e}")

        if dispatched:
            logger.info(f"Conductor {jvm_id}: dispatched {dispatched} artifacts for upload")
        return dispatched

    def _claim(self, artifact: Path) -> bool:
        """Compare-and-claim: non-empty and no marker, then create the marker."""
        if artifact.stat().st_size == 0:
            return False

        marker = marker_path(artifact)
        if marker.exists() and not self._reclaim_if_orphaned(artifact, marker):
            return False

        try:
            with open(marker, 'x'):
                pass
        except FileExistsError:
            return False
        return True

    def _dispatch(self, artifact: Path, jvm_id: str):
        marker = marker_path(artifact)
        try:
            self.pool.submit(artifact, marker, jvm_id)
        except Exception:
            marker.unlink(missing_ok=True)
            raise

    def _reclaim_if_orphaned(self, artifact: Path, marker: Path) -> bool:
        """
        Remove a marker left behind by a crashed process.

        Returns:
            bool: True if the marker was removed
        """
        if self.pool.is_in_flight(artifact):
            return False

        try:
            age = time.time() - marker.stat().st_mtime
        except FileNotFoundError:
            return True

        if age <= self.marker_stale_seconds:
            return False

        logger.warning(
            f"Reclaiming orphaned marker {marker.name} "
            f"(age: {age / 3600:.1f} h, threshold: {self.marker_stale_seconds / 3600:.1f} h)"
        )
        marker.unlink(missing_ok=True)
        return True
