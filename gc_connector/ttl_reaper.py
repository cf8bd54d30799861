#!/usr/bin/env python3
"""
TTL Reaper for GC Log Connector
Deletes delivered (zero-length) artifacts once their retention expires
"""

import logging
import time
from pathlib import Path
from typing import List

from gc_connector.sync_engine import MARKER_SUFFIX, TEMP_SUFFIX, marker_path

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
DEFAULT_TTL_DAYS = 14
# Floor for abandoned temp files so a short TTL never races a staging write
MIN_TEMP_FILE_AGE_SECONDS = 3600


class TTLReaper:
    """
    Bounds staging disk usage.

    A file is deleted only when it is zero-length, has no claim marker and
    was last modified more than ``ttl_seconds`` ago. Truncation after
    delivery refreshes the modification time, so the TTL counts from
    delivery.

    Hidden temp files left by an interrupted staging write are deleted
    once they are older than the TTL (and at least an hour old).

    Attributes:
        upload_dir (Path): Root of the staging tree
        jvm_ids (List[str]): JVMs whose staging directories are swept
        ttl_seconds (float): Retention after delivery
    """

    def __init__(self, upload_dir: Path, jvm_ids: List[str],
                 ttl_seconds: float = DEFAULT_TTL_DAYS * SECONDS_PER_DAY):
        self.upload_dir = Path(upload_dir)
        self.jvm_ids = list(jvm_ids)
        self.ttl_seconds = ttl_seconds

    def run_once(self):
        logger.debug("TTL process started.")
        for jvm_id in self.jvm_ids:
            try:
                self.reap(jvm_id)
            except Exception as e:
                logger.error(f"TTL {jvm_id}: sweep failed: {e}")
        logger.debug("TTL process finished.")

    def reap(self, jvm_id: str, now: float = None) -> int:
        """
        Sweep one JVM's staging directory.

        Returns:
            int: Number of files deleted
        """
        staging = self.upload_dir / jvm_id
        if not staging.exists():
            return 0

        now = time.time() if now is None else now
        deleted = 0

        for path in staging.iterdir():
            if not path.is_file() or path.name.endswith(MARKER_SUFFIX):
                continue

            try:
                if self._is_temp_file(path):
                    if now - path.stat().st_mtime > max(self.ttl_seconds, MIN_TEMP_FILE_AGE_SECONDS):
                        logger.warning(f"TTL: deleting abandoned temp file {path.name}")
                        path.unlink(missing_ok=True)
                        deleted += 1
                    continue

                stat = path.stat()
                if stat.st_size != 0 or marker_path(path).exists():
                    continue

                if stat.st_mtime > 0 and now - stat.st_mtime > self.ttl_seconds:
                    logger.debug(f"TTL: deleting {path}")
                    path.unlink(missing_ok=True)
                    deleted += 1
            except OSError as e:
                logger.warning(f"TTL: cannot check {path.name}: {e}")

        if deleted:
            logger.info(f"TTL {jvm_id}: deleted {deleted} expired files")
        return deleted

    @staticmethod
    def _is_temp_file(path: Path) -> bool:
        return path.name.startswith('.') and path.name.endswith(TEMP_SUFFIX)
