#!/usr/bin/env python3
"""
Sync Engine for GC Log Connector
Stages rotated GC log files as content-addressed gzip artifacts

A staged artifact is named ``<sha1-of-uncompressed-content>.log.gz``, so
staging is idempotent: identical content always maps to the same name and
an existing name is never rewritten. No separate "already uploaded"
ledger is needed.

Staging layout:
    <data_dir>/upload/<jvm_id>/<hash>.log.gz             staged artifact
    <data_dir>/upload/<jvm_id>/<hash>.log.gz.progress    claim marker
"""

import gzip
import hashlib
import logging
import os
import re
import shutil
import threading
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import List, Optional

from gc_connector.utils import format_bytes

logger = logging.getLogger(__name__)

STAGED_SUFFIX = '.log.gz'
MARKER_SUFFIX = '.progress'
TEMP_SUFFIX = '.tmp'

ROTATED_LOG_PATTERN = re.compile(r'^.*\.\d+(\.gz)?$')
# Uptime stamp ("12.345:"), optionally preceded by a date stamp
# ("2017-03-28T10:15:30.123+0000: 12.345:")
TIMESTAMP_PATTERN = re.compile(r'^[ \t]*(?:\d{4}-\d{2}-\d{2}T\S*?:[ \t]*)?\d+\.\d+:')
TIMESTAMP_FIND_LIMIT = 100

DEFAULT_CACHE_SIZE = 10000
HASH_READ_CHUNK_SIZE = 1024**2


def marker_path(artifact: Path) -> Path:
    """Claim marker path for a staged artifact."""
    return artifact.with_name(artifact.name + MARKER_SUFFIX)


def is_staged_artifact(path: Path) -> bool:
    """True for artifact names (not markers, temp or hidden files)."""
    name = path.name
    return name.endswith(STAGED_SUFFIX) and not name.startswith('.')


def is_rotated_log(name: str) -> bool:
    """True if the name carries a rotation suffix (``.<n>`` or ``.<n>.gz``)."""
    return ROTATED_LOG_PATTERN.match(name) is not None


def extension_matches(name: str, extension: str) -> bool:
    """
    Check a file name against the rotation convention.

    The name must contain the extension token and either end with it,
    end with it plus '.gz', or carry a rotation suffix.

    Examples:
        >>> extension_matches('gc.log', '.log')
        True
        >>> extension_matches('gc.log.3', '.log')
        True
        >>> extension_matches('gc.log.gz', '.log')
        True
        >>> extension_matches('app.txt', '.log')
        False
    """
    if extension not in name:
        return False
    return (name.endswith(extension)
            or name.endswith(extension + '.gz')
            or is_rotated_log(name))


def _open_source(path: Path):
    """Open a source file for reading its uncompressed bytes."""
    if path.name.endswith('.gz'):
        return gzip.open(path, 'rb')
    return open(path, 'rb')


def content_hash(path: Path) -> str:
    """SHA-1 hex digest of the file's uncompressed content."""
    sha1 = hashlib.sha1()
    with _open_source(path) as f:
        for chunk in iter(lambda: f.read(HASH_READ_CHUNK_SIZE), b''):
            sha1.update(chunk)
    return sha1.hexdigest()


def looks_timestamped(path: Path, limit: int = TIMESTAMP_FIND_LIMIT) -> bool:
    """
    Check whether a log carries usable timestamps.

    Reads at most ``limit`` lines from the front of the file (decompressing
    ``.gz`` files) and returns True as soon as one line starts with a
    timestamp.
    """
    with _open_source(path) as raw:
        for count, line in enumerate(raw):
            if count >= limit:
                break
            if TIMESTAMP_PATTERN.match(line.decode('utf-8', errors='replace')):
                return True
    return False


class SeenFileCache:
    """
    Bounded LRU map of source file -> last staged modification time.

    Safe for concurrent use from several watcher threads.
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_SIZE):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            if key not in self._entries:
                return None
            self._entries.move_to_end(key)
            return self._entries[key]

    def put(self, key: str, mtime_ns: int):
        with self._lock:
            self._entries[key] = mtime_ns
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SyncEngine:
    """
    Stages eligible log files into per-JVM upload directories.

    Example:
        >>> engine = SyncEngine(Path('/var/lib/gc-connector/upload'), extension='.log')
        >>> engine.sync(Path('/var/log/app'), 'jvm-1', trigger=Path('/var/log/app/gc.log'))
        2

    Attributes:
        upload_dir (Path): Root of the staging tree
        extension (str): Rotated-log extension token
        seen (SeenFileCache): Modification times of already staged files
    """

    def __init__(self, upload_dir: Path, extension: str = '.log',
                 cache_size: int = DEFAULT_CACHE_SIZE):
        self.upload_dir = Path(upload_dir)
        self.extension = extension
        self.seen = SeenFileCache(cache_size)

    def staging_dir(self, jvm_id: str) -> Path:
        """Staging directory for one JVM (created if missing)."""
        directory = self.upload_dir / jvm_id
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def list_candidates(self, directory: Path) -> List[Path]:
        """Files directly inside ``directory`` that match the rotation convention."""
        return sorted(
            p for p in Path(directory).iterdir()
            if p.is_file() and extension_matches(p.name, self.extension)
        )

    def sync(self, directory: Path, jvm_id: str, trigger: Optional[Path] = None) -> int:
        """
        Stage every matching file except the one that triggered the pass.

        Per-file failures are logged and do not abort the pass.

        Args:
            directory: Watched log directory
            jvm_id: JVM the directory belongs to
            trigger: File whose event started this pass (excluded)

        Returns:
            int: Number of new artifacts written
        """
        excluded = Path(trigger).name if trigger is not None else None
        candidates = [p for p in self.list_candidates(directory) if p.name != excluded]
        return self._stage_all(candidates, jvm_id)

    def rescan(self, directory: Path, jvm_id: str) -> int:
        """
        Backstop pass for lost events.

        Stages every matching file except the most recently modified one,
        which is the file the JVM is still writing.
        """
        candidates = []
        for path in self.list_candidates(directory):
            try:
                candidates.append((path.stat().st_mtime_ns, path))
            except OSError as e:
                logger.debug(f"Cannot stat {path}: {e}")

        if len(candidates) < 2:
            return 0

        candidates.sort()
        return self._stage_all([path for _, path in candidates[:-1]], jvm_id)

    def _stage_all(self, paths: List[Path], jvm_id: str) -> int:
        staged = 0
        for path in paths:
            logger.debug(f"Checking {path.name} for possible sync.")
            try:
                if self.stage_file(path, jvm_id) is not None:
                    staged += 1
            except Exception as e:
                logger.error(f"File Sync: failed to stage {path}: {e}")
        return staged

    def stage_file(self, path: Path, jvm_id: str) -> Optional[Path]:
        """
        Stage one file if its content is not staged yet.

        Returns:
            Path of the newly written artifact, or None if nothing was written
        """
        path = Path(path)
        key = str(path.resolve())
        mtime_ns = path.stat().st_mtime_ns

        cached = self.seen.get(key)
        if cached is not None and mtime_ns != 0 and cached == mtime_ns:
            logger.debug(f"Skipping {path.name}, as its [lastModified={mtime_ns}] didn't change.")
            return None

        digest = content_hash(path)
        staging = self.staging_dir(jvm_id)
        target = staging / f"{digest}{STAGED_SUFFIX}"

        written = None
        if target.exists():
            logger.debug(f"File Sync: {target.name} already exists, {mtime_ns}.")
        else:
            logger.debug(f"File Sync: Copying {path.name} to {target.name}")
            if self._write_artifact(path, target):
                written = target
                logger.info(
                    f"Staged {path.name} -> {jvm_id}/{target.name} "
                    f"({format_bytes(target.stat().st_size)} compressed)"
                )
            else:
                logger.debug(f"File Sync: {target.name} was staged by a concurrent pass.")

        self.seen.put(key, mtime_ns)
        return written

    @staticmethod
    def _write_artifact(source: Path, target: Path) -> bool:
        """
        Gzip ``source`` into a temp file and publish it as ``target``.

        Publishing is a hard link, which fails if ``target`` exists, so an
        artifact that was already delivered (truncated) is never rewritten.

        Returns:
            bool: True if this call created ``target``
        """
        temp = target.with_name(f".{target.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")
        try:
            with _open_source(source) as fin, gzip.open(temp, 'wb') as fout:
                shutil.copyfileobj(fin, fout, HASH_READ_CHUNK_SIZE)
            try:
                os.link(temp, target)
            except FileExistsError:
                return False
            return True
        finally:
            temp.unlink(missing_ok=True)
