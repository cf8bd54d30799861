#!/usr/bin/env python3
"""
GC Log Connector - Main Application
Integrates all components for production use

This is the main entry point that coordinates directory watching,
staging, upload dispatch, retention and remote configuration reload.
"""

import signal
import sys
import time
import logging
import traceback
from pathlib import Path

from gc_connector import __version__
from gc_connector.conductor import Conductor
from gc_connector.config_manager import ConfigManager
from gc_connector.config_reloader import ConfigReloader
from gc_connector.file_monitor import DirectoryWatcher
from gc_connector.remote_config import RemoteConfigClient
from gc_connector.scheduler import PeriodicTask
from gc_connector.sync_engine import SyncEngine
from gc_connector.ttl_reaper import SECONDS_PER_DAY, TTLReaper
from gc_connector.upload_target import ActiveTarget
from gc_connector.upload_worker import UploadWorkerPool

logger = logging.getLogger(__name__)

UPLOAD_DIR_NAME = 'upload'


class GCConnector:
    """
    Main system coordinator for the GC log connector.

    Coordinates:
    - Configuration management (config_manager)
    - Remote upload target reload (config_reloader)
    - Directory watching (file_monitor) and staging (sync_engine)
    - Upload dispatch (conductor) and execution (upload_worker)
    - Retention of delivered artifacts (ttl_reaper)

    Architecture:
    1. DirectoryWatcher receives an event -> SyncEngine stages rotated logs
    2. Conductor claims staged artifacts -> UploadWorkerPool uploads them
    3. Delivered artifacts are truncated and later deleted by TTLReaper
    4. ConfigReloader keeps the shared UploadTarget current

    Example:
        >>> connector = GCConnector('/etc/gc-connector/config.yaml')
        >>> connector.start()
        >>> # ... system runs ...
        >>> connector.stop()
    """

    def __init__(self, config_path: str, handle_sighup: bool = True):
        """
        Initialize the connector.

        Loads configuration and initializes all components.
        Does not start any thread - call start() to begin operation.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigValidationError: If config is invalid
        """
        logger.info(f"Initializing GC Log Connector v{__version__}...")

        self.config = ConfigManager(config_path, handle_sighup=handle_sighup)

        self.jvms = self.config.get_jvms()
        jvm_ids = [jvm['jvm_id'] for jvm in self.jvms]

        self.upload_dir = Path(self.config.get('data_dir')) / UPLOAD_DIR_NAME
        self.upload_dir.mkdir(parents=True, exist_ok=True)

        self.client = RemoteConfigClient(
            host=self.config.get('control_plane.host'),
            token=self.config.get('control_plane.token'),
            https=self.config.get('control_plane.https'),
            timeout=self.config.get('control_plane.timeout_seconds')
        )

        self.active_target = ActiveTarget()
        self.reloader = ConfigReloader(self.client, self.config.get('analyze_id'), self.active_target)

        self.sync_engine = SyncEngine(
            self.upload_dir,
            extension=self.config.get('extension'),
            cache_size=self.config.get('upload.seen_cache_size')
        )

        self.pool = UploadWorkerPool(self.active_target, max_workers=self.config.get('upload.pool_size'))

        self.conductor = Conductor(
            self.upload_dir,
            jvm_ids,
            self.pool,
            marker_stale_seconds=self.config.get('upload.marker_stale_seconds')
        )

        self.reaper = TTLReaper(
            self.upload_dir,
            jvm_ids,
            ttl_seconds=self.config.get('upload.ttl_days') * SECONDS_PER_DAY
        )

        self.watchers = [
            DirectoryWatcher(jvm['jvm_id'], jvm['path'], self.sync_engine)
            for jvm in self.jvms
        ]

        self.tasks = [
            PeriodicTask('config-reloader', self.reloader.reload,
                         self.config.get('periods.reload_config_seconds')),
            PeriodicTask('conductor', self.conductor.run_once,
                         self.config.get('periods.sync_files_seconds')),
            PeriodicTask('rescan', self._rescan_all,
                         self.config.get('periods.rescan_seconds'),
                         initial_delay=0),
            PeriodicTask('ttl-reaper', self.reaper.run_once,
                         self.config.get('periods.ttl_sweep_seconds')),
        ]

        self._running = False

        logger.info(f"Upload directory: {self.upload_dir}")
        logger.info(f"Watching {len(self.jvms)} JVMs: {', '.join(jvm_ids)}")
        logger.info("Initialization complete")

    def start(self):
        """
        Start the connector.

        Checks the published version, loads the upload target once, then
        starts watchers and periodic tasks.

        Note:
            Safe to call multiple times - will not start if already running
        """
        if self._running:
            logger.warning("Already running")
            return

        logger.info("Starting GC Log Connector...")

        self.reloader.check_version(self.config.get('version', __version__))

        try:
            self.reloader.reload()
        except Exception as e:
            logger.error(f"Initial configuration load failed, uploads paused until next reload: {e}")

        for watcher in self.watchers:
            watcher.start()

        for task in self.tasks:
            task.start()

        self._running = True
        logger.info("System started successfully")

    def stop(self):
        """
        Stop the connector gracefully.

        Stops periodic tasks and watchers first so nothing new is
        dispatched, then waits for running uploads.
        """
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False

        for task in self.tasks:
            task.stop()

        for watcher in self.watchers:
            watcher.stop()

        self.pool.shutdown(wait=True)
        self.client.close()

        logger.info("Shutdown complete")

    def _rescan_all(self):
        """Backstop pass over every watched directory."""
        for jvm in self.jvms:
            try:
                staged = self.sync_engine.rescan(Path(jvm['path']), jvm['jvm_id'])
                if staged:
                    logger.info(f"Rescan {jvm['jvm_id']}: staged {staged} files missed by the watcher")
            except Exception as e:
                logger.error(f"Rescan {jvm['jvm_id']} failed: {e}")

    def get_statistics(self) -> dict:
        """Snapshot for tests/monitoring."""
        return {
            'uploaded': self.pool.stats['uploaded'],
            'skipped': self.pool.stats['skipped'],
            'failed': self.pool.stats['failed'],
            'upload_enabled': self.active_target.get() is not None,
        }


def signal_handler(signum, frame):
    """
    Handle shutdown signals (SIGTERM, SIGINT).

    Note on SIGHUP:
    - SIGHUP re-validates the config file but does NOT apply changes
    - SIGHUP is handled by ConfigManager, not this handler
    """
    logger.info(f"Received signal {signum}")
    if 'system' in globals():
        system.stop()
    sys.exit(0)


def main():
    """
    Main entry point for GC Log Connector.

    Command-line arguments:
        --config: Path to configuration file
        --test-config: Test configuration and exit
        --log-level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    import argparse

    parser = argparse.ArgumentParser(description=f'GC Log Connector v{__version__}')
    parser.add_argument(
        '--config',
        default='/etc/gc-connector/config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--test-config',
        action='store_true',
        help='Test configuration and exit'
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(name)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if args.test_config:
        try:
            config = ConfigManager(args.config, handle_sighup=False)
            logger.info("Configuration valid!")
            logger.info(f"Analyze group: {config.get('analyze_id')}")
            logger.info(f"Control plane: {config.get('control_plane.host')}")
            logger.info(f"JVMs: {config.get_jvms()}")
            logger.info(f"Artifact TTL: {config.get('upload.ttl_days')} days")
            sys.exit(0)
        except Exception as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    global system

    try:
        logger.info("Starting GC Log Connector.")
        system = GCConnector(args.config)
        system.start()

        logger.info("Running... Press Ctrl+C to stop")
        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        system.stop()
    except Exception as e:
        logger.error(f"FATAL ERROR: {e}")
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
