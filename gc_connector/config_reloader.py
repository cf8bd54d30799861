#!/usr/bin/env python3
"""
Config Reloader for GC Log Connector
Keeps the active UploadTarget in step with the control plane

Each reload fetches the account id and the job's source configuration,
classifies the source type and either swaps in a freshly built
UploadTarget or clears it (uploads pause). A missing or malformed job
record leaves the previous target in place.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from gc_connector.remote_config import RemoteConfigClient, RemoteJobConfig
from gc_connector.upload_target import ActiveTarget, UploadTarget

logger = logging.getLogger(__name__)

DEFAULT_S3_REGION = 'us-east-1'


class SourceType(Enum):
    """Destination kinds a job can declare."""
    NONE = 'NONE'
    INTERNAL = 'INTERNAL'
    S3 = 'S3'
    GCS = 'GCS'  # Declared by the control plane, not supported here


SUPPORTED_SOURCE_TYPES = (SourceType.INTERNAL, SourceType.S3)


def normalize_prefix(prefix: Optional[str]) -> str:
    """
    Normalize a key prefix.

    Strips leading '/', ensures exactly one trailing '/' when non-empty.

    Examples:
        >>> normalize_prefix('/logs/gc')
        'logs/gc/'
        >>> normalize_prefix('logs//')
        'logs/'
        >>> normalize_prefix('/')
        ''
        >>> normalize_prefix(None)
        ''
    """
    if not prefix:
        return ''
    prefix = prefix.lstrip('/').rstrip('/')
    return f"{prefix}/" if prefix else ''


class ConfigReloader:
    """
    Builds UploadTargets from remote job configuration.

    Example:
        >>> active = ActiveTarget()
        >>> reloader = ConfigReloader(client, 'group-1', active)
        >>> reloader.reload()
        >>> active.get()  # UploadTarget or None

    Attributes:
        client (RemoteConfigClient): Control-plane accessor
        analyze_id (str): Job (analyze group) id
        active_target (ActiveTarget): Shared reference updated by reload()
    """

    def __init__(self, client: RemoteConfigClient, analyze_id: str,
                 active_target: ActiveTarget,
                 target_factory: Callable[..., UploadTarget] = UploadTarget):
        self.client = client
        self.analyze_id = analyze_id
        self.active_target = active_target
        self.target_factory = target_factory

    def check_version(self, current_version: str):
        """Warn if a newer connector version is published. Never raises."""
        try:
            latest = self.client.get_latest_version()
        except Exception as e:
            logger.debug(f"Version check failed: {e}")
            return

        if latest and latest != current_version:
            logger.warning(
                f"Latest connector version is {latest}, while you have {current_version}. "
                f"Please consider updating."
            )

    def reload(self):
        """
        Fetch remote configuration and update the active target.

        Raises:
            ControlPlaneError: If the control plane cannot be reached;
                the active target is left untouched
        """
        account_id = self.client.get_account_id()
        job = self.client.get_job_config(self.analyze_id)
        logger.debug(f"Account - {account_id}")

        if job is None:
            logger.error(f"Analyze Group {self.analyze_id}: no usable job record, keeping current target")
            return

        if not job.source_type:
            logger.error(f"Analyze Group {self.analyze_id}: Source Type is empty, keeping current target")
            return

        try:
            source_type = SourceType(job.source_type.upper())
        except ValueError:
            source_type = None

        if source_type == SourceType.NONE:
            logger.info(f"Analyze Group {self.analyze_id} has none Source Type set, uploads paused")
            self._clear()
        elif source_type not in SUPPORTED_SOURCE_TYPES:
            logger.error(
                f"Source Type {job.source_type} is not supported by this version. "
                f"Consider updating."
            )
            self._clear()
        else:
            target = self._build_target(account_id, source_type, job)
            if target == self.active_target.get():
                logger.debug("Upload target unchanged")
            else:
                self.active_target.set(target)
                logger.info(
                    f"Upload target set: s3://{target.bucket}/{target.key_prefix} "
                    f"({target.region}, source: {source_type.value})"
                )

    def _clear(self):
        previous = self.active_target.clear()
        if previous is not None:
            logger.info("Upload target cleared")

    def _build_target(self, account_id: str, source_type: SourceType,
                      job: RemoteJobConfig) -> UploadTarget:
        if source_type == SourceType.INTERNAL:
            settings = self.client.get_internal_settings()
            return self.target_factory(
                bucket=str(settings.get('s3_bucket') or ''),
                region=str(settings.get('s3_region') or DEFAULT_S3_REGION),
                access_key=str(settings.get('s3_access_key') or ''),
                secret_key=str(settings.get('s3_secret_key') or ''),
                key_prefix=normalize_prefix(settings.get('s3_base_path')),
                tenant_id=account_id,
                job_id=self.analyze_id
            )

        props = job.source_config
        return self.target_factory(
            bucket=props.get('s3.bucket', ''),
            region=props.get('s3.region.id', DEFAULT_S3_REGION) or DEFAULT_S3_REGION,
            access_key=props.get('s3.access_key', ''),
            secret_key=props.get('s3.secret_key', ''),
            key_prefix=normalize_prefix(props.get('s3.prefix', '')),
            tenant_id=account_id,
            job_id=self.analyze_id
        )
