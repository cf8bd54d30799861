#!/usr/bin/env python3
"""
Upload Target for GC Log Connector
Object-storage destination and the chunked multipart upload protocol

An UploadTarget is an immutable snapshot of everything needed to upload:
bucket, region, credentials, key prefix and the tenant/job identifiers
used to namespace keys. The process-wide active target lives behind an
ActiveTarget reference that is always swapped as a whole.
"""

import logging
import mimetypes
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
import boto3.session
from botocore.exceptions import BotoCoreError, ClientError

from gc_connector.utils import format_bytes, to_base64

logger = logging.getLogger(__name__)

MULTIPART_CHUNK_SIZE = 5 * 1024**2  # 5 MB per part

ENCODED_CONTENT_TYPES = {
    'gzip': 'application/gzip',
    'bzip2': 'application/x-bzip2',
    'xz': 'application/x-xz',
}


class UploadError(Exception):
    """
    Raised when the multipart sequence fails.

    By the time this is raised the remote multipart upload (if one was
    initiated) has already been aborted.
    """
    pass


@dataclass(frozen=True)
class UploadTarget:
    """
    Immutable object-storage destination.

    Example:
        >>> target = UploadTarget(
        ...     bucket='gc-logs', region='us-east-1',
        ...     access_key='AKIA...', secret_key='...',
        ...     key_prefix='connector/', tenant_id='42', job_id='group-1'
        ... )
        >>> target.build_key('jvm-1', 'abc.log.gz')
        'connector/NDI=/group-1/jvm-1/abc.log.gz'
        >>> target.upload(Path('/data/upload/jvm-1/abc.log.gz'), 'jvm-1')

    Attributes:
        bucket (str): Bucket name
        region (str): Region id (e.g. 'us-east-1', 'cn-north-1')
        access_key (str): Access key id
        secret_key (str): Secret access key
        key_prefix (str): Normalized key prefix ('' or 'a/b/')
        tenant_id (str): Account id owning the uploads
        job_id (str): Analyze group id
        s3_client: Boto3 S3 client bound to these credentials (created on
            first use when not given)
    """
    bucket: str
    region: str
    access_key: str
    secret_key: str = field(repr=False)
    key_prefix: str
    tenant_id: str
    job_id: str
    s3_client: Any = field(default=None, compare=False, repr=False)
    _client_lock: Any = field(default_factory=threading.Lock, init=False, compare=False, repr=False)

    @property
    def client(self):
        """S3 client, created on first use so that comparing targets is cheap."""
        with self._client_lock:
            if self.s3_client is None:
                object.__setattr__(self, 's3_client', self._create_client())
            return self.s3_client

    def _create_client(self):
        """Create an S3 client for this target's region and credentials."""
        client_kwargs = {'region_name': self.region}
        if self.access_key and self.secret_key:
            client_kwargs['aws_access_key_id'] = self.access_key
            client_kwargs['aws_secret_access_key'] = self.secret_key

        session = boto3.session.Session()

        # Check for LocalStack (testing)
        endpoint_url = os.getenv('AWS_ENDPOINT_URL')

        if endpoint_url:
            logger.info(f"Using custom endpoint: {endpoint_url}")
            client_kwargs['endpoint_url'] = endpoint_url
        elif self.region.startswith('cn-'):
            # AWS China uses different endpoints
            logger.info(f"Using AWS China endpoint for region: {self.region}")
            client_kwargs['endpoint_url'] = f'https://s3.{self.region}.amazonaws.com.cn'

        return session.client('s3', **client_kwargs)

    def build_key(self, jvm_id: str, file_name: str) -> str:
        """
        Build the remote object key.

        Format: {prefix}{base64(tenant_id)}/{job_id}/{jvm_id}/{file_name}
        """
        return f"{self.key_prefix}{to_base64(self.tenant_id)}/{self.job_id}/{jvm_id}/{file_name}"

    def upload(self, file_path: Path, jvm_id: str) -> str:
        """
        Upload a file with the three-step multipart protocol.

        1. Initiate the multipart upload (with content type when known)
        2. Upload sequential 5 MB parts from offset 0 to the file length
        3. Complete the upload with the ordered part ETags

        Any failure after initiation aborts the multipart upload.

        Args:
            file_path: Local artifact to upload
            jvm_id: JVM the artifact belongs to

        Returns:
            str: Remote key the file was stored under

        Raises:
            UploadError: If any step of the sequence fails
        """
        file_path = Path(file_path)
        key = self.build_key(jvm_id, file_path.name)
        upload_id = None

        try:
            file_size = file_path.stat().st_size
            logger.debug(f"S3: Uploading {file_path.name} ({format_bytes(file_size)}) to {key}")

            # Step 1: Initiate
            response = self.client.create_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                **self._content_headers(file_path)
            )
            upload_id = response['UploadId']

            # Step 2: Upload parts (last part can be less than 5 MB)
            parts = []
            position = 0
            part_number = 1
            with open(file_path, 'rb') as f:
                while position < file_size:
                    chunk = f.read(min(MULTIPART_CHUNK_SIZE, file_size - position))
                    if not chunk:
                        raise UploadError(
                            f"{file_path.name} shrank during upload "
                            f"({position} of {file_size} bytes read)"
                        )

                    part = self.client.upload_part(
                        Bucket=self.bucket,
                        Key=key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=chunk
                    )
                    parts.append({'ETag': part['ETag'], 'PartNumber': part_number})

                    position += len(chunk)
                    part_number += 1

            # Step 3: Complete
            self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception as e:
            if upload_id is not None:
                self._abort(key, upload_id)
            if isinstance(e, UploadError):
                raise
            raise UploadError(f"Upload of {file_path.name} to s3://{self.bucket}/{key} failed: {e}") from e

        logger.info(f"SUCCESS: {file_path.name} -> s3://{self.bucket}/{key} ({len(parts)} parts)")
        return key

    def _abort(self, key: str, upload_id: str):
        """Abort a multipart upload so the store releases its parts."""
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id
            )
            logger.warning(f"Aborted multipart upload {upload_id} for {key}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to abort multipart upload {upload_id} for {key}: {e}")

    @staticmethod
    def _content_headers(file_path: Path) -> Dict[str, str]:
        """
        Content type for the stored object.

        Compressed files are stored as opaque archives. No Content-Encoding
        is set, so downloads return the gzip bytes unchanged.
        """
        content_type, encoding = mimetypes.guess_type(file_path.name)
        if encoding:
            content_type = ENCODED_CONTENT_TYPES.get(encoding, 'application/octet-stream')
        return {'ContentType': content_type} if content_type else {}


class ActiveTarget:
    """
    Process-wide reference to the current UploadTarget.

    Writers replace the whole value; readers take one snapshot per
    operation and never see a partially-built target.
    """

    def __init__(self, target: Optional[UploadTarget] = None):
        self._target = target
        self._lock = threading.Lock()

    def get(self) -> Optional[UploadTarget]:
        with self._lock:
            return self._target

    def set(self, target: Optional[UploadTarget]) -> Optional[UploadTarget]:
        """Swap in a new target; returns the previous one."""
        with self._lock:
            previous = self._target
            self._target = target
        return previous

    def clear(self) -> Optional[UploadTarget]:
        return self.set(None)
