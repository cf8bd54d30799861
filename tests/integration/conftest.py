# tests/integration/conftest.py
"""
Fixtures for integration tests
The control plane and the object store are mocked; everything else
(filesystem, threads, watchdog) is real.
"""

from unittest.mock import Mock, patch

import pytest
import yaml

from gc_connector.remote_config import RemoteJobConfig


S3_SOURCE = RemoteJobConfig(
    job_id='group-1',
    source_type='S3',
    source_config={
        's3.bucket': 'gc-logs',
        's3.region.id': 'us-east-1',
        's3.access_key': 'AKIATEST',
        's3.secret_key': 'secret',
        's3.prefix': 'connector',
    }
)


@pytest.fixture
def layout(temp_dir):
    """Log and data directories plus a config file pointing at them"""
    log_dir = temp_dir / 'logs'
    data_dir = temp_dir / 'data'
    log_dir.mkdir()
    data_dir.mkdir()

    config = {
        'jvms': [{'jvm_id': 'jvm-1', 'path': str(log_dir)}],
        'control_plane': {'host': 'api.example.com', 'token': 'abc', 'https': False},
        'data_dir': str(data_dir),
        'analyze_id': 'group-1',
        'version': '1.0.0',
        'periods': {
            'reload_config_seconds': 0.5,
            'sync_files_seconds': 0.2,
            'rescan_seconds': 0.2,
            'ttl_sweep_seconds': 60,
        },
        'upload': {'pool_size': 2},
    }
    config_path = temp_dir / 'config.yaml'
    with open(config_path, 'w') as f:
        yaml.dump(config, f)

    return {
        'log_dir': log_dir,
        'upload_dir': data_dir / 'upload',
        'config_path': str(config_path),
    }


@pytest.fixture
def remote():
    """Mocked control-plane client publishing an S3 destination"""
    client = Mock()
    client.get_latest_version.return_value = '1.0.0'
    client.get_account_id.return_value = '42'
    client.get_job_config.return_value = S3_SOURCE
    with patch('gc_connector.main.RemoteConfigClient', return_value=client):
        yield client


@pytest.fixture
def s3():
    """Mocked boto3 S3 client used by every UploadTarget"""
    client = Mock()
    client.create_multipart_upload.return_value = {'UploadId': 'upload-1'}
    client.upload_part.side_effect = lambda **kw: {'ETag': f"etag-{kw['PartNumber']}"}
    with patch('gc_connector.upload_target.boto3.session.Session') as session:
        session.return_value.client.return_value = client
        client.session = session
        yield client
