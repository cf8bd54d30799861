#!/usr/bin/env python3
"""
Tests for Config Reloader
"""

import functools
from unittest.mock import Mock, patch

import pytest

from gc_connector.config_reloader import ConfigReloader, normalize_prefix
from gc_connector.remote_config import ControlPlaneError, RemoteJobConfig
from gc_connector.upload_target import ActiveTarget, UploadTarget


def s3_job(**props):
    return RemoteJobConfig(job_id='group-1', source_type='S3', source_config=props)


@pytest.fixture
def client():
    client = Mock()
    client.get_account_id.return_value = '42'
    client.get_job_config.return_value = s3_job(**{
        's3.bucket': 'gc-logs',
        's3.region.id': 'eu-west-1',
        's3.access_key': 'AKIA',
        's3.secret_key': 'secret',
        's3.prefix': '/connector',
    })
    client.get_internal_settings.return_value = {
        's3_bucket': 'internal-bucket',
        's3_region': 'us-west-2',
        's3_access_key': 'AKIAINT',
        's3_secret_key': 'int-secret',
        's3_base_path': 'managed/',
    }
    return client


@pytest.fixture
def active():
    return ActiveTarget()


@pytest.fixture
def reloader(client, active):
    factory = functools.partial(UploadTarget, s3_client=Mock())
    return ConfigReloader(client, 'group-1', active, target_factory=factory)


def existing_target():
    return UploadTarget(
        bucket='old', region='us-east-1', access_key='a', secret_key='s',
        key_prefix='', tenant_id='42', job_id='group-1', s3_client=Mock()
    )


@pytest.mark.parametrize("raw,expected", [
    (None, ''),
    ('', ''),
    ('/', ''),
    ('logs', 'logs/'),
    ('/logs/gc', 'logs/gc/'),
    ('logs//', 'logs/'),
])
def test_normalize_prefix(raw, expected):
    assert normalize_prefix(raw) == expected


def test_s3_source_builds_target(reloader, active):
    reloader.reload()

    target = active.get()
    assert target.bucket == 'gc-logs'
    assert target.region == 'eu-west-1'
    assert target.access_key == 'AKIA'
    assert target.secret_key == 'secret'
    assert target.key_prefix == 'connector/'
    assert target.tenant_id == '42'
    assert target.job_id == 'group-1'


def test_s3_source_defaults(reloader, client, active):
    """Region defaults to us-east-1, prefix to empty"""
    client.get_job_config.return_value = s3_job(**{'s3.bucket': 'gc-logs'})

    reloader.reload()

    target = active.get()
    assert target.region == 'us-east-1'
    assert target.key_prefix == ''
    assert target.access_key == ''


def test_internal_source_uses_settings(reloader, client, active):
    client.get_job_config.return_value = RemoteJobConfig('group-1', 'INTERNAL', {})

    reloader.reload()

    target = active.get()
    assert target.bucket == 'internal-bucket'
    assert target.region == 'us-west-2'
    assert target.key_prefix == 'managed/'
    assert target.tenant_id == '42'


def test_lowercase_source_type(reloader, client, active):
    client.get_job_config.return_value = RemoteJobConfig('group-1', 'internal', {})
    reloader.reload()
    assert active.get().bucket == 'internal-bucket'


def test_none_source_clears_target(reloader, client, active):
    active.set(existing_target())
    client.get_job_config.return_value = RemoteJobConfig('group-1', 'NONE', {})

    reloader.reload()

    assert active.get() is None


@pytest.mark.parametrize("source_type", ['GCS', 'AZURE'])
def test_unsupported_source_clears_target(reloader, client, active, source_type):
    active.set(existing_target())
    client.get_job_config.return_value = RemoteJobConfig('group-1', source_type, {})

    reloader.reload()

    assert active.get() is None


def test_missing_job_keeps_target(reloader, client, active):
    previous = existing_target()
    active.set(previous)
    client.get_job_config.return_value = None

    reloader.reload()

    assert active.get() is previous


def test_empty_source_type_keeps_target(reloader, client, active):
    previous = existing_target()
    active.set(previous)
    client.get_job_config.return_value = RemoteJobConfig('group-1', '', {})

    reloader.reload()

    assert active.get() is previous


def test_control_plane_error_leaves_target(reloader, client, active):
    previous = existing_target()
    active.set(previous)
    client.get_account_id.side_effect = ControlPlaneError('down')

    with pytest.raises(ControlPlaneError):
        reloader.reload()

    assert active.get() is previous


def test_unchanged_config_keeps_same_object(reloader, active):
    reloader.reload()
    first = active.get()

    reloader.reload()

    assert active.get() is first


def test_changed_config_swaps_target(reloader, client, active):
    reloader.reload()
    first = active.get()

    client.get_job_config.return_value = s3_job(**{'s3.bucket': 'new-bucket'})
    reloader.reload()

    assert active.get() is not first
    assert active.get().bucket == 'new-bucket'


def test_check_version_warns_on_mismatch(reloader, client, caplog):
    client.get_latest_version.return_value = '2.0.0'

    with caplog.at_level('WARNING'):
        reloader.check_version('1.0.0')

    assert 'Latest connector version is 2.0.0' in caplog.text


def test_check_version_quiet_when_current(reloader, client, caplog):
    client.get_latest_version.return_value = '1.0.0'

    with caplog.at_level('WARNING'):
        reloader.check_version('1.0.0')

    assert caplog.text == ''


def test_check_version_never_raises(reloader, client):
    client.get_latest_version.side_effect = ControlPlaneError('down')
    reloader.check_version('1.0.0')


def test_reload_does_not_create_clients(client, active):
    """Periodic reloads only compare settings; no boto3 session per cycle"""
    reloader = ConfigReloader(client, 'group-1', active)

    with patch('gc_connector.upload_target.boto3.session.Session') as mock_session:
        for _ in range(3):
            reloader.reload()

    mock_session.assert_not_called()
    assert active.get().bucket == 'gc-logs'
