#!/usr/bin/env python3
"""
Tests for Remote Config Client
"""

from unittest.mock import Mock

import pytest
import requests

from gc_connector.remote_config import (
    GET_ACCOUNT_ID,
    GET_ANALYZE,
    ControlPlaneError,
    RemoteConfigClient,
    RemoteJobConfig,
    parse_properties,
)


def make_response(body=None, status_error=None, json_error=None):
    response = Mock()
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return RemoteConfigClient('api.example.com', token='tok', timeout=7, session=session)


# ============================================================================
# PROPERTIES PARSING
# ============================================================================

def test_parse_properties():
    text = (
        "# destination\n"
        "s3.bucket=gc-logs\n"
        "\n"
        "! legacy comment\n"
        "s3.region.id : eu-west-1\n"
        "s3.prefix=a/b=c\n"
    )
    assert parse_properties(text) == {
        's3.bucket': 'gc-logs',
        's3.region.id': 'eu-west-1',
        's3.prefix': 'a/b=c',
    }


def test_parse_properties_empty():
    assert parse_properties('') == {}
    assert parse_properties(None) == {}


# ============================================================================
# CALLS
# ============================================================================

def test_call_url_and_params(client, session):
    session.get.return_value = make_response({'result': 'ok'})

    assert client.call(GET_ANALYZE, {'id': 'group-1'}) == 'ok'

    session.get.assert_called_once_with(
        'https://api.example.com/analyse/get',
        params={'token': 'tok', 'id': 'group-1'},
        timeout=7
    )


def test_plain_http(session):
    client = RemoteConfigClient('localhost:8080', token='tok', https=False, session=session)
    session.get.return_value = make_response({'result': 1})

    client.call(GET_ACCOUNT_ID)

    assert session.get.call_args.args[0] == 'http://localhost:8080/user/account/id'


def test_transport_error(client, session):
    session.get.side_effect = requests.ConnectionError('refused')

    with pytest.raises(ControlPlaneError):
        client.call(GET_ACCOUNT_ID)


def test_http_status_error(client, session):
    session.get.return_value = make_response(status_error=requests.HTTPError('503'))

    with pytest.raises(ControlPlaneError):
        client.call(GET_ACCOUNT_ID)


def test_invalid_json(client, session):
    session.get.return_value = make_response(json_error=ValueError('not json'))

    with pytest.raises(ControlPlaneError):
        client.call(GET_ACCOUNT_ID)


def test_missing_result_key(client, session):
    session.get.return_value = make_response({'error': 'nope'})

    with pytest.raises(ControlPlaneError):
        client.call(GET_ACCOUNT_ID)


def test_numeric_account_id_is_string(client, session):
    session.get.return_value = make_response({'result': 42})
    assert client.get_account_id() == '42'


def test_empty_account_id_raises(client, session):
    session.get.return_value = make_response({'result': ''})

    with pytest.raises(ControlPlaneError):
        client.get_account_id()


def test_job_config_parsed(client, session):
    session.get.return_value = make_response({'result': {
        'id': 7,
        'source_type': ' S3 ',
        'source_config': 's3.bucket=gc-logs\ns3.prefix=/gc/',
    }})

    job = client.get_job_config('group-1')

    assert job == RemoteJobConfig(
        job_id='7',
        source_type='S3',
        source_config={'s3.bucket': 'gc-logs', 's3.prefix': '/gc/'}
    )


def test_job_config_missing_id(client, session):
    session.get.return_value = make_response({'result': {'source_type': 'S3'}})
    assert client.get_job_config('group-1') is None


def test_job_config_not_a_mapping(client, session):
    session.get.return_value = make_response({'result': None})
    assert client.get_job_config('group-1') is None


def test_latest_version(client, session):
    session.get.return_value = make_response({'result': '1.2.0'})
    assert client.get_latest_version() == '1.2.0'


def test_internal_settings_must_be_mapping(client, session):
    session.get.return_value = make_response({'result': 'oops'})

    with pytest.raises(ControlPlaneError):
        client.get_internal_settings()


def test_close_closes_session(client, session):
    client.close()
    session.close.assert_called_once()
