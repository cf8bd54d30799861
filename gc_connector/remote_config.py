#!/usr/bin/env python3
"""
Remote Config Client for GC Log Connector
Authenticated read-only access to the control plane

Every call is a GET carrying the ``token`` query parameter; the payload
of interest is nested under the ``result`` key of the JSON response.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

# Control-plane endpoints
GET_LATEST_VERSION = '/connector/version/latest'
GET_ACCOUNT_ID = '/user/account/id'
GET_ANALYZE = '/analyse/get'
GET_INTERNAL_SETTINGS = '/connector/internal/settings'

DEFAULT_TIMEOUT_SECONDS = 30


class ControlPlaneError(Exception):
    """
    Raised when a control-plane call fails.

    Covers transport errors, non-2xx responses, bodies that are not JSON
    and responses without a ``result`` key.
    """
    pass


@dataclass(frozen=True)
class RemoteJobConfig:
    """Job (analyze group) record as published by the control plane."""
    job_id: str
    source_type: str
    source_config: Dict[str, str] = field(default_factory=dict)


def parse_properties(text: str) -> Dict[str, str]:
    """
    Parse properties-style ``key=value`` text.

    Accepts ``=`` or ``:`` as separator, ignores blank lines and lines
    starting with ``#`` or ``!``. Keys and values are stripped.

    Examples:
        >>> parse_properties("s3.bucket=logs\\n# comment\\ns3.prefix: gc/")
        {'s3.bucket': 'logs', 's3.prefix': 'gc/'}
    """
    props = {}
    if not text:
        return props

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line[0] in '#!':
            continue

        # First separator wins
        positions = [p for p in (line.find('='), line.find(':')) if p >= 0]
        if positions:
            sep = min(positions)
            key, value = line[:sep], line[sep + 1:]
        else:
            key, _, value = line.partition(' ')

        key = key.strip()
        if key:
            props[key] = value.strip()

    return props


class RemoteConfigClient:
    """
    Thin HTTP accessor for the control plane.

    Example:
        >>> client = RemoteConfigClient('api.example.com', token='abc')
        >>> account_id = client.get_account_id()
        >>> job = client.get_job_config('group-1')

    Attributes:
        host (str): Control-plane host (optionally with port)
        https (bool): Whether to use https
        timeout (float): Per-request timeout in seconds
    """

    def __init__(self, host: str, token: str, https: bool = True,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 session: requests.Session = None):
        self.host = host
        self.https = https
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()

        logger.info(f"Control plane: {self.base_url}")

    @property
    def base_url(self) -> str:
        scheme = 'https' if self.https else 'http'
        return f"{scheme}://{self.host}"

    def call(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """
        Perform an authenticated GET and return the ``result`` payload.

        Args:
            path: Endpoint path (e.g. '/analyse/get')
            params: Extra query parameters

        Returns:
            The value stored under ``result`` (any JSON type)

        Raises:
            ControlPlaneError: On transport, status or format errors
        """
        query = {'token': self._token}
        if params:
            query.update(params)

        url = f"{self.base_url}{path}"
        logger.debug(f"Calling {url} (params: {sorted(k for k in query if k != 'token')})")

        try:
            response = self._session.get(url, params=query, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise ControlPlaneError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise ControlPlaneError(f"GET {path} returned invalid JSON: {e}") from e

        if not isinstance(body, dict) or 'result' not in body:
            raise ControlPlaneError(f"GET {path} response has no 'result': {body!r}")

        return body['result']

    def get_latest_version(self) -> str:
        """Latest published connector version ('' when unknown)."""
        result = self.call(GET_LATEST_VERSION)
        return '' if result is None else str(result)

    def get_account_id(self) -> str:
        """Resolve the tenant (account) id owning the token."""
        result = self.call(GET_ACCOUNT_ID)
        if result is None or result == '':
            raise ControlPlaneError("Account id is empty")
        return str(result)

    def get_job_config(self, analyze_id: str) -> Optional[RemoteJobConfig]:
        """
        Fetch the job (analyze group) configuration.

        Returns:
            RemoteJobConfig, or None if the record is absent or malformed
        """
        analyze = self.call(GET_ANALYZE, {'id': analyze_id})
        logger.debug(f"Analyze - {analyze}")

        if not isinstance(analyze, dict) or 'id' not in analyze:
            logger.error(f"Unknown Analyze Group response: {analyze}")
            return None

        source_type = analyze.get('source_type') or ''
        source_config = analyze.get('source_config') or ''

        return RemoteJobConfig(
            job_id=str(analyze['id']),
            source_type=str(source_type).strip(),
            source_config=parse_properties(str(source_config))
        )

    def get_internal_settings(self) -> Dict[str, Any]:
        """Storage settings for control-plane-managed (INTERNAL) destinations."""
        settings = self.call(GET_INTERNAL_SETTINGS)
        if not isinstance(settings, dict):
            raise ControlPlaneError(f"Unexpected internal settings response: {settings!r}")
        return settings

    def close(self):
        self._session.close()
