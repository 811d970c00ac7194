"""
HTTP client for the Mackerel-compatible metrics API.
"""

from typing import Any, Dict, List, Optional

import requests

from logcore import get_logger
from mkagent import __version__
from mkagent.errors import ApiError

logger = get_logger(__name__)

USER_AGENT = f'mkagent/{__version__}'
RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)


class ApiClient:
    """Thin wrapper over a requests session carrying the API key"""

    def __init__(self, apikey: str, apibase: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.apibase = apibase.rstrip('/') + '/'
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'X-Api-Key': apikey,
            'User-Agent': USER_AGENT,
            'Content-Type': 'application/json',
        })

    def _post(self, path: str, payload: Any, timeout: Optional[float] = None) -> requests.Response:
        url = self.apibase + path
        if timeout is None:
            timeout = self.timeout
        else:
            timeout = min(self.timeout, timeout)
        try:
            response = self.session.post(url, json=payload, timeout=timeout)
        except requests.exceptions.Timeout:
            raise ApiError(f"Timeout after {timeout:g}s: POST {url}")
        except requests.exceptions.RequestException as e:
            raise ApiError(f"POST {url} failed: {e}")

        if not 200 <= response.status_code < 300:
            raise ApiError(
                f"POST {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS,
            )
        return response

    def create_host(self, name: str, meta: Optional[Dict[str, Any]] = None) -> str:
        """Register a host and return the identity assigned to it"""
        response = self._post('api/v0/hosts', {'name': name, 'meta': meta or {}})
        try:
            host_id = response.json()['id']
        except (ValueError, KeyError, TypeError):
            raise ApiError(f"Unexpected registration response: {response.text[:200]}", retryable=False)
        if not isinstance(host_id, str) or not host_id:
            raise ApiError(f"Registration returned an invalid host id: {host_id!r}", retryable=False)
        return host_id

    def post_metrics(self, values: List[Dict[str, Any]], timeout: Optional[float] = None) -> None:
        """
        Submit host metric values; raises ApiError on failure.

        `timeout` can only shorten the client timeout for this request.
        """
        self._post('api/v0/tsdb', values, timeout=timeout)
        logger.debug("Posted %d metric values", len(values))

    def close(self):
        self.session.close()
