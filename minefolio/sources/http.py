"""
Shared HTTP plumbing for the upstream adapters.
"""
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from config.settings import settings
from minefolio.errors import UpstreamError

logger = logging.getLogger("sources.http")


class UpstreamClient:
    """
    JSON over HTTP for one upstream integration.

    Every call carries an explicit timeout. Connection errors and timeouts
    are retried with backoff; any other failure (non-2xx status, transport
    error after the last attempt, a body that is not JSON) is raised as
    UpstreamError tagged with the source name.
    """

    def __init__(
        self,
        source: str,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.source = source
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout or settings.http_timeout_seconds

    def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return self._request("GET", path, params=params, headers=headers)

    def post_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return self._request("POST", path, params=params, data=data, headers=headers)

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = self.url_for(path)
        try:
            response = self._send(method, url, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{self.source} {method} {url} failed: {e}")
            raise UpstreamError(self.source, str(e)) from e

        if not response.ok:
            logger.warning(f"{self.source} {method} {url} returned {response.status_code}")
            raise UpstreamError(
                self.source,
                f"{method} {path} failed",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(self.source, f"invalid JSON from {path}") from e

    @retry(
        stop=stop_after_attempt(max(1, settings.http_retry_attempts)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        return self._session.request(method, url, timeout=self._timeout, **kwargs)
