#!/usr/bin/env python3
"""
HTTP client for the generation service.

Every non-local node posts JSON to ``{service_url}/api/<route>`` and reads
back ``{"success": bool, "error": str, ...}``.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

import requests

from mediaflow.errors import NodeOperationError
from mediaflow.utils.config import ConfigManager, ServiceConfig, get_config_manager

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "application/json"}
MAX_BACKOFF = 30.0


def backoff_delay(attempt: int) -> float:
    """Exponential delay for retry number ``attempt`` (1-based), capped"""
    return float(min(2 ** attempt, MAX_BACKOFF))


def _retry_delay(response: requests.Response, attempt: int, config: ServiceConfig) -> Optional[float]:
    """
    Seconds to wait before retrying a response.

    Returns:
        None when the response is final: a success, a client error, or a
        throttle or server error whose retries are used up
    """
    if response.status_code == 429:
        if attempt >= config.max_retries_429:
            return None
        retry_after = response.headers.get("retry-after", "")
        return float(retry_after) if retry_after.isdigit() else backoff_delay(attempt + 1)
    if 500 <= response.status_code < 600 and attempt < config.max_retries_5xx:
        return backoff_delay(attempt + 1)
    return None


def post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str],
              config: ServiceConfig) -> requests.Response:
    """
    POST with the retry policy of ``config``.

    Throttling (429) honours a numeric Retry-After; server errors and network
    failures back off exponentially. When retries run out the last response
    is returned, or the last network error raised.
    """
    attempt = 0
    while True:
        try:
            r = requests.post(url, headers=headers, json=payload, timeout=config.timeout)
        except requests.RequestException as e:
            if attempt >= config.max_retries_5xx:
                raise
            delay = backoff_delay(attempt + 1)
            logger.warning("POST %s failed: %s; retry %d/%d in %.0fs",
                           url, e, attempt + 1, config.max_retries_5xx, delay)
        else:
            delay = _retry_delay(r, attempt, config)
            if delay is None:
                return r
            logger.warning("POST %s -> %d; retry %d in %.0fs", url, r.status_code, attempt + 1, delay)
        attempt += 1
        time.sleep(delay)


def _error_message(response: requests.Response) -> str:
    message = f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        text = response.text or ""
        return f"{message} - {text[:200]}" if text else message
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return message


class ServiceClient:
    """Posts node requests to the generation service"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self.config_manager = config_manager or get_config_manager()

    def post(self, route: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call a service route and return its JSON body.

        Args:
            route: Route name under ``/api`` (e.g. ``"llm"``)
            payload: JSON request body

        Returns:
            Decoded response body of a successful call

        Raises:
            NodeOperationError: Network failure, non-2xx status, or ``success: false``
        """
        config = self.config_manager.load().service
        url = f"{config.service_url.rstrip('/')}/api/{route}"
        headers = dict(HEADERS)
        headers.update(self.config_manager.get_api_headers())

        logger.debug("POST %s", url)
        try:
            r = post_json(url, payload, headers, config)
        except requests.RequestException as e:
            raise NodeOperationError(f"Network error: {e}") from e

        if not r.ok:
            raise NodeOperationError(_error_message(r))

        try:
            body = r.json()
        except ValueError as e:
            raise NodeOperationError(f"Invalid response from {route}: {e}") from e

        if not isinstance(body, dict) or body.get("success") is False:
            error = body.get("error") if isinstance(body, dict) else None
            raise NodeOperationError(error or f"{route} request failed")
        return body

    async def call(self, route: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run ``post`` in a worker thread so the event loop keeps scheduling"""
        return await asyncio.to_thread(self.post, route, payload)


# Global instance
_service_client = None

def get_service_client() -> ServiceClient:
    """Get global service client instance"""
    global _service_client
    if _service_client is None:
        _service_client = ServiceClient()
    return _service_client
