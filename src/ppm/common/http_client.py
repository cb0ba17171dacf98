"""Shared HTTP helpers used by the registry adapters.

Encapsulates retry, timeout and response caching so adapters avoid
duplicating try/except blocks. Transport failures never raise out of this
module; they are reported as status 0 with a reason string.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import requests

from ..constants import Constants
from .logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

# Status reported when no HTTP response was received at all.
TRANSPORT_FAILURE = 0
TIMEOUT_REASON = "timeout"

Response = Tuple[int, Dict[str, str], str]

# url + headers -> (response, expires_at)
_response_cache: Dict[str, Tuple[Response, float]] = {}
_response_cache_lock = threading.Lock()


def _trace(message: str, target: str, **fields: Any) -> None:
    if is_debug_enabled(logger):
        logger.debug(message, extra=extra_context(component="http_client", target=target, **fields))


def _cache_key(url: str, headers: Optional[Dict[str, str]]) -> str:
    if not headers:
        return url
    return url + "|" + "|".join(f"{k}={v}" for k, v in sorted(headers.items()))


def _cached_response(key: str) -> Optional[Response]:
    with _response_cache_lock:
        hit = _response_cache.get(key)
        if hit is None:
            return None
        response, expires_at = hit
        if time.time() >= expires_at:
            del _response_cache[key]
            return None
        return response


def _store_response(key: str, response: Response) -> None:
    """Cache a response, dropping every expired entry on the way."""
    now = time.time()
    with _response_cache_lock:
        for stale in [k for k, (_, expires_at) in _response_cache.items() if now >= expires_at]:
            del _response_cache[stale]
        _response_cache[key] = (response, now + Constants.HTTP_CACHE_TTL_SEC)


def clear_http_cache() -> None:
    """Drop every cached response."""
    with _response_cache_lock:
        _response_cache.clear()


def is_timeout(status_code: int, reason: str) -> bool:
    """Return True when robust_get gave up because every attempt timed out."""
    return status_code == TRANSPORT_FAILURE and reason.endswith(TIMEOUT_REASON)


def robust_get(url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> Response:
    """GET with retries, exponential backoff and a short-lived response cache.

    5xx responses, timeouts and connection errors are retried up to
    Constants.HTTP_RETRY_MAX attempts. 429 and other non-5xx responses are
    returned as-is; only those other than 429 are cached.

    Returns:
        tuple: (status_code, headers, body_text). After the last failed
        attempt the status is TRANSPORT_FAILURE and the body carries the
        failure reason.
    """
    key = _cache_key(url, headers)
    target = safe_url(url)
    cached = _cached_response(key)
    if cached is not None:
        _trace("HTTP cache hit", target, event="cache_hit", action="GET")
        return cached

    request_headers = {"User-Agent": Constants.USER_AGENT, "Accept": "application/json"}
    request_headers.update(headers or {})

    failure: Optional[str] = None
    for attempt in range(1, Constants.HTTP_RETRY_MAX + 1):
        if attempt > 1:
            time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** (attempt - 2)))
        _trace("HTTP request", target, event="http_request", action="GET", attempt=attempt)
        with Timer() as t:
            try:
                resp = requests.get(url, timeout=Constants.REQUEST_TIMEOUT, headers=request_headers, **kwargs)
            except requests.Timeout:
                failure = TIMEOUT_REASON
                _trace("HTTP timeout", target, event="http_exception", outcome="timeout", attempt=attempt)
                continue
            except requests.RequestException as exc:
                failure = str(exc) or type(exc).__name__
                _trace("HTTP request failed", target, event="http_exception", outcome="request_exception",
                       attempt=attempt)
                continue

        if resp.status_code >= 500:
            failure = f"HTTP {resp.status_code}"
            _trace("HTTP server error", target, event="http_response", outcome="retry",
                   status_code=resp.status_code, attempt=attempt)
            continue

        response: Response = (resp.status_code, dict(resp.headers), resp.text)
        if resp.status_code != 429:
            _store_response(key, response)
        _trace("HTTP response", target, event="http_response", outcome="success",
               status_code=resp.status_code, duration_ms=t.duration_ms())
        return response

    logger.warning("GET %s failed after %d attempts: %s", target, Constants.HTTP_RETRY_MAX, failure)
    return TRANSPORT_FAILURE, {}, f"Request failed after {Constants.HTTP_RETRY_MAX} attempts: {failure}"


def get_json(
    url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """GET a JSON document.

    Args:
        url: Target URL.
        headers: Extra request headers.
        **kwargs: Passed through to requests.get.

    Returns:
        tuple: (status_code, headers, data). data is the decoded body for a
        200 response, None for other statuses or undecodable bodies, and the
        failure reason string when status_code is TRANSPORT_FAILURE.
    """
    status, resp_headers, body = robust_get(url, headers=headers, **kwargs)
    if status == TRANSPORT_FAILURE:
        return status, resp_headers, body
    if status != 200 or not body:
        return status, resp_headers, None
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        _trace("Undecodable JSON body", safe_url(url), event="parse", action="get_json",
               outcome="json_decode_error", status_code=status)
        return status, resp_headers, None
    return status, resp_headers, data
