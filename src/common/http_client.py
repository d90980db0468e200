"""Shared HTTP helpers used by the metadata transports and the installer.

Encapsulates common request/timeout/retry handling so callers avoid
duplicating try/except blocks. Failures are raised as TransportError; the
caller decides whether that rejects one candidate or aborts.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests

from constants import Constants
from common.errors import TransportError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

# Client errors are definitive; retrying them only burns the timeout budget.
_NO_RETRY_STATUS = {400, 401, 403, 404, 410}


def robust_get(
    url: str,
    *,
    timeout: Optional[float] = None,
    headers: Optional[Dict[str, str]] = None,
    session: Optional[requests.Session] = None,
    **kwargs: Any,
) -> bytes:
    """Perform GET request with timeout and retries, returning the body bytes.

    ``timeout`` bounds the whole call: each attempt gets whatever is left of
    it, and no retry starts once it is spent.

    Raises:
        TransportError: On timeout, connection failure or non-200 status.
    """
    effective_timeout = Constants.REQUEST_TIMEOUT if timeout is None else timeout
    getter = session.get if session is not None else requests.get
    safe_target = safe_url(url)
    last_error = "no attempt made"
    deadline = time.monotonic() + effective_timeout

    for attempt in range(max(1, int(Constants.HTTP_RETRY_MAX))):
        if attempt:
            delay = Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** (attempt - 1))
            if deadline - time.monotonic() <= delay:
                break
            time.sleep(delay)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request",
                        component="http_client",
                        action="GET",
                        target=safe_target,
                        attempt=attempt + 1,
                    ),
                )
            try:
                response = getter(url, timeout=remaining, headers=headers, **kwargs)
            except requests.Timeout:
                last_error = f"timed out after {effective_timeout} seconds"
                continue
            except requests.RequestException as exc:  # includes ConnectionError
                last_error = str(exc)
                continue

        if response.status_code == 200:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP response ok",
                    extra=extra_context(
                        event="http_response",
                        component="http_client",
                        action="GET",
                        outcome="success",
                        status_code=response.status_code,
                        duration_ms=t.duration_ms(),
                        target=safe_target,
                    ),
                )
            return response.content

        last_error = f"HTTP {response.status_code}"
        if response.status_code in _NO_RETRY_STATUS:
            break

    logger.warning("GET %s failed: %s", safe_target, last_error)
    raise TransportError(safe_target, last_error)
