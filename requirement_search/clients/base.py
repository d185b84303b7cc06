"""HTTP plumbing shared by outbound API clients: retries and status mapping."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": "requirement-search-engine",
    "Accept": "application/json",
}

# Throttling and transient gateway failures; anything else is final.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_EXCERPT_CHARS = 200


class ClientError(Exception):
    """Base exception for HTTP client errors."""


class RateLimitedError(ClientError):
    """HTTP 429 that persisted through every retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RequestRejectedError(ClientError):
    """Non-retryable 4xx response."""

    def __init__(self, status: int, message: str, body_excerpt: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.body_excerpt = body_excerpt


class UnauthorizedError(RequestRejectedError):
    """HTTP 401/403: the API key is missing, wrong or lacks access to the deployment."""


class UpstreamError(ClientError):
    """5xx response or transport failure that persisted through every retry."""


class RetryableResponseError(Exception):
    """Carries a retryable response out of a tenacity attempt."""

    def __init__(self, response: requests.Response):
        super().__init__(f"Retryable HTTP {response.status_code}")
        self.response = response


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait according to a ``Retry-After`` header (delta or HTTP date)."""

    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


_backoff = wait_exponential(multiplier=0.5, min=0.5, max=8)


def _retry_wait(retry_state: RetryCallState) -> float:
    outcome = retry_state.outcome
    if outcome is not None and outcome.failed:
        exc = outcome.exception()
        if isinstance(exc, RetryableResponseError):
            hinted = _parse_retry_after(exc.response.headers.get("Retry-After"))
            if hinted is not None:
                return hinted
    return _backoff(retry_state)


def _excerpt(response: requests.Response) -> Optional[str]:
    try:
        text = response.text
    except (AttributeError, UnicodeDecodeError):
        return None
    collapsed = " ".join((text or "").split())
    return collapsed[:_EXCERPT_CHARS] or None


class BaseHttpClient:
    """Session owner that retries throttled or failing calls and maps statuses to errors."""

    BASE_URL = ""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.session = session or requests.Session()
        for key, value in DEFAULT_HEADERS.items():
            self.session.headers.setdefault(key, value)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=_retry_wait,
            retry=retry_if_exception_type((requests.RequestException, RetryableResponseError)),
        )
        for attempt in retrying:
            with attempt:
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    logger.debug(
                        "HTTP %s from %s (attempt %s/%s)",
                        response.status_code,
                        url,
                        attempt.retry_state.attempt_number,
                        self.max_attempts,
                    )
                    raise RetryableResponseError(response)
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._send(method, url, **kwargs)
        except RetryableResponseError as exc:
            response = exc.response
        except requests.RequestException as exc:
            raise UpstreamError(f"Request to {url} failed: {exc}") from exc
        return self._handle_response(response)

    def _handle_response(self, response: requests.Response) -> requests.Response:
        status = response.status_code
        if status < 400:
            return response

        excerpt = _excerpt(response)
        detail = f": {excerpt}" if excerpt else ""
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError(f"Rate limit exceeded{detail}", retry_after=retry_after)
        if status >= 500:
            raise UpstreamError(f"Upstream service error ({status}){detail}")
        if status in (401, 403):
            raise UnauthorizedError(status, f"Not authorized ({status})", body_excerpt=excerpt)
        raise RequestRejectedError(
            status, f"Request rejected ({status}){detail}", body_excerpt=excerpt
        )


__all__ = [
    "BaseHttpClient",
    "ClientError",
    "RateLimitedError",
    "RequestRejectedError",
    "RetryableResponseError",
    "UnauthorizedError",
    "UpstreamError",
]
