"""
Resilient outbound HTTP calls.

Every outbound call of the engine goes through ``ResilientClient``, which
composes a bounded retry with exponential backoff and a ``CircuitBreaker``.

Circuit states:
- closed: calls pass through, consecutive failures are counted
- open: calls fail immediately with CircuitOpenError
- half_open: one probe call is allowed to test recovery
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from vc_trust.config import (
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RESET_TIMEOUT,
    DEFAULT_TIMEOUT,
)
from vc_trust.errors import ApiError, CircuitOpenError, NetworkError, ServerError

log = logging.getLogger(__name__)

RetryObserver = Callable[[int, Exception, float], None]


class CircuitState(Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Three-state guard around calls to a flaky dependency.

    State transitions happen under a lock so that concurrent failures are
    counted exactly once each. The lock is never held during the guarded
    call itself.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._changed_at = clock()
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def last_transition(self) -> float:
        return self._changed_at

    def _transition(self, state: CircuitState) -> None:
        # Caller holds the lock
        if state is not self._state:
            log.info("Circuit breaker: %s -> %s", self._state.value, state.value)
        self._state = state
        self._changed_at = self._clock()
        self._probe_in_flight = False

    def _maybe_half_open(self) -> None:
        if (
            self._state is CircuitState.OPEN
            and self._clock() - self._changed_at >= self.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)

    def allow_request(self) -> bool:
        """Check if a call may proceed, reserving the half-open probe slot."""
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        """Record a successful call and close the circuit."""
        with self._lock:
            self._failures = 0
            if self._state is not CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a failed call; may open the circuit."""
        with self._lock:
            self._failures += 1
            if self._state is CircuitState.HALF_OPEN:
                log.warning("Circuit breaker: half-open probe failed")
                self._transition(CircuitState.OPEN)
            elif (
                self._state is CircuitState.CLOSED
                and self._failures >= self.failure_threshold
            ):
                log.warning(
                    "Circuit breaker: open after %d consecutive failures",
                    self._failures,
                )
                self._transition(CircuitState.OPEN)

    def call(self, func: Callable[[], Any]) -> Any:
        """Run ``func`` under the breaker.

        NetworkError and ServerError count as failures. An ApiError answer
        shows the dependency is reachable and counts as a success.

        Raises:
            CircuitOpenError: If the circuit does not allow the call.
        """
        if not self.allow_request():
            raise CircuitOpenError("Circuit breaker is open; call rejected")
        try:
            result = func()
        except (NetworkError, ServerError):
            self.record_failure()
            raise
        except ApiError:
            self.record_success()
            raise
        except Exception:
            self._release_probe()
            raise
        self.record_success()
        return result

    def _release_probe(self) -> None:
        with self._lock:
            self._probe_in_flight = False


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = 0.5
    backoff_factor: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay)


def log_retry(attempt: int, error: Exception, delay: float) -> None:
    """Default retry observer."""
    log.warning("Retry %d in %.2fs after error: %s", attempt, delay, error)


class ResilientClient:
    """HTTP client with retry-with-backoff and a circuit breaker.

    Raises NetworkError for transport failures and timeouts, ServerError
    for 5xx answers, ApiError for 4xx answers and CircuitOpenError when
    the breaker rejects a call.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        retry: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        on_retry: RetryObserver | None = None,
        sleep: Callable[[float], None] = time.sleep,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Prefix for relative request URLs.
            api_key: Bearer token sent on every request, if set.
            timeout: Per-request timeout in seconds.
            retry: Retry policy. Defaults to ``RetryPolicy()``.
            circuit_breaker: Breaker owned by this client. Created if not provided.
            on_retry: Observer called as ``(attempt, error, delay)`` before each retry.
            sleep: Sleep function, injectable for tests.
            http_client: Preconfigured ``httpx.Client``. Created if not provided.
        """
        self.retry = retry or RetryPolicy()
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.on_retry = on_retry or log_retry
        self._sleep = sleep

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
        )

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> ResilientClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request with retry and circuit breaker protection.

        Exhausting retries re-raises the last retryable error.
        """
        attempt = 0
        while True:
            try:
                return self.circuit_breaker.call(
                    lambda: self._send(method, url, json=json, headers=headers)
                )
            except (NetworkError, ServerError) as e:
                attempt += 1
                if attempt > self.retry.max_retries:
                    raise
                delay = self.retry.delay_for(attempt)
                self.on_retry(attempt, e, delay)
                self._sleep(delay)

    def _send(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Single attempt, mapping httpx outcomes onto the error taxonomy."""
        try:
            response = self._http.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout calling {method} {url}: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error calling {method} {url}: {e}") from e

        if response.status_code >= 500:
            raise ServerError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ApiError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                code=f"HTTP_{response.status_code}",
                status_code=response.status_code,
            )
        return response

    def get(self, url: str, *, headers: dict[str, str] | None = None) -> httpx.Response:
        return self.request("GET", url, headers=headers)

    def post(
        self,
        url: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return self.request("POST", url, json=json, headers=headers)

    def get_json(self, url: str, *, headers: dict[str, str] | None = None) -> Any:
        """Fetch a JSON resource. Any non-200 answer is a failure.

        Raises:
            ApiError: On a non-200 answer or a body that is not JSON.
        """
        response = self.get(url, headers=headers)
        if response.status_code != 200:
            raise ApiError(
                f"GET {url} returned {response.status_code}",
                code=f"HTTP_{response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {url}", code="INVALID_JSON", cause=e) from e
