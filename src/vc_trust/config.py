"""
Configuration for the trust engine.

Values come from keyword arguments or from the environment:

    VC_API_URL                    Issuance API base URL
    VC_API_AUTH_TOKEN             Bearer token for the issuance API
    VC_PLATFORM_DID               Platform-wide DID
    VC_TIMEOUT                    Per-request timeout in seconds
    VC_MAX_RETRIES                Retries for retryable failures
    VC_CIRCUIT_FAILURE_THRESHOLD  Consecutive failures before the circuit opens
    VC_CIRCUIT_RESET_TIMEOUT      Seconds before an open circuit allows a probe
    VC_CACHE_TTL                  Resource cache TTL in seconds
    VC_DEBUG                      Enable debug logging (1/true/yes/on)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping


DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 60.0
DEFAULT_CACHE_TTL = 5 * 60.0

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class TrustEngineConfig:
    """Recognized configuration options."""

    api_url: str = ""
    api_key: str = ""
    platform_did: str = ""
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    reset_timeout: float = DEFAULT_RESET_TIMEOUT
    cache_ttl: float = DEFAULT_CACHE_TTL
    debug: bool = False

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.failure_threshold < 1:
            raise ValueError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}"
            )
        if self.reset_timeout < 0:
            raise ValueError(f"reset_timeout must be >= 0, got {self.reset_timeout}")
        if self.cache_ttl < 0:
            raise ValueError(f"cache_ttl must be >= 0, got {self.cache_ttl}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TrustEngineConfig:
        """Build a configuration from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if environ is None else environ

        def _float(name: str, default: float) -> float:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return float(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from e

        def _int(name: str, default: int) -> int:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from e

        return cls(
            api_url=env.get("VC_API_URL", ""),
            api_key=env.get("VC_API_AUTH_TOKEN", ""),
            platform_did=env.get("VC_PLATFORM_DID", ""),
            timeout=_float("VC_TIMEOUT", DEFAULT_TIMEOUT),
            max_retries=_int("VC_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            failure_threshold=_int(
                "VC_CIRCUIT_FAILURE_THRESHOLD", DEFAULT_FAILURE_THRESHOLD
            ),
            reset_timeout=_float("VC_CIRCUIT_RESET_TIMEOUT", DEFAULT_RESET_TIMEOUT),
            cache_ttl=_float("VC_CACHE_TTL", DEFAULT_CACHE_TTL),
            debug=env.get("VC_DEBUG", "").strip().lower() in _TRUE_VALUES,
        )


def configure_logging(debug: bool = False) -> None:
    """Set up root logging for command-line and service use."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
