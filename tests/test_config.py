"""Tests for configuration loading."""

import pytest

from vc_trust.config import (
    DEFAULT_CACHE_TTL,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RESET_TIMEOUT,
    DEFAULT_TIMEOUT,
    TrustEngineConfig,
)


class TestTrustEngineConfig:
    def test_defaults(self):
        config = TrustEngineConfig.from_env({})
        assert config.api_url == ""
        assert config.timeout == DEFAULT_TIMEOUT == 30.0
        assert config.max_retries == DEFAULT_MAX_RETRIES == 3
        assert config.failure_threshold == DEFAULT_FAILURE_THRESHOLD == 3
        assert config.reset_timeout == DEFAULT_RESET_TIMEOUT == 60.0
        assert config.cache_ttl == DEFAULT_CACHE_TTL == 300.0
        assert config.debug is False

    def test_from_env(self):
        config = TrustEngineConfig.from_env(
            {
                "VC_API_URL": "https://api.example.com",
                "VC_API_AUTH_TOKEN": "token",
                "VC_PLATFORM_DID": "did:btco:1",
                "VC_TIMEOUT": "5",
                "VC_MAX_RETRIES": "0",
                "VC_CIRCUIT_FAILURE_THRESHOLD": "5",
                "VC_CIRCUIT_RESET_TIMEOUT": "10.5",
                "VC_CACHE_TTL": "0",
                "VC_DEBUG": "True",
            }
        )
        assert config.api_url == "https://api.example.com"
        assert config.api_key == "token"
        assert config.platform_did == "did:btco:1"
        assert config.timeout == 5.0
        assert config.max_retries == 0
        assert config.failure_threshold == 5
        assert config.reset_timeout == 10.5
        assert config.cache_ttl == 0.0
        assert config.debug is True

    def test_invalid_number(self):
        with pytest.raises(ValueError, match="VC_MAX_RETRIES"):
            TrustEngineConfig.from_env({"VC_MAX_RETRIES": "many"})

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"timeout": 0},
            {"max_retries": -1},
            {"failure_threshold": 0},
            {"reset_timeout": -1},
            {"cache_ttl": -5},
        ],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            TrustEngineConfig(**kwargs)
