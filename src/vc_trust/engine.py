"""
Wiring of the trust engine components from a ``TrustEngineConfig``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from vc_trust.cache import ResourceCache
from vc_trust.config import TrustEngineConfig
from vc_trust.did_resolver import DIDResolver, WebDIDResolver
from vc_trust.issuer import CredentialIssuer
from vc_trust.repository import CredentialRepository, InMemoryCredentialRepository
from vc_trust.resilience import CircuitBreaker, ResilientClient, RetryPolicy
from vc_trust.statuslist import StatusListChecker
from vc_trust.verifier import CredentialVerifier


@dataclass
class TrustEngine:
    """The assembled components. Close it to release HTTP connections."""

    cache: ResourceCache
    api_client: ResilientClient
    resource_client: ResilientClient
    did_resolver: DIDResolver
    statuslist_checker: StatusListChecker
    verifier: CredentialVerifier
    repository: CredentialRepository
    issuer: CredentialIssuer

    def close(self) -> None:
        self.api_client.close()
        self.resource_client.close()

    def __enter__(self) -> TrustEngine:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _client(config: TrustEngineConfig, base_url: str = "", api_key: str = "") -> ResilientClient:
    return ResilientClient(
        base_url,
        api_key=api_key,
        timeout=config.timeout,
        retry=RetryPolicy(max_retries=config.max_retries),
        circuit_breaker=CircuitBreaker(
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout,
        ),
    )


def build_engine(
    config: TrustEngineConfig,
    *,
    did_resolver: DIDResolver | None = None,
    repository: CredentialRepository | None = None,
    verify_status: bool = True,
) -> TrustEngine:
    """Build a ready-to-use engine.

    The issuance API gets its own client carrying the bearer token; status
    lists and did:web documents are fetched through a second client without
    it. Each client has its own circuit breaker.

    Args:
        config: Engine configuration.
        did_resolver: Resolver for issuer DIDs. Defaults to did:web.
        repository: Credential store. Defaults to an in-memory repository.
        verify_status: Whether credential status is checked.
    """
    cache = ResourceCache(ttl=config.cache_ttl)
    api_client = _client(config, config.api_url, config.api_key)
    resource_client = _client(config)

    resolver = did_resolver or WebDIDResolver(resource_client, cache)
    checker = StatusListChecker(resource_client, cache)
    verifier = CredentialVerifier(resolver, checker, verify_status=verify_status)
    store = repository if repository is not None else InMemoryCredentialRepository()

    return TrustEngine(
        cache=cache,
        api_client=api_client,
        resource_client=resource_client,
        did_resolver=resolver,
        statuslist_checker=checker,
        verifier=verifier,
        repository=store,
        issuer=CredentialIssuer(api_client, verifier, store),
    )
