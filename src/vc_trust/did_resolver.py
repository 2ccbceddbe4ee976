"""
DID resolution.

The DID resolver is an external collaborator. This module defines the
narrow interface the verifier needs, the DID Document model, and two
implementations: an in-memory ``StaticDIDResolver`` and a ``WebDIDResolver``
for the did:web method (https://w3c-ccg.github.io/did-method-web/).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import quote

from vc_trust.cache import ResourceCache
from vc_trust.errors import DIDResolutionError, TrustEngineError
from vc_trust.keys import VerificationMethod
from vc_trust.resilience import ResilientClient

log = logging.getLogger(__name__)

DID_DOCUMENT_CONTENT_TYPE = "did-document"

RELATIONSHIPS = (
    "assertionMethod",
    "authentication",
    "keyAgreement",
    "capabilityInvocation",
    "capabilityDelegation",
)


@dataclass
class DIDDocument:
    """W3C DID Document."""

    id: str
    verification_methods: list[VerificationMethod]
    # Relationship name -> references (str) or embedded methods
    relationships: dict[str, list[str | VerificationMethod]] = field(
        default_factory=dict
    )

    @classmethod
    def from_dict(cls, data: Any) -> DIDDocument:
        """Parse a DID Document from JSON.

        Raises:
            DIDResolutionError: If the document is not an object with an id.
        """
        if not isinstance(data, dict) or not isinstance(data.get("id"), str):
            raise DIDResolutionError("DID Document must be an object with an id")

        verification_methods = [
            VerificationMethod.from_dict(vm)
            for vm in data.get("verificationMethod") or []
            if isinstance(vm, dict)
        ]

        relationships: dict[str, list[str | VerificationMethod]] = {}
        for name in RELATIONSHIPS:
            items: list[str | VerificationMethod] = []
            for item in data.get(name) or []:
                if isinstance(item, str):
                    items.append(item)
                elif isinstance(item, dict):
                    items.append(VerificationMethod.from_dict(item))
            relationships[name] = items

        return cls(
            id=data["id"],
            verification_methods=verification_methods,
            relationships=relationships,
        )

    def _absolute(self, method_id: str) -> str:
        if method_id.startswith("#"):
            return self.id + method_id
        return method_id

    def _matches(self, candidate: str, method_id: str) -> bool:
        return self._absolute(candidate) == self._absolute(method_id)

    def get_verification_method(self, method_id: str) -> VerificationMethod | None:
        """Get a method from the ``verificationMethod`` array by ID."""
        for vm in self.verification_methods:
            if self._matches(vm.id, method_id):
                return vm
        return None

    def find_verification_method(self, method_id: str) -> VerificationMethod | None:
        """Find a method in ``verificationMethod`` or any relationship array.

        Relationship entries may be embedded method objects or string
        references back into ``verificationMethod``.
        """
        vm = self.get_verification_method(method_id)
        if vm is not None:
            return vm

        for name in RELATIONSHIPS:
            for item in self.relationships.get(name, []):
                if isinstance(item, str):
                    if self._matches(item, method_id):
                        return self.get_verification_method(item)
                elif self._matches(item.id, method_id):
                    return item
        return None


@dataclass
class DIDResolutionResult:
    """Outcome of resolving a DID."""

    did_document: dict[str, Any] | None = None
    content_type: str | None = None
    content: Any = None
    error: str | None = None

    @property
    def is_did_document(self) -> bool:
        return (
            self.error is None
            and self.did_document is not None
            and self.content_type in (None, DID_DOCUMENT_CONTENT_TYPE)
        )


class DIDResolver(Protocol):
    """Interface to the external DID resolver."""

    def resolve(self, did: str) -> DIDResolutionResult:
        """Resolve a DID to whatever content it carries."""
        ...

    def resolve_did_document(self, did: str) -> DIDResolutionResult:
        """Resolve a DID specifically as a DID Document."""
        ...


def base_did(did_url: str) -> str:
    """Strip fragment and query from a DID URL."""
    return did_url.split("#", 1)[0].split("?", 1)[0]


class StaticDIDResolver:
    """Resolver over an in-memory set of DID Documents and other content."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict[str, Any]] = dict(documents or {})
        self._content: dict[str, tuple[str, Any]] = {}

    def add_document(self, document: dict[str, Any]) -> None:
        self._documents[document["id"]] = document

    def add_content(self, did: str, content_type: str, content: Any) -> None:
        """Register non-document content (e.g. a credential) for a DID."""
        self._content[did] = (content_type, content)

    def resolve(self, did: str) -> DIDResolutionResult:
        did = base_did(did)
        if did in self._content:
            content_type, content = self._content[did]
            return DIDResolutionResult(content_type=content_type, content=content)
        return self.resolve_did_document(did)

    def resolve_did_document(self, did: str) -> DIDResolutionResult:
        did = base_did(did)
        document = self._documents.get(did)
        if document is None:
            return DIDResolutionResult(error=f"DID not found: {did}")
        return DIDResolutionResult(
            did_document=document, content_type=DID_DOCUMENT_CONTENT_TYPE
        )


class WebDIDResolver:
    """Resolver for the did:web method."""

    def __init__(
        self,
        client: ResilientClient,
        cache: ResourceCache | None = None,
    ) -> None:
        """Initialize the DID resolver.

        Args:
            client: Client used for all fetches.
            cache: Optional document cache keyed by resolution URL.
        """
        self.client = client
        self.cache = cache

    def _did_to_url(self, did: str) -> str:
        """Convert a did:web identifier to its resolution URL.

        did:web:example.com -> https://example.com/.well-known/did.json
        did:web:example.com:path:to:doc -> https://example.com/path/to/doc/did.json
        did:web:example.com%3A8080 -> https://example.com:8080/.well-known/did.json

        Raises:
            DIDResolutionError: If the DID format is invalid.
        """
        if not did.startswith("did:web:"):
            raise DIDResolutionError(f"Invalid did:web identifier: {did}")

        parts = base_did(did[8:]).split(":")

        # First part is the domain (with potential port encoded as %3A)
        domain = parts[0].replace("%3A", ":")
        if not domain:
            raise DIDResolutionError(f"Invalid did:web identifier: {did}")

        if len(parts) > 1:
            path = "/" + "/".join(quote(p, safe="") for p in parts[1:]) + "/did.json"
        else:
            path = "/.well-known/did.json"

        return f"https://{domain}{path}"

    def _fetch(self, url: str) -> Any:
        headers = {"Accept": "application/did+ld+json, application/json"}
        if self.cache is None:
            return self.client.get_json(url, headers=headers)
        return self.cache.get_or_fetch(
            url, lambda: self.client.get_json(url, headers=headers)
        )

    def resolve(self, did: str) -> DIDResolutionResult:
        return self.resolve_did_document(did)

    def resolve_did_document(self, did: str) -> DIDResolutionResult:
        did = base_did(did)
        try:
            url = self._did_to_url(did)
            document = self._fetch(url)
        except TrustEngineError as e:
            log.debug("did:web resolution failed for %s: %s", did, e)
            return DIDResolutionResult(error=str(e))

        if not isinstance(document, dict) or document.get("id") != did:
            got = document.get("id") if isinstance(document, dict) else None
            return DIDResolutionResult(
                error=f"DID Document id mismatch: expected {did}, got {got}"
            )
        return DIDResolutionResult(
            did_document=document, content_type=DID_DOCUMENT_CONTENT_TYPE
        )
