"""
Credential issuance.

``CredentialIssuer`` builds an unsigned collectible credential, has the
issuance API sign it, verifies the signed result before returning it and
stores it in the credential repository.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from vc_trust.errors import ApiError, TrustEngineError
from vc_trust.repository import CredentialMetadata, CredentialRepository
from vc_trust.resilience import ResilientClient
from vc_trust.verifier import CredentialVerifier

log = logging.getLogger(__name__)

CREDENTIAL_CONTEXTS = [
    "https://www.w3.org/ns/credentials/v2",
    "https://ordinals.plus/v1",
]
CREDENTIAL_TYPES = ["VerifiableCredential", "VerifiableCollectible"]
COLLECTIBLE_TYPE = "Collectible"
DEFAULT_MEDIUM = "Digital"

ISSUE_PATH = "/issueCredential"
HEALTH_PATH = "/health"


@dataclass(frozen=True)
class ContentInfo:
    """Description of the inscribed content."""

    mime_type: str
    hash: str
    size: int = 0
    dimensions: str | None = None
    url: str | None = None


@dataclass
class CollectibleMetadata:
    """Descriptive metadata of a collectible."""

    title: str
    description: str = ""
    creator: str | None = None
    creation_date: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    inscription_id: str = ""
    expiration_date: str | None = None
    id: str | None = None


@dataclass
class IssuanceParams:
    subject_did: str
    issuer_did: str
    metadata: CollectibleMetadata
    content_info: ContentInfo


def create_content_info(
    content: bytes,
    mime_type: str,
    dimensions: str | None = None,
    url: str | None = None,
) -> ContentInfo:
    """Describe raw content by its SHA-256 hex digest and size."""
    return ContentInfo(
        mime_type=mime_type,
        hash=hashlib.sha256(content).hexdigest(),
        size=len(content),
        dimensions=dimensions,
        url=url,
    )


def _utc_timestamp(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class CredentialIssuer:
    """Issues collectible credentials through the remote issuance API."""

    def __init__(
        self,
        client: ResilientClient,
        verifier: CredentialVerifier,
        repository: CredentialRepository | None = None,
    ) -> None:
        """Initialize the issuer.

        Args:
            client: Client for the issuance API, with its base URL set.
            verifier: Verifier used to check every credential the API signs.
            repository: Where issued credentials are stored, if anywhere.
        """
        self.client = client
        self.verifier = verifier
        self.repository = repository

    def build_credential(
        self, params: IssuanceParams, now: datetime | None = None
    ) -> dict[str, Any]:
        """Build the unsigned credential for an issuance request."""
        now = now or datetime.now(timezone.utc)
        metadata = params.metadata
        content = params.content_info

        subject: dict[str, Any] = {
            "id": params.subject_did,
            "type": COLLECTIBLE_TYPE,
            "title": metadata.title,
            "description": metadata.description,
            "creator": metadata.creator or params.issuer_did,
            "creationDate": metadata.creation_date or date.today().isoformat(),
            "properties": {
                "medium": DEFAULT_MEDIUM,
                "format": content.mime_type,
                "dimensions": content.dimensions,
                "contentHash": content.hash,
            },
        }
        subject.update(metadata.attributes)

        credential: dict[str, Any] = {
            "@context": list(CREDENTIAL_CONTEXTS),
            "type": list(CREDENTIAL_TYPES),
            "issuer": {"id": params.issuer_did},
            "credentialSubject": subject,
            "issuanceDate": _utc_timestamp(now),
        }
        if metadata.id:
            credential["id"] = metadata.id
        if metadata.expiration_date:
            credential["expirationDate"] = metadata.expiration_date
        return credential

    def issue(self, params: IssuanceParams) -> dict[str, Any]:
        """Issue, verify and store a credential.

        Returns:
            The signed credential.

        Raises:
            ApiError: With code ``CREDENTIAL_ISSUANCE_ERROR`` wrapping the
                underlying failure.
        """
        try:
            credential = self.build_credential(params)
            response = self.client.post(
                ISSUE_PATH,
                json={"credential": credential, "issuerDid": params.issuer_did},
            )
            signed = self._signed_credential(response.json())

            result = self.verifier.verify(signed)
            if not result.valid:
                raise ApiError(
                    f"Issued credential verification failed: {result.reason}",
                    code="VERIFICATION_FAILED",
                )
        except (TrustEngineError, ValueError) as e:
            log.error("Credential issuance for %s failed: %s", params.subject_did, e)
            raise ApiError(
                f"Failed to issue credential: {e}",
                code="CREDENTIAL_ISSUANCE_ERROR",
                cause=e,
            ) from e

        self._store(signed, params)
        log.info("Issued credential %s to %s", signed.get("id"), params.subject_did)
        return signed

    def _signed_credential(self, body: Any) -> dict[str, Any]:
        data = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ApiError("Issuance API returned no credential", code="INVALID_RESPONSE")
        return data

    def _store(self, credential: dict[str, Any], params: IssuanceParams) -> None:
        if self.repository is None:
            return
        metadata = params.metadata
        try:
            self.repository.store_credential(
                credential,
                CredentialMetadata(
                    inscription_id=metadata.inscription_id,
                    title=metadata.title,
                    creator=metadata.creator or params.issuer_did,
                ),
            )
        except Exception:
            log.exception("Failed to store issued credential %s", credential.get("id"))

    def check_health(self) -> bool:
        """True if the issuance API reports ``{"status": "ok"}``."""
        try:
            body = self.client.get(HEALTH_PATH).json()
        except (TrustEngineError, ValueError) as e:
            log.warning("Issuance API health check failed: %s", e)
            return False
        return isinstance(body, dict) and body.get("status") == "ok"

    def get_credential(self, credential_id: str) -> dict[str, Any] | None:
        """Stored credential by id, re-verified.

        A credential that no longer verifies is logged and still returned.
        """
        if self.repository is None:
            return None
        try:
            stored = self.repository.get_credential_by_id(credential_id)
        except Exception:
            log.exception("Credential lookup for %s failed", credential_id)
            return None
        if stored is None:
            return None

        result = self.verifier.verify(stored.credential)
        if not result.valid:
            log.warning(
                "Stored credential %s failed verification: %s",
                credential_id,
                result.reason,
            )
        return stored.credential

    def find_credentials_by_subject(self, subject_did: str) -> list[dict[str, Any]]:
        return self._find("find_credentials_by_subject", subject_did)

    def find_credentials_by_issuer(self, issuer_did: str) -> list[dict[str, Any]]:
        return self._find("find_credentials_by_issuer", issuer_did)

    def find_credentials_by_inscription(self, inscription_id: str) -> list[dict[str, Any]]:
        return self._find("find_credentials_by_inscription", inscription_id)

    def _find(self, finder: str, key: str) -> list[dict[str, Any]]:
        if self.repository is None:
            return []
        try:
            return [s.credential for s in getattr(self.repository, finder)(key)]
        except Exception:
            log.exception("Credential search %s(%s) failed", finder, key)
            return []

    def backup_credentials(self, path: str | Path) -> bool:
        if self.repository is None:
            return False
        return self.repository.create_backup(path)

    def restore_credentials(self, path: str | Path) -> bool:
        if self.repository is None:
            return False
        return self.repository.restore_from_backup(path)

    def credential_stats(self) -> dict[str, Any]:
        """Repository statistics, empty when the repository has none."""
        get_stats = getattr(self.repository, "get_stats", None)
        return get_stats() if get_stats is not None else {}
