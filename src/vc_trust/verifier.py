"""
Verifiable Credentials Verifier.

Verification runs as a fixed sequence of steps:

    UNCHECKED -> STRUCTURE_VALID -> ISSUER_RESOLVED -> METHOD_FOUND
              -> SIGNATURE_VALID -> STATUS_CHECKED -> VALID

Any failed step short-circuits to INVALID. Verification never raises:
an invalid credential, an unreachable resolver and a malformed document
all produce an ordinary invalid ``VerificationResult``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from vc_trust.did_resolver import DIDDocument, DIDResolver, base_did
from vc_trust.errors import DIDResolutionError, TrustEngineError
from vc_trust.signatures import issuer_id, verify_proof
from vc_trust.statuslist import StatusListChecker

log = logging.getLogger(__name__)

# Status list credentials are verified recursively; deeper credentials
# that still carry a credentialStatus are rejected.
MAX_STATUS_DEPTH = 2


class VerificationStep(Enum):
    """Verification state machine states."""

    UNCHECKED = "unchecked"
    STRUCTURE_VALID = "structure_valid"
    ISSUER_RESOLVED = "issuer_resolved"
    METHOD_FOUND = "method_found"
    SIGNATURE_VALID = "signature_valid"
    STATUS_CHECKED = "status_checked"
    VALID = "valid"
    INVALID = "invalid"


@dataclass
class VerificationResult:
    """Complete verification result.

    ``step`` is the last state reached successfully; for an invalid result
    it tells where verification stopped.
    """

    valid: bool
    step: VerificationStep
    credential_id: str | None = None
    issuer: str | None = None
    verification_method: str | None = None
    reason: str | None = None

    @property
    def status(self) -> VerificationStep:
        return VerificationStep.VALID if self.valid else VerificationStep.INVALID


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: If the value is not a valid timestamp.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVerifier:
    """Verifies credentials against their issuer's DID Document."""

    def __init__(
        self,
        did_resolver: DIDResolver,
        statuslist_checker: StatusListChecker | None = None,
        verify_status: bool = True,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the verifier.

        Args:
            did_resolver: Resolver for issuer DIDs.
            statuslist_checker: Checker for credentialStatus entries. Without
                one, any credential carrying a status fails closed.
            verify_status: Whether to check credential status (revocation).
            now: Clock returning an aware datetime, injectable for tests.
        """
        self.did_resolver = did_resolver
        self.statuslist_checker = statuslist_checker
        self.verify_status = verify_status
        self._now = now

    def is_valid(self, credential: dict[str, Any]) -> bool:
        """Boolean shortcut for ``verify``."""
        return self.verify(credential).valid

    def verify(self, credential: dict[str, Any]) -> VerificationResult:
        """Verify a Verifiable Credential.

        Args:
            credential: The Verifiable Credential to verify.

        Returns:
            VerificationResult describing the outcome.
        """
        return self._safe_verify(credential, depth=0)

    def _safe_verify(self, credential: Any, depth: int) -> VerificationResult:
        try:
            return self._verify(credential, depth)
        except Exception as e:
            log.exception("Unexpected error during credential verification")
            return VerificationResult(
                valid=False,
                step=VerificationStep.UNCHECKED,
                reason=f"Verification error: {e}",
            )

    def _verify(self, credential: Any, depth: int) -> VerificationResult:
        if not isinstance(credential, dict):
            return VerificationResult(
                valid=False,
                step=VerificationStep.UNCHECKED,
                reason="Credential must be a JSON object",
            )

        credential_id = credential.get("id")
        issuer = issuer_id(credential)
        step = VerificationStep.UNCHECKED

        def invalid(reason: str) -> VerificationResult:
            log.info(
                "Credential %s invalid after %s: %s",
                credential_id or "<no id>",
                step.value,
                reason,
            )
            return VerificationResult(
                valid=False,
                step=step,
                credential_id=credential_id,
                issuer=issuer,
                verification_method=method_id,
                reason=reason,
            )

        method_id: str | None = None

        # 1. Structure
        proof = self._select_proof(credential.get("proof"))
        if issuer is None:
            return invalid("Missing issuer")
        if proof is None:
            return invalid("Missing proof")
        step = VerificationStep.STRUCTURE_VALID

        # 2. Issuer DID Document
        try:
            document = self._resolve_document(base_did(issuer))
        except TrustEngineError as e:
            return invalid(f"DID resolution failed: {e}")
        step = VerificationStep.ISSUER_RESOLVED

        # 3. Verification method
        method_id = proof.get("verificationMethod")
        if not isinstance(method_id, str) or not method_id:
            return invalid("Missing verificationMethod in proof")
        method = document.find_verification_method(method_id)
        if method is None:
            return invalid(f"Verification method {method_id} not found in DID Document")
        step = VerificationStep.METHOD_FOUND

        # 4. Signature
        outcome = verify_proof(credential, proof, method)
        if not outcome.valid:
            return invalid(f"Proof verification failed: {outcome.reason}")
        step = VerificationStep.SIGNATURE_VALID

        # 5. Expiration
        expiration = credential.get("expirationDate")
        if expiration is not None:
            try:
                expires_at = parse_timestamp(expiration)
            except (TypeError, ValueError, AttributeError):
                return invalid(f"Invalid expirationDate: {expiration!r}")
            if expires_at < self._now():
                return invalid(f"Credential expired at {expiration}")

        # 6. Status
        note = None
        status = credential.get("credentialStatus")
        if status is not None and self.verify_status:
            if depth >= MAX_STATUS_DEPTH:
                return invalid("Status list nesting too deep")
            if self.statuslist_checker is None:
                return invalid("No status list checker configured")
            outcome = self.statuslist_checker.evaluate(
                status,
                lambda list_credential: self._safe_verify(list_credential, depth + 1).valid,
            )
            if not outcome.valid:
                return invalid(f"Status check failed: {outcome.reason}")
            note = outcome.reason
            step = VerificationStep.STATUS_CHECKED

        log.debug("Credential %s verified (issuer %s)", credential_id, issuer)
        return VerificationResult(
            valid=True,
            step=VerificationStep.VALID,
            credential_id=credential_id,
            issuer=issuer,
            verification_method=method_id,
            reason=note,
        )

    def _select_proof(self, proof: Any) -> dict[str, Any] | None:
        """First proof of a proof set; only that one is verified."""
        if isinstance(proof, list):
            proof = proof[0] if proof else None
        return proof if isinstance(proof, dict) and proof else None

    def _resolve_document(self, did: str) -> DIDDocument:
        """Resolve the issuer DID to a parsed DID Document.

        Falls back to the DID Document specific entry point when general
        resolution yields some other content type.

        Raises:
            DIDResolutionError: If no DID Document can be obtained.
        """
        result = self.did_resolver.resolve(did)
        if result.error is None and result.is_did_document:
            return DIDDocument.from_dict(result.did_document)

        log.debug(
            "Resolution of %s gave %s (%s); requesting DID Document",
            did,
            result.content_type,
            result.error,
        )
        result = self.did_resolver.resolve_did_document(did)
        if result.error is not None or result.did_document is None:
            raise DIDResolutionError(result.error or f"No DID Document for {did}")
        return DIDDocument.from_dict(result.did_document)
