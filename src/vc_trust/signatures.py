"""
Signature verification for credential proofs.

Dispatch is by proof type:
- DataIntegrity: canonical JSON of the credential without proof values,
  then Ed25519 or secp256k1 depending on the verification method type
- JWT: compact JWS in ``proofValue`` checked against the method's JWK
- BBS: recognized, not implemented, always invalid

Every function here fails closed: decode errors, unsupported encodings and
exceptions raised by the crypto backend all become an invalid Outcome.
"""

from __future__ import annotations

import base64
import binascii
import copy
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jwt
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from vc_trust.keys import (
    JwkKey,
    KeyDecodeError,
    VerificationMethod,
    ed25519_public_bytes,
    secp256k1_public_bytes,
)

log = logging.getLogger(__name__)

# Order of the secp256k1 group
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# JWT algorithms usable with a published public key
JWT_ALGORITHMS = {
    "ES256",
    "ES256K",
    "ES384",
    "ES512",
    "EdDSA",
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
}


class ProofType(Enum):
    """Supported proof families."""

    DATA_INTEGRITY = "DataIntegrityProof"
    JWT = "JwtProof2020"
    BBS = "BbsBlsSignature2020"


_PROOF_TYPE_ALIASES = {
    "DataIntegrityProof": ProofType.DATA_INTEGRITY,
    "DataIntegrity": ProofType.DATA_INTEGRITY,
    "JwtProof2020": ProofType.JWT,
    "JWT": ProofType.JWT,
    "BbsBlsSignature2020": ProofType.BBS,
    "BBS": ProofType.BBS,
}


def parse_proof_type(value: Any) -> ProofType | None:
    if not isinstance(value, str):
        return None
    return _PROOF_TYPE_ALIASES.get(value)


@dataclass(frozen=True)
class Outcome:
    """Result of a verification-path check."""

    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> Outcome:
        return cls(True)

    @classmethod
    def fail(cls, reason: str) -> Outcome:
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.valid


def canonicalize(data: Any) -> str:
    """Deterministic JSON: recursively sorted keys, compact, unicode kept."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def unsigned_document(credential: dict[str, Any]) -> dict[str, Any]:
    """Copy of the credential with every proof's ``proofValue`` removed."""
    document = copy.deepcopy(credential)
    proof = document.get("proof")
    proofs = proof if isinstance(proof, list) else [proof]
    for p in proofs:
        if isinstance(p, dict):
            p.pop("proofValue", None)
    return document


def signing_input(credential: dict[str, Any]) -> bytes:
    """Message bytes a DataIntegrity proof signs."""
    return canonicalize(unsigned_document(credential)).encode("utf-8")


def decode_proof_value(value: str) -> bytes:
    """Decode a base64 (standard or URL-safe) proof value.

    Only the canonical encoding of the decoded bytes is accepted, so two
    different strings never decode to the same signature.

    Raises:
        KeyDecodeError: If the value is not canonical base64.
    """
    if not isinstance(value, str) or not value:
        raise KeyDecodeError("Empty proofValue")
    urlsafe = "-" in value or "_" in value
    altchars = b"-_" if urlsafe else None
    stripped = value.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        raw = base64.b64decode(padded, altchars=altchars, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyDecodeError(f"Invalid base64 proofValue: {e}") from e
    if base64.b64encode(raw, altchars=altchars).decode().rstrip("=") != stripped:
        raise KeyDecodeError("Non-canonical base64 proofValue")
    return raw


def verify_ed25519(
    message: bytes, signature: bytes, method: VerificationMethod
) -> Outcome:
    """Verify a raw Ed25519 signature over the message bytes (no pre-hash)."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(ed25519_public_bytes(method.key))
        public_key.verify(signature, message)
    except InvalidSignature:
        return Outcome.fail("Invalid Ed25519 signature")
    except (KeyDecodeError, ValueError) as e:
        return Outcome.fail(f"Ed25519 key error: {e}")
    return Outcome.ok()


def _secp256k1_rs(signature: bytes) -> tuple[int, int] | None:
    """(r, s) from a DER signature, or from raw 64-byte r||s."""
    try:
        return decode_dss_signature(signature)
    except ValueError:
        pass
    if len(signature) == 64:
        return (
            int.from_bytes(signature[:32], byteorder="big"),
            int.from_bytes(signature[32:], byteorder="big"),
        )
    return None


def verify_secp256k1(
    message: bytes, signature: bytes, method: VerificationMethod
) -> Outcome:
    """Verify an ECDSA secp256k1 signature over SHA-256(message).

    The signature may be DER or raw r||s; S is normalized to low-S form.
    """
    try:
        public_key = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256K1(), secp256k1_public_bytes(method.key)
        )
    except (KeyDecodeError, ValueError) as e:
        return Outcome.fail(f"secp256k1 key error: {e}")

    rs = _secp256k1_rs(signature)
    if rs is None:
        return Outcome.fail(
            f"secp256k1 signature is neither DER nor 64 raw bytes ({len(signature)} bytes)"
        )
    r, s = rs
    if s > SECP256K1_N // 2:
        s = SECP256K1_N - s

    digest = hashes.Hash(hashes.SHA256())
    digest.update(message)
    try:
        public_key.verify(
            encode_dss_signature(r, s),
            digest.finalize(),
            ec.ECDSA(Prehashed(hashes.SHA256())),
        )
    except InvalidSignature:
        return Outcome.fail("Invalid secp256k1 signature")
    except ValueError as e:
        return Outcome.fail(f"secp256k1 signature error: {e}")
    return Outcome.ok()


def verify_data_integrity(
    credential: dict[str, Any],
    proof: dict[str, Any],
    method: VerificationMethod,
) -> Outcome:
    """Verify a DataIntegrity proof, dispatching on the method's key type."""
    message = signing_input(credential)
    try:
        signature = decode_proof_value(proof.get("proofValue", ""))
    except KeyDecodeError as e:
        return Outcome.fail(str(e))

    key_type = method.type or ""
    if "Ed25519" in key_type:
        return verify_ed25519(message, signature, method)
    if "secp256k1" in key_type or "Secp256k1" in key_type:
        return verify_secp256k1(message, signature, method)
    return Outcome.fail(f"Unsupported key type for verification: {key_type}")


def issuer_id(credential: dict[str, Any]) -> str | None:
    """Issuer DID of a credential (string issuer or object with ``id``)."""
    issuer = credential.get("issuer")
    if isinstance(issuer, str):
        return issuer
    if isinstance(issuer, dict) and isinstance(issuer.get("id"), str):
        return issuer["id"]
    return None


def verify_jwt(
    credential: dict[str, Any],
    proof: dict[str, Any],
    method: VerificationMethod,
) -> Outcome:
    """Verify a compact JWT proof against the method's JWK.

    The ``iss`` claim must equal the credential issuer. Other payload
    claims are not compared with the credential body.
    """
    if not isinstance(method.key, JwkKey):
        return Outcome.fail("JWT proof requires a publicKeyJwk verification method")

    token = proof.get("proofValue") or proof.get("jwt")
    if not isinstance(token, str) or not token:
        return Outcome.fail("Missing JWT in proofValue")

    jwk_data = dict(method.key.jwk)
    if jwk_data.get("crv") == "P-256K":
        jwk_data["crv"] = "secp256k1"

    try:
        public_jwk = jwt.PyJWK(jwk_data)
        if public_jwk.algorithm_name not in JWT_ALGORITHMS:
            return Outcome.fail(f"Unsupported JWT algorithm: {public_jwk.algorithm_name}")
        jwt.decode(
            token,
            key=public_jwk.key,
            algorithms=[public_jwk.algorithm_name],
            issuer=issuer_id(credential),
            options={"require": ["iss"], "verify_aud": False},
        )
    except jwt.PyJWTError as e:
        return Outcome.fail(f"Invalid JWT proof: {e}")
    except Exception as e:
        log.debug("JWT verification raised", exc_info=True)
        return Outcome.fail(f"JWT verification error: {e}")
    return Outcome.ok()


def verify_proof(
    credential: dict[str, Any],
    proof: dict[str, Any],
    method: VerificationMethod,
) -> Outcome:
    """Verify a proof with the given verification method.

    Never raises.
    """
    proof_type = parse_proof_type(proof.get("type"))
    try:
        if proof_type is ProofType.DATA_INTEGRITY:
            return verify_data_integrity(credential, proof, method)
        if proof_type is ProofType.JWT:
            return verify_jwt(credential, proof, method)
        if proof_type is ProofType.BBS:
            return Outcome.fail("BBS+ signature verification is not implemented")
        return Outcome.fail(f"Unsupported proof type: {proof.get('type')}")
    except Exception as e:
        log.warning("Signature verification raised unexpectedly: %s", e)
        return Outcome.fail(f"Signature verification error: {e}")
