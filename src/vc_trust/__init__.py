"""
VC Trust Engine - issue and verify W3C Verifiable Credentials.

Supports:
- Data Integrity proofs with Ed25519 and ECDSA secp256k1 keys
- JWT proofs
- RevocationList2020 and StatusList2021 status checking
- Resilient HTTP access with retries and a circuit breaker
"""

__version__ = "0.1.0"

from vc_trust.config import TrustEngineConfig
from vc_trust.did_resolver import DIDResolver, StaticDIDResolver, WebDIDResolver
from vc_trust.engine import TrustEngine, build_engine
from vc_trust.errors import (
    ApiError,
    CircuitOpenError,
    DIDResolutionError,
    NetworkError,
    ServerError,
    TrustEngineError,
)
from vc_trust.issuer import CredentialIssuer, IssuanceParams
from vc_trust.repository import CredentialRepository, InMemoryCredentialRepository
from vc_trust.statuslist import StatusListChecker
from vc_trust.verifier import CredentialVerifier, VerificationResult, VerificationStep

__all__ = [
    "ApiError",
    "CircuitOpenError",
    "CredentialIssuer",
    "CredentialRepository",
    "CredentialVerifier",
    "DIDResolutionError",
    "DIDResolver",
    "InMemoryCredentialRepository",
    "IssuanceParams",
    "NetworkError",
    "ServerError",
    "StaticDIDResolver",
    "StatusListChecker",
    "TrustEngine",
    "TrustEngineConfig",
    "TrustEngineError",
    "VerificationResult",
    "VerificationStep",
    "WebDIDResolver",
    "build_engine",
]
