"""Shared fixtures: issuer keys, DID Document and credential signing."""

import base64
import copy
import gzip

import base58
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from vc_trust.did_resolver import StaticDIDResolver
from vc_trust.resilience import ResilientClient, RetryPolicy
from vc_trust.signatures import signing_input

ISSUER_DID = "did:example:issuer"
SUBJECT_DID = "did:btco:123/0"
ED25519_METHOD = f"{ISSUER_DID}#key-1"
SECP256K1_METHOD = f"{ISSUER_DID}#key-2"


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_bitstring(set_indices=(), length: int = 1024) -> bytes:
    """Bitstring with the given indices set, bit 0 being the MSB of byte 0."""
    ba = bytearray(length // 8)
    for index in set_indices:
        ba[index // 8] |= 1 << (7 - (index % 8))
    return bytes(ba)


def encode_status_list(set_indices=(), length: int = 1024) -> str:
    """StatusList2021 encodedList: base64url of the gzipped bitstring."""
    return b64url(gzip.compress(make_bitstring(set_indices, length)))


def encode_revocation_list(set_indices=(), length: int = 1024) -> str:
    """RevocationList2020 encodedList: plain base64 of the bitstring."""
    return base64.b64encode(make_bitstring(set_indices, length)).decode()


@pytest.fixture
def ed25519_private_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def secp256k1_private_key():
    return ec.generate_private_key(ec.SECP256K1())


@pytest.fixture
def secp256k1_jwk(secp256k1_private_key):
    numbers = secp256k1_private_key.public_key().public_numbers()
    return {
        "kty": "EC",
        "crv": "secp256k1",
        "x": b64url(numbers.x.to_bytes(32, byteorder="big")),
        "y": b64url(numbers.y.to_bytes(32, byteorder="big")),
    }


@pytest.fixture
def ed25519_public_bytes(ed25519_private_key):
    return ed25519_private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


@pytest.fixture
def did_document(ed25519_public_bytes, secp256k1_jwk):
    """Issuer DID Document with an Ed25519 and a secp256k1 key."""
    return {
        "@context": ["https://www.w3.org/ns/did/v1"],
        "id": ISSUER_DID,
        "verificationMethod": [
            {
                "id": ED25519_METHOD,
                "type": "Ed25519VerificationKey2020",
                "controller": ISSUER_DID,
                "publicKeyMultibase": "z"
                + base58.b58encode(b"\xed\x01" + ed25519_public_bytes).decode(),
            },
            {
                "id": SECP256K1_METHOD,
                "type": "EcdsaSecp256k1VerificationKey2019",
                "controller": ISSUER_DID,
                "publicKeyJwk": secp256k1_jwk,
            },
        ],
        "assertionMethod": [ED25519_METHOD, SECP256K1_METHOD],
    }


@pytest.fixture
def resolver(did_document):
    return StaticDIDResolver({ISSUER_DID: did_document})


@pytest.fixture
def client():
    """Resilient client that never sleeps between retries."""
    with ResilientClient(retry=RetryPolicy(max_retries=2), sleep=lambda delay: None) as c:
        yield c


@pytest.fixture
def credential():
    """Unsigned collectible credential."""
    return {
        "@context": [
            "https://www.w3.org/ns/credentials/v2",
            "https://ordinals.plus/v1",
        ],
        "id": "urn:uuid:7d3b8f1e-0000-4000-8000-000000000001",
        "type": ["VerifiableCredential", "VerifiableCollectible"],
        "issuer": {"id": ISSUER_DID},
        "issuanceDate": "2025-01-15T10:00:00Z",
        "credentialSubject": {
            "id": SUBJECT_DID,
            "type": "Collectible",
            "title": "Sunrise #1",
            "creator": "Jean-Pierre Müller",
        },
    }


@pytest.fixture
def sign(ed25519_private_key, secp256k1_private_key):
    """Return a function that attaches a DataIntegrity proof to a credential."""

    def _sign(credential: dict, method: str = ED25519_METHOD, der: bool = True) -> dict:
        signed = copy.deepcopy(credential)
        signed["proof"] = {
            "type": "DataIntegrityProof",
            "created": "2025-01-15T10:00:00Z",
            "verificationMethod": method,
            "proofPurpose": "assertionMethod",
        }
        message = signing_input(signed)

        if method == SECP256K1_METHOD:
            signature = secp256k1_private_key.sign(message, ec.ECDSA(hashes.SHA256()))
            if not der:
                r, s = decode_dss_signature(signature)
                signature = r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big")
        else:
            signature = ed25519_private_key.sign(message)

        signed["proof"]["proofValue"] = base64.b64encode(signature).decode()
        return signed

    return _sign
