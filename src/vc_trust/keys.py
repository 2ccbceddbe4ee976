"""
Verification method key material.

A verification method publishes exactly one public key encoding. The
encoding is resolved once when the method is loaded into one of
``JwkKey``, ``MultibaseKey``, ``HexKey`` or ``Base64Key``; signature
verification then matches on the variant instead of probing fields.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Union

import base58


class KeyDecodeError(ValueError):
    """Raised when key material cannot be decoded."""


@dataclass(frozen=True)
class JwkKey:
    """Public key as a JSON Web Key."""

    jwk: dict[str, Any]

    @property
    def kty(self) -> str:
        return self.jwk.get("kty", "")

    @property
    def crv(self) -> str:
        return self.jwk.get("crv", "")


@dataclass(frozen=True)
class MultibaseKey:
    """Public key in multibase form (``z`` base58btc, ``m`` base64)."""

    value: str


@dataclass(frozen=True)
class HexKey:
    value: str


@dataclass(frozen=True)
class Base64Key:
    value: str


KeyMaterial = Union[JwkKey, MultibaseKey, HexKey, Base64Key]

# Field name -> variant, in resolution priority order
KEY_FIELDS: tuple[tuple[str, type], ...] = (
    ("publicKeyJwk", JwkKey),
    ("publicKeyMultibase", MultibaseKey),
    ("publicKeyHex", HexKey),
    ("publicKeyBase64", Base64Key),
)

# Multicodec prefixes for raw public keys
ED25519_PUB_PREFIX = b"\xed\x01"
SECP256K1_PUB_PREFIX = b"\xe7\x01"


def parse_key_material(data: dict[str, Any]) -> KeyMaterial | None:
    """Pick the key encoding of a verification method object.

    Returns:
        The key variant, or None if no supported field is present.
    """
    for name, variant in KEY_FIELDS:
        value = data.get(name)
        if name == "publicKeyJwk":
            if isinstance(value, dict) and value:
                return JwkKey(jwk=dict(value))
        elif isinstance(value, str) and value:
            return variant(value)
    return None


@dataclass
class VerificationMethod:
    """DID Document verification method."""

    id: str
    type: str
    controller: str
    key: KeyMaterial | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationMethod:
        return cls(
            id=data.get("id", ""),
            type=data.get("type", ""),
            controller=data.get("controller", ""),
            key=parse_key_material(data),
            raw=data,
        )


def b64decode_any(data: str) -> bytes:
    """Decode standard or URL-safe base64, with or without padding.

    Raises:
        KeyDecodeError: If the input is not valid base64.
    """
    cleaned = "".join(data.split()).replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyDecodeError(f"Invalid base64: {e}") from e


def decode_multibase(value: str, allowed: str = "zm") -> bytes:
    """Decode a multibase string.

    Args:
        value: Multibase-encoded string.
        allowed: Accepted prefixes (``z`` base58btc, ``m`` base64).

    Raises:
        KeyDecodeError: On an unsupported prefix or invalid payload.
    """
    if not value:
        raise KeyDecodeError("Empty multibase value")
    prefix, payload = value[0], value[1:]
    if prefix not in allowed:
        raise KeyDecodeError(f"Unsupported multibase prefix: {prefix!r}")
    if prefix == "z":
        try:
            return base58.b58decode(payload)
        except ValueError as e:
            raise KeyDecodeError(f"Invalid base58btc: {e}") from e
    return b64decode_any(payload)


def decode_hex(value: str) -> bytes:
    try:
        return bytes.fromhex(value.removeprefix("0x"))
    except ValueError as e:
        raise KeyDecodeError(f"Invalid hex key: {e}") from e


def ed25519_public_bytes(key: KeyMaterial | None) -> bytes:
    """Raw 32-byte Ed25519 public key from multibase, hex or base64.

    Raises:
        KeyDecodeError: If the encoding is unsupported or malformed.
    """
    if isinstance(key, MultibaseKey):
        raw = decode_multibase(key.value, allowed="zm")
        if len(raw) == 34 and raw.startswith(ED25519_PUB_PREFIX):
            raw = raw[2:]
    elif isinstance(key, HexKey):
        raw = decode_hex(key.value)
    elif isinstance(key, Base64Key):
        raw = b64decode_any(key.value)
    else:
        raise KeyDecodeError(f"Unsupported Ed25519 key encoding: {type(key).__name__}")

    if len(raw) != 32:
        raise KeyDecodeError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return raw


def secp256k1_public_bytes(key: KeyMaterial | None) -> bytes:
    """SEC1-encoded secp256k1 public key (compressed or uncompressed).

    JWK coordinates become ``0x04 || x || y``. Multibase keys must use
    base58btc.

    Raises:
        KeyDecodeError: If the encoding is unsupported or malformed.
    """
    if isinstance(key, JwkKey):
        if key.kty != "EC" or key.crv not in ("P-256K", "secp256k1"):
            raise KeyDecodeError(
                f"JWK is not a secp256k1 key (kty={key.kty!r}, crv={key.crv!r})"
            )
        x = b64decode_any(key.jwk.get("x", ""))
        y = b64decode_any(key.jwk.get("y", ""))
        if len(x) != 32 or len(y) != 32:
            raise KeyDecodeError("secp256k1 JWK coordinates must be 32 bytes")
        return b"\x04" + x + y
    if isinstance(key, MultibaseKey):
        raw = decode_multibase(key.value, allowed="z")
        if len(raw) in (35, 67) and raw.startswith(SECP256K1_PUB_PREFIX):
            raw = raw[2:]
        return raw
    if isinstance(key, HexKey):
        return decode_hex(key.value)
    if isinstance(key, Base64Key):
        return b64decode_any(key.value)
    raise KeyDecodeError("No secp256k1 key material")
