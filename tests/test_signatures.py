"""Tests for proof signature verification."""

import base64

import base58
import jwt
import pytest
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from conftest import ED25519_METHOD, ISSUER_DID, SECP256K1_METHOD, b64url
from vc_trust.keys import (
    Base64Key,
    HexKey,
    JwkKey,
    KeyDecodeError,
    MultibaseKey,
    VerificationMethod,
    decode_multibase,
    parse_key_material,
)
from vc_trust.signatures import (
    ProofType,
    canonicalize,
    decode_proof_value,
    parse_proof_type,
    signing_input,
    verify_proof,
)


def method_with(key, method_type="Ed25519VerificationKey2020", method_id=ED25519_METHOD):
    return VerificationMethod(id=method_id, type=method_type, controller=ISSUER_DID, key=key)


def flip_bit(proof_value: str, bit: int = 0) -> str:
    raw = bytearray(base64.b64decode(proof_value))
    raw[bit // 8] ^= 1 << (bit % 8)
    return base64.b64encode(bytes(raw)).decode()


class TestCanonicalization:
    """Tests for deterministic JSON."""

    def test_sort_keys(self):
        assert canonicalize({"z": 1, "a": 2, "m": 3}) == '{"a":2,"m":3,"z":1}'

    def test_nested_keys_sorted(self):
        assert canonicalize({"b": {"y": 1, "x": 2}, "a": [{"d": 1, "c": 2}]}) == (
            '{"a":[{"c":2,"d":1}],"b":{"x":2,"y":1}}'
        )

    def test_unicode_preserved(self):
        assert canonicalize({"name": "Müller"}) == '{"name":"Müller"}'

    def test_signing_input_drops_only_proof_value(self):
        credential = {
            "issuer": ISSUER_DID,
            "proof": {"type": "DataIntegrityProof", "proofValue": "abc"},
        }
        message = signing_input(credential)
        assert message == b'{"issuer":"did:example:issuer","proof":{"type":"DataIntegrityProof"}}'
        # Input is left untouched
        assert credential["proof"]["proofValue"] == "abc"

    def test_signing_input_handles_proof_list(self):
        credential = {"proof": [{"proofValue": "a", "n": 1}, {"proofValue": "b", "n": 2}]}
        assert signing_input(credential) == b'{"proof":[{"n":1},{"n":2}]}'


class TestProofValueDecoding:
    def test_standard_and_urlsafe(self):
        raw = bytes(range(250, 256)) * 3
        assert decode_proof_value(base64.b64encode(raw).decode()) == raw
        assert decode_proof_value(b64url(raw)) == raw

    @pytest.mark.parametrize("value", ["", "not base64!", "QUJD=x"])
    def test_invalid(self, value):
        with pytest.raises(KeyDecodeError):
            decode_proof_value(value)

    def test_non_canonical_rejected(self):
        # "QUI=" is canonical for b"AB"; "QUJ=" decodes to the same bytes
        assert decode_proof_value("QUI=") == b"AB"
        with pytest.raises(KeyDecodeError):
            decode_proof_value("QUJ=")


class TestKeyMaterial:
    def test_priority_order(self):
        key = parse_key_material(
            {"publicKeyHex": "00", "publicKeyMultibase": "z1", "publicKeyJwk": {"kty": "EC"}}
        )
        assert isinstance(key, JwkKey)
        assert isinstance(parse_key_material({"publicKeyHex": "00", "publicKeyBase64": "AA=="}), HexKey)

    def test_no_key(self):
        assert parse_key_material({"id": "x"}) is None

    def test_unsupported_multibase_prefix(self):
        with pytest.raises(KeyDecodeError):
            decode_multibase("f00ff")


class TestProofType:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("DataIntegrityProof", ProofType.DATA_INTEGRITY),
            ("DataIntegrity", ProofType.DATA_INTEGRITY),
            ("JwtProof2020", ProofType.JWT),
            ("JWT", ProofType.JWT),
            ("BbsBlsSignature2020", ProofType.BBS),
            ("Ed25519Signature2018", None),
            (None, None),
        ],
    )
    def test_parse(self, value, expected):
        assert parse_proof_type(value) is expected


class TestEd25519:
    def test_multibase_key(self, credential, sign, did_document):
        signed = sign(credential)
        method = VerificationMethod.from_dict(did_document["verificationMethod"][0])
        assert verify_proof(signed, signed["proof"], method).valid

    def test_multibase_without_prefix(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        key = MultibaseKey("z" + base58.b58encode(ed25519_public_bytes).decode())
        assert verify_proof(signed, signed["proof"], method_with(key)).valid

    def test_base64_multibase_key(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        key = MultibaseKey("m" + base64.b64encode(ed25519_public_bytes).decode())
        assert verify_proof(signed, signed["proof"], method_with(key)).valid

    def test_hex_key(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        key = HexKey(ed25519_public_bytes.hex())
        assert verify_proof(signed, signed["proof"], method_with(key)).valid

    def test_base64_key(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        key = Base64Key(base64.b64encode(ed25519_public_bytes).decode())
        assert verify_proof(signed, signed["proof"], method_with(key)).valid

    def test_jwk_key_fails_closed(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        key = JwkKey({"kty": "OKP", "crv": "Ed25519", "x": b64url(ed25519_public_bytes)})
        outcome = verify_proof(signed, signed["proof"], method_with(key))
        assert not outcome.valid
        assert "Ed25519 key error" in outcome.reason

    def test_missing_key_fails(self, credential, sign):
        signed = sign(credential)
        assert not verify_proof(signed, signed["proof"], method_with(None)).valid

    @pytest.mark.parametrize("bit", [0, 7, 100, 511])
    def test_single_bit_flip_fails(self, credential, sign, did_document, bit):
        signed = sign(credential)
        signed["proof"]["proofValue"] = flip_bit(signed["proof"]["proofValue"], bit)
        method = VerificationMethod.from_dict(did_document["verificationMethod"][0])
        assert not verify_proof(signed, signed["proof"], method).valid

    def test_wrong_key_fails(self, credential, sign):
        signed = sign(credential)
        key = HexKey("11" * 32)
        assert not verify_proof(signed, signed["proof"], method_with(key)).valid


class TestSecp256k1:
    def secp_method(self, key):
        return method_with(key, "EcdsaSecp256k1VerificationKey2019", SECP256K1_METHOD)

    def test_der_signature_with_jwk(self, credential, sign, secp256k1_jwk):
        signed = sign(credential, method=SECP256K1_METHOD)
        method = self.secp_method(JwkKey(secp256k1_jwk))
        assert verify_proof(signed, signed["proof"], method).valid

    def test_raw_signature(self, credential, sign, secp256k1_jwk):
        signed = sign(credential, method=SECP256K1_METHOD, der=False)
        method = self.secp_method(JwkKey(secp256k1_jwk))
        assert verify_proof(signed, signed["proof"], method).valid

    def test_p256k_curve_name(self, credential, sign, secp256k1_jwk):
        signed = sign(credential, method=SECP256K1_METHOD)
        method = self.secp_method(JwkKey({**secp256k1_jwk, "crv": "P-256K"}))
        assert verify_proof(signed, signed["proof"], method).valid

    def test_compressed_multibase_key(self, credential, sign, secp256k1_private_key):
        signed = sign(credential, method=SECP256K1_METHOD)
        compressed = secp256k1_private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.CompressedPoint
        )
        key = MultibaseKey("z" + base58.b58encode(b"\xe7\x01" + compressed).decode())
        assert verify_proof(signed, signed["proof"], self.secp_method(key)).valid

    def test_hex_key(self, credential, sign, secp256k1_private_key):
        signed = sign(credential, method=SECP256K1_METHOD)
        uncompressed = secp256k1_private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.UncompressedPoint
        )
        assert verify_proof(signed, signed["proof"], self.secp_method(HexKey(uncompressed.hex()))).valid

    def test_base64_multibase_rejected(self, credential, sign, secp256k1_private_key):
        signed = sign(credential, method=SECP256K1_METHOD)
        compressed = secp256k1_private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.CompressedPoint
        )
        key = MultibaseKey("m" + base64.b64encode(compressed).decode())
        assert not verify_proof(signed, signed["proof"], self.secp_method(key)).valid

    def test_wrong_length_signature(self, credential, sign, secp256k1_jwk):
        signed = sign(credential, method=SECP256K1_METHOD)
        signed["proof"]["proofValue"] = base64.b64encode(b"\x01" * 63).decode()
        outcome = verify_proof(signed, signed["proof"], self.secp_method(JwkKey(secp256k1_jwk)))
        assert not outcome.valid
        assert "neither DER" in outcome.reason

    def test_tampered_message(self, credential, sign, secp256k1_jwk):
        signed = sign(credential, method=SECP256K1_METHOD)
        signed["credentialSubject"]["title"] = "Sunset #2"
        assert not verify_proof(signed, signed["proof"], self.secp_method(JwkKey(secp256k1_jwk))).valid


class TestDispatch:
    def test_unsupported_method_type(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        method = method_with(HexKey(ed25519_public_bytes.hex()), method_type="RsaVerificationKey2018")
        outcome = verify_proof(signed, signed["proof"], method)
        assert not outcome.valid
        assert "Unsupported key type" in outcome.reason

    def test_bbs_always_fails(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        signed["proof"]["type"] = "BbsBlsSignature2020"
        outcome = verify_proof(signed, signed["proof"], method_with(HexKey(ed25519_public_bytes.hex())))
        assert not outcome.valid
        assert "BBS" in outcome.reason

    def test_unknown_proof_type(self, credential, sign, ed25519_public_bytes):
        signed = sign(credential)
        signed["proof"]["type"] = "Ed25519Signature2018"
        assert not verify_proof(signed, signed["proof"], method_with(HexKey(ed25519_public_bytes.hex()))).valid


class TestJwt:
    def jwt_method(self, jwk):
        return method_with(JwkKey(jwk), "JsonWebKey2020", SECP256K1_METHOD)

    def jwt_proof(self, token):
        return {"type": "JwtProof2020", "verificationMethod": SECP256K1_METHOD, "proofValue": token}

    def test_valid_jwt(self, credential, secp256k1_private_key, secp256k1_jwk):
        token = jwt.encode({"iss": ISSUER_DID, "sub": "x"}, secp256k1_private_key, algorithm="ES256K")
        assert verify_proof(credential, self.jwt_proof(token), self.jwt_method(secp256k1_jwk)).valid

    def test_issuer_mismatch(self, credential, secp256k1_private_key, secp256k1_jwk):
        token = jwt.encode({"iss": "did:example:other"}, secp256k1_private_key, algorithm="ES256K")
        outcome = verify_proof(credential, self.jwt_proof(token), self.jwt_method(secp256k1_jwk))
        assert not outcome.valid

    def test_missing_iss(self, credential, secp256k1_private_key, secp256k1_jwk):
        token = jwt.encode({"sub": "x"}, secp256k1_private_key, algorithm="ES256K")
        assert not verify_proof(credential, self.jwt_proof(token), self.jwt_method(secp256k1_jwk)).valid

    def test_symmetric_key_rejected(self, credential):
        secret = b"s" * 32
        token = jwt.encode({"iss": ISSUER_DID}, secret, algorithm="HS256")
        jwk = {"kty": "oct", "k": b64url(secret)}
        outcome = verify_proof(credential, self.jwt_proof(token), self.jwt_method(jwk))
        assert not outcome.valid

    def test_requires_jwk_method(self, credential, secp256k1_private_key, ed25519_public_bytes):
        token = jwt.encode({"iss": ISSUER_DID}, secp256k1_private_key, algorithm="ES256K")
        method = method_with(HexKey(ed25519_public_bytes.hex()))
        outcome = verify_proof(credential, self.jwt_proof(token), method)
        assert not outcome.valid
        assert "publicKeyJwk" in outcome.reason

    def test_garbage_token(self, credential, secp256k1_jwk):
        assert not verify_proof(credential, self.jwt_proof("a.b.c"), self.jwt_method(secp256k1_jwk)).valid
