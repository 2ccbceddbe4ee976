"""
Credential status checking.

Implements RevocationList2020 and W3C StatusList2021 bitstring decoding.
https://w3c-ccg.github.io/vc-status-rl-2020/
https://www.w3.org/TR/vc-status-list/

Fetch and decode failures fail closed. An unrecognized status type is
reported as active (fail open) and logged.
"""

from __future__ import annotations

import binascii
import gzip
import logging
import zlib
from typing import Any, Callable

from vc_trust.cache import ResourceCache
from vc_trust.errors import TrustEngineError
from vc_trust.keys import KeyDecodeError, b64decode_any
from vc_trust.resilience import ResilientClient
from vc_trust.signatures import Outcome

log = logging.getLogger(__name__)

REVOCATION_LIST_2020 = "RevocationList2020Status"
STATUS_LIST_2021 = "StatusList2021Entry"

# Purposes where a set bit means the credential is no longer active
INACTIVE_PURPOSES = {"revocation", "suspension"}

CredentialVerifyFn = Callable[[dict[str, Any]], bool]


class StatusListError(Exception):
    """Raised when a status list cannot be fetched or decoded."""


def _index(value: Any) -> int | None:
    """Parse a non-negative list index (int or decimal string)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class StatusListChecker:
    """Checks a credentialStatus entry against its remote status list."""

    def __init__(
        self,
        client: ResilientClient,
        cache: ResourceCache | None = None,
    ) -> None:
        """Initialize the status list checker.

        Args:
            client: Client used for all list fetches.
            cache: Cache for fetched list documents. Created if not provided.
        """
        self.client = client
        self.cache = cache if cache is not None else ResourceCache()

    def check(
        self,
        status: dict[str, Any],
        verify_credential: CredentialVerifyFn | None = None,
    ) -> bool:
        """Return True if the credential is currently valid per its status.

        Args:
            status: The credential's ``credentialStatus`` object.
            verify_credential: Verifies a status list credential before its
                contents are trusted. Without it, lists wrapped in a
                credential fail closed.
        """
        return self.evaluate(status, verify_credential).valid

    def evaluate(
        self,
        status: dict[str, Any],
        verify_credential: CredentialVerifyFn | None = None,
    ) -> Outcome:
        """Like ``check`` but returns the reason along with the result."""
        if not isinstance(status, dict):
            return Outcome.fail("credentialStatus must be an object")

        status_type = status.get("type")
        try:
            if status_type == REVOCATION_LIST_2020:
                return self._check_revocation_list_2020(status, verify_credential)
            if status_type == STATUS_LIST_2021:
                return self._check_status_list_2021(status, verify_credential)
        except (StatusListError, TrustEngineError) as e:
            log.info("Status check failed for %s: %s", status_type, e)
            return Outcome.fail(str(e))

        log.warning("Unknown credential status type %r; treating as active", status_type)
        return Outcome(True, f"Unknown status type: {status_type}")

    def _check_revocation_list_2020(
        self,
        status: dict[str, Any],
        verify_credential: CredentialVerifyFn | None,
    ) -> Outcome:
        list_url = status.get("id")
        index = _index(status.get("revocationListIndex"))
        if not isinstance(list_url, str) or not list_url:
            return Outcome.fail("RevocationList2020Status is missing id")
        if index is None:
            return Outcome.fail("RevocationList2020Status has an invalid revocationListIndex")

        wrapper_url = status.get("revocationListCredential")
        if wrapper_url is not None and (not isinstance(wrapper_url, str) or not wrapper_url):
            return Outcome.fail("RevocationList2020Status has an invalid revocationListCredential")

        list_document = self._fetch_json(list_url)

        if wrapper_url:
            wrapper = self._fetch_json(wrapper_url)
            failure = self._verify_list_credential(wrapper, verify_credential)
            if failure is not None:
                return failure

        encoded_list = self._encoded_list(list_document)
        bitstring = self._decode_base64(encoded_list)
        revoked = self._get_bit(bitstring, index)
        if revoked:
            return Outcome.fail(f"Credential is revoked (index {index})")
        return Outcome.ok()

    def _check_status_list_2021(
        self,
        status: dict[str, Any],
        verify_credential: CredentialVerifyFn | None,
    ) -> Outcome:
        list_url = status.get("statusListCredential")
        index = _index(status.get("statusListIndex"))
        if not isinstance(list_url, str) or not list_url:
            return Outcome.fail("StatusList2021Entry is missing statusListCredential")
        if index is None:
            return Outcome.fail("StatusList2021Entry has an invalid statusListIndex")

        sl_credential = self._fetch_json(list_url)
        failure = self._verify_list_credential(sl_credential, verify_credential)
        if failure is not None:
            return failure

        subject = sl_credential.get("credentialSubject")
        encoded_list = subject.get("encodedList") if isinstance(subject, dict) else None
        if not isinstance(encoded_list, str) or not encoded_list:
            raise StatusListError("Missing encodedList in StatusList credential")

        bitstring = self._decode_bitstring(encoded_list)
        is_set = self._get_bit(bitstring, index)

        purpose = status.get("statusPurpose")
        if purpose in INACTIVE_PURPOSES:
            if is_set:
                return Outcome.fail(f"Credential {purpose} bit is set (index {index})")
            return Outcome.ok()

        # Any other purpose: a set bit marks the credential active
        if is_set:
            return Outcome.ok()
        return Outcome.fail(f"Status bit for purpose {purpose!r} is not set (index {index})")

    def _verify_list_credential(
        self,
        credential: Any,
        verify_credential: CredentialVerifyFn | None,
    ) -> Outcome | None:
        """None if the list credential verified, else the failure."""
        if not isinstance(credential, dict):
            return Outcome.fail("Status list credential is not an object")
        if verify_credential is None:
            return Outcome.fail("No verifier available for status list credential")
        if not verify_credential(credential):
            return Outcome.fail("Status list credential failed verification")
        return None

    def _fetch_json(self, url: str) -> Any:
        """Fetch a list document through the cache.

        Raises:
            TrustEngineError: If fetching fails. Failures are not cached.
        """
        return self.cache.get_or_fetch(
            url,
            lambda: self.client.get_json(
                url, headers={"Accept": "application/vc+ld+json, application/json"}
            ),
        )

    def _encoded_list(self, document: Any) -> str:
        """``encodedList`` from a list document or its credentialSubject."""
        if isinstance(document, dict):
            encoded = document.get("encodedList")
            if encoded is None and isinstance(document.get("credentialSubject"), dict):
                encoded = document["credentialSubject"].get("encodedList")
            if isinstance(encoded, str) and encoded:
                return encoded
        raise StatusListError("Missing encodedList in revocation list")

    def _decode_base64(self, encoded_list: str) -> bytes:
        """Decode an uncompressed base64 bitstring (RevocationList2020)."""
        try:
            return b64decode_any(encoded_list)
        except KeyDecodeError as e:
            raise StatusListError(f"Failed to decode revocation list: {e}") from e

    def _decode_bitstring(self, encoded_list: str) -> bytes:
        """Decode a W3C StatusList2021 encoded bitstring.

        Decoding: gunzip(base64url_decode(encoded_list))

        Raises:
            StatusListError: If decoding fails.
        """
        try:
            compressed = b64decode_any(encoded_list)
            return gzip.decompress(compressed)
        except (KeyDecodeError, OSError, EOFError, zlib.error, binascii.Error) as e:
            raise StatusListError(f"Failed to decode bitstring: {e}") from e

    def _get_bit(self, bitstring: bytes, index: int) -> bool:
        """Get the value of a bit at the given index.

        Bit 0 is the leftmost (most significant) bit of byte 0.

        Raises:
            StatusListError: If index is out of range.
        """
        total_bits = len(bitstring) * 8
        if index < 0 or index >= total_bits:
            raise StatusListError(
                f"Status list index {index} out of range [0, {total_bits})"
            )

        byte_index = index // 8
        bit_position = 7 - (index % 8)

        return bool((bitstring[byte_index] >> bit_position) & 1)
