"""
Credential storage.

``CredentialRepository`` is the narrow interface the issuer persists
credentials through. ``InMemoryCredentialRepository`` keeps credentials in
memory with indexes by subject, issuer and inscription, and can persist to
a JSON file, optionally encrypted at rest with Fernet.
"""

from __future__ import annotations

import base64
import copy
import hashlib
import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from cryptography.fernet import Fernet, InvalidToken

from vc_trust.signatures import issuer_id

log = logging.getLogger(__name__)

BACKUP_VERSION = 1


class RepositoryError(Exception):
    """Raised when stored credentials cannot be read or written."""


@dataclass(frozen=True)
class CredentialMetadata:
    """Indexing metadata for a stored credential."""

    inscription_id: str = ""
    title: str = ""
    creator: str = ""


@dataclass
class StoredCredential:
    credential: dict[str, Any]
    metadata: CredentialMetadata
    stored_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "credential": self.credential,
            "metadata": asdict(self.metadata),
            "storedAt": self.stored_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredCredential:
        return cls(
            credential=data["credential"],
            metadata=CredentialMetadata(**data.get("metadata", {})),
            stored_at=data.get("storedAt", ""),
        )


class CredentialRepository(Protocol):
    """Persistence interface for issued credentials."""

    def store_credential(
        self, credential: dict[str, Any], metadata: CredentialMetadata
    ) -> str: ...

    def get_credential_by_id(self, credential_id: str) -> StoredCredential | None: ...

    def find_credentials_by_subject(self, subject_did: str) -> list[StoredCredential]: ...

    def find_credentials_by_issuer(self, issuer_did: str) -> list[StoredCredential]: ...

    def find_credentials_by_inscription(
        self, inscription_id: str
    ) -> list[StoredCredential]: ...

    def create_backup(self, path: str | Path) -> bool: ...

    def restore_from_backup(self, path: str | Path) -> bool: ...


def _subject_ids(credential: dict[str, Any]) -> list[str]:
    subject = credential.get("credentialSubject")
    subjects = subject if isinstance(subject, list) else [subject]
    return [s["id"] for s in subjects if isinstance(s, dict) and isinstance(s.get("id"), str)]


def fernet_for(passphrase: str) -> Fernet:
    """Fernet cipher keyed by SHA-256 of a passphrase."""
    key = base64.urlsafe_b64encode(hashlib.sha256(passphrase.encode("utf-8")).digest())
    return Fernet(key)


class InMemoryCredentialRepository:
    """In-memory credential store with optional JSON file persistence.

    Credentials are copied on the way in and on the way out.
    """

    def __init__(
        self,
        persistence_path: str | Path | None = None,
        encryption_key: str | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            persistence_path: File rewritten after every store. Loaded on
                start if it exists.
            encryption_key: Passphrase for encrypting persisted and backup
                files. Plain JSON when not set.
        """
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self._fernet = fernet_for(encryption_key) if encryption_key else None
        self._lock = threading.Lock()
        self._credentials: dict[str, StoredCredential] = {}

        if self.persistence_path is not None and self.persistence_path.exists():
            self._load(self.persistence_path)

    def store_credential(
        self, credential: dict[str, Any], metadata: CredentialMetadata
    ) -> str:
        """Store a credential; assigns a ``urn:uuid`` id if it has none.

        Returns:
            The credential id.
        """
        credential = copy.deepcopy(credential)
        credential_id = credential.get("id")
        if not isinstance(credential_id, str) or not credential_id:
            credential_id = f"urn:uuid:{uuid.uuid4()}"
            credential["id"] = credential_id

        with self._lock:
            self._credentials[credential_id] = StoredCredential(credential, metadata)
        log.debug("Stored credential %s", credential_id)

        if self.persistence_path is not None:
            self._save(self.persistence_path)
        return credential_id

    def get_credential_by_id(self, credential_id: str) -> StoredCredential | None:
        with self._lock:
            return copy.deepcopy(self._credentials.get(credential_id))

    def find_credentials_by_subject(self, subject_did: str) -> list[StoredCredential]:
        with self._lock:
            return [
                copy.deepcopy(s) for s in self._credentials.values()
                if subject_did in _subject_ids(s.credential)
            ]

    def find_credentials_by_issuer(self, issuer_did: str) -> list[StoredCredential]:
        with self._lock:
            return [
                copy.deepcopy(s) for s in self._credentials.values()
                if issuer_id(s.credential) == issuer_did
            ]

    def find_credentials_by_inscription(
        self, inscription_id: str
    ) -> list[StoredCredential]:
        with self._lock:
            return [
                copy.deepcopy(s) for s in self._credentials.values()
                if s.metadata.inscription_id == inscription_id
            ]

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            stored = list(self._credentials.values())
        return {
            "totalCredentials": len(stored),
            "issuers": len({issuer_id(s.credential) for s in stored}),
            "subjects": len({i for s in stored for i in _subject_ids(s.credential)}),
            "inscriptions": len(
                {s.metadata.inscription_id for s in stored if s.metadata.inscription_id}
            ),
            "encrypted": self._fernet is not None,
            "persistent": self.persistence_path is not None,
        }

    def create_backup(self, path: str | Path) -> bool:
        """Write all credentials to ``path``. Returns False on I/O failure."""
        try:
            self._save(Path(path))
        except (OSError, RepositoryError) as e:
            log.error("Credential backup to %s failed: %s", path, e)
            return False
        log.info("Backed up credentials to %s", path)
        return True

    def restore_from_backup(self, path: str | Path) -> bool:
        """Replace the stored credentials with a backup's contents."""
        try:
            self._load(Path(path))
        except (OSError, RepositoryError) as e:
            log.error("Credential restore from %s failed: %s", path, e)
            return False
        if self.persistence_path is not None:
            self._save(self.persistence_path)
        log.info("Restored credentials from %s", path)
        return True

    def _save(self, path: Path) -> None:
        with self._lock:
            payload = {
                "version": BACKUP_VERSION,
                "credentials": [s.to_dict() for s in self._credentials.values()],
            }
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        if self._fernet is not None:
            data = self._fernet.encrypt(data)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    def _load(self, path: Path) -> None:
        data = path.read_bytes()
        if self._fernet is not None:
            try:
                data = self._fernet.decrypt(data)
            except InvalidToken as e:
                raise RepositoryError(f"Cannot decrypt {path}") from e
        try:
            payload = json.loads(data)
            stored = [StoredCredential.from_dict(item) for item in payload["credentials"]]
        except (ValueError, KeyError, TypeError) as e:
            raise RepositoryError(f"Invalid credential file {path}: {e}") from e

        with self._lock:
            self._credentials = {
                s.credential["id"]: s for s in stored if isinstance(s.credential.get("id"), str)
            }
