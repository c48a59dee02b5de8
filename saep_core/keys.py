"""
saep_core/keys.py — Key management.

Three pieces with separate trust boundaries:

- Keyring       A principal's own private keys. Lives with the principal;
                persisted only as an encrypted PKCS#8 bundle they control.
- KeyDirectory  Public halves, discoverable by anyone. An injected service
                backed by Storage; no module-level state.
- KeyManager    Generates key pairs, puts the private half in the
                principal's keyring and registers the public half.

No operation here returns another principal's private key.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .crypto import (
    MIN_RSA_KEY_SIZE,
    generate_rsa_keypair,
    private_key_from_pem,
    private_key_to_pem,
    public_key_fingerprint,
    public_key_from_pem,
    public_key_to_pem,
)
from .errors import KeyNotFound, ValidationError
from .models import KeyPurpose
from .storage import Storage


logger = logging.getLogger(__name__)

KEYRING_FORMAT = "saep-keyring/1"


# ---------------------------------------------------------------------------
# Keyring (private halves)
# ---------------------------------------------------------------------------

class Keyring:
    """Private keys of one principal, one per purpose."""

    def __init__(self, principal_id: str) -> None:
        if not principal_id:
            raise ValidationError("principal_id is required")
        self._principal_id = principal_id
        self._keys: Dict[KeyPurpose, RSAPrivateKey] = {}

    @property
    def principal_id(self) -> str:
        return self._principal_id

    def put(self, purpose: KeyPurpose, private_key: RSAPrivateKey) -> None:
        self._keys[KeyPurpose(purpose)] = private_key

    def get(self, purpose: KeyPurpose) -> Optional[RSAPrivateKey]:
        return self._keys.get(KeyPurpose(purpose))

    def has(self, purpose: KeyPurpose) -> bool:
        return KeyPurpose(purpose) in self._keys

    def public_key(self, purpose: KeyPurpose) -> Optional[RSAPublicKey]:
        key = self.get(purpose)
        return key.public_key() if key is not None else None

    def __repr__(self) -> str:
        purposes = ",".join(sorted(p.value for p in self._keys))
        return f"Keyring(principal_id={self._principal_id!r}, purposes=[{purposes}])"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str, passphrase: bytes) -> None:
        """Write the keyring as JSON with each key PKCS#8-encrypted.

        The file is created with owner-only permissions.
        """
        if not passphrase:
            raise ValidationError("A passphrase is required to persist a keyring")
        bundle = {
            "format": KEYRING_FORMAT,
            "principal_id": self._principal_id,
            "keys": {
                purpose.value: private_key_to_pem(key, passphrase).decode("ascii")
                for purpose, key in self._keys.items()
            },
        }
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(bundle, f, indent=2)

    @classmethod
    def load(cls, path: str, passphrase: bytes) -> "Keyring":
        with open(path, "r", encoding="utf-8") as f:
            bundle = json.load(f)
        if bundle.get("format") != KEYRING_FORMAT:
            raise ValidationError(f"Unrecognised keyring format in {path}")
        keyring = cls(bundle["principal_id"])
        for purpose, pem in bundle.get("keys", {}).items():
            try:
                key = private_key_from_pem(pem.encode("ascii"), passphrase)
            except (ValueError, TypeError) as exc:
                raise ValidationError(
                    f"Cannot decrypt {purpose} key in {path}"
                ) from exc
            keyring.put(KeyPurpose(purpose), key)
        return keyring


# ---------------------------------------------------------------------------
# KeyDirectory (public halves)
# ---------------------------------------------------------------------------

class KeyDirectory:
    """Registry of public keys by (principal_id, purpose).

    Reads go straight to storage. Registrations are serialized per
    principal id.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _principal_lock(self, principal_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(principal_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[principal_id] = lock
            return lock

    def register(
        self,
        principal_id: str,
        purpose: KeyPurpose,
        public_key: RSAPublicKey,
    ) -> str:
        """Publish a public key. Returns its fingerprint."""
        if not principal_id:
            raise ValidationError("principal_id is required")
        if not isinstance(public_key, RSAPublicKey):
            raise ValidationError("Only RSA public keys can be registered")
        if public_key.key_size < MIN_RSA_KEY_SIZE:
            raise ValidationError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")

        purpose = KeyPurpose(purpose)
        fingerprint = public_key_fingerprint(public_key)
        with self._principal_lock(principal_id):
            self._storage.put_public_key(
                principal_id=principal_id,
                purpose=purpose.value,
                public_key_pem=public_key_to_pem(public_key).decode("ascii"),
                fingerprint=fingerprint,
                registered_at=datetime.now(timezone.utc).isoformat(),
            )
        logger.info(
            "Registered %s key for %s",
            purpose.value, principal_id,
            extra={"fields": {"principal_id": principal_id, "fingerprint": fingerprint}},
        )
        return fingerprint

    def lookup(self, principal_id: str, purpose: KeyPurpose) -> RSAPublicKey:
        purpose = KeyPurpose(purpose)
        row = self._storage.get_public_key(principal_id, purpose.value)
        if row is None:
            raise KeyNotFound(principal_id, purpose.value)
        return public_key_from_pem(row["public_key_pem"].encode("ascii"))

    def fingerprint(self, principal_id: str, purpose: KeyPurpose) -> str:
        purpose = KeyPurpose(purpose)
        row = self._storage.get_public_key(principal_id, purpose.value)
        if row is None:
            raise KeyNotFound(principal_id, purpose.value)
        return row["fingerprint"]

    def has_key(self, principal_id: str, purpose: KeyPurpose) -> bool:
        return self._storage.get_public_key(principal_id, KeyPurpose(purpose).value) is not None

    def entries(self) -> list[dict]:
        """Directory listing: principal, purpose, fingerprint (no PEM)."""
        return [
            {
                "principal_id": row["principal_id"],
                "purpose": row["purpose"],
                "fingerprint": row["fingerprint"],
                "registered_at": row["registered_at"],
            }
            for row in self._storage.list_public_keys()
        ]


# ---------------------------------------------------------------------------
# KeyManager
# ---------------------------------------------------------------------------

class KeyManager:
    """Generate, register and look up principal key pairs.

    Args:
        directory: Where public halves are published.
        key_size:  RSA modulus size for new keys.
        workers:   Thread pool size for background key generation.
    """

    def __init__(
        self,
        directory: KeyDirectory,
        key_size: int = MIN_RSA_KEY_SIZE,
        workers: int = 2,
    ) -> None:
        if key_size < MIN_RSA_KEY_SIZE:
            raise ValidationError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
        self.directory = directory
        self.key_size = key_size
        self._workers = workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def generate_key_pair(
        self,
        keyring: Keyring,
        purpose: KeyPurpose,
    ) -> Tuple[RSAPublicKey, RSAPrivateKey]:
        """Create a key pair for keyring's principal.

        The private half is stored in the keyring only; the public half
        is registered in the directory (replacing any earlier one).
        """
        public_key, private_key = self._generate_into(keyring, purpose)
        self.register_public_key(keyring.principal_id, purpose, public_key)
        return public_key, private_key

    def _generate_into(
        self,
        keyring: Keyring,
        purpose: KeyPurpose,
    ) -> Tuple[RSAPublicKey, RSAPrivateKey]:
        purpose = KeyPurpose(purpose)
        private_key, public_key = generate_rsa_keypair(self.key_size)
        keyring.put(purpose, private_key)
        return public_key, private_key

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._workers,
                    thread_name_prefix="saep-keygen",
                )
            return self._executor

    def generate_in_background(
        self,
        keyring: Keyring,
        purpose: KeyPurpose,
    ) -> "Future[Tuple[RSAPublicKey, RSAPrivateKey]]":
        """Run generate_key_pair() on the key generation pool."""
        return self._pool().submit(self.generate_key_pair, keyring, purpose)

    def generate_keyring(self, principal_id: str) -> Keyring:
        """New keyring holding both purposes. Nothing is registered yet."""
        keyring = Keyring(principal_id)
        futures = [
            self._pool().submit(self._generate_into, keyring, purpose)
            for purpose in KeyPurpose
        ]
        for future in futures:
            future.result()
        return keyring

    def publish(self, keyring: Keyring) -> Dict[KeyPurpose, str]:
        """Register the public half of every key in keyring. Returns fingerprints."""
        return {
            purpose: self.register_public_key(
                keyring.principal_id, purpose, keyring.public_key(purpose)
            )
            for purpose in KeyPurpose
            if keyring.has(purpose)
        }

    def provision(self, principal_id: str) -> Keyring:
        """New keyring holding both a confidentiality and an integrity key, published."""
        keyring = self.generate_keyring(principal_id)
        self.publish(keyring)
        return keyring

    def register_public_key(
        self,
        principal_id: str,
        purpose: KeyPurpose,
        public_key: RSAPublicKey,
    ) -> str:
        return self.directory.register(principal_id, purpose, public_key)

    def lookup_public_key(self, principal_id: str, purpose: KeyPurpose) -> RSAPublicKey:
        return self.directory.lookup(principal_id, purpose)

    def shutdown(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
