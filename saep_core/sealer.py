"""
saep_core/sealer.py — Content sealing pipeline.

Seal:   SHA-256(raw) → fresh AES-256-GCM key + nonce → encrypt → RSA-OAEP wrap
Unseal: RSA-OAEP unwrap → AES-GCM decrypt (tag check) → recompute SHA-256

Sealing is all-or-nothing: the four artifacts are returned together or an
exception propagates and nothing exists to persist. Each failure on the
unseal side has its own type so a tampered ciphertext (DecryptionFailure)
is never confused with a hash mismatch (IntegrityError).
"""

from __future__ import annotations

import hmac
import logging

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .crypto import (
    aes_gcm_decrypt,
    aes_gcm_encrypt,
    b64d,
    b64e,
    generate_content_key,
    sha256_hex,
    unwrap_key,
    wrap_key,
)
from .errors import DecryptionFailure, IntegrityError, UnwrapFailure, ValidationError
from .models import SealedContent


logger = logging.getLogger(__name__)


class ContentSealer:
    """Hybrid encryption for submitted artifacts. Stateless per call."""

    def seal(self, raw: bytes, recipient_public_key: RSAPublicKey) -> SealedContent:
        """Seal raw bytes so only the holder of the recipient's private key can read them."""
        if not isinstance(raw, (bytes, bytearray, memoryview)):
            raise ValidationError("Content must be bytes")
        if not isinstance(recipient_public_key, RSAPublicKey):
            raise ValidationError("Recipient key must be an RSA public key")
        raw = bytes(raw)

        # Digest is taken over the plaintext, independent of encryption.
        content_hash = sha256_hex(raw)

        content_key = generate_content_key()
        nonce, cipher_text = aes_gcm_encrypt(content_key, raw)
        wrapped = wrap_key(content_key, recipient_public_key)

        sealed = SealedContent(
            content_hash=content_hash,
            iv=b64e(nonce),
            cipher_text=b64e(cipher_text),
            wrapped_key=b64e(wrapped),
        )
        logger.debug(
            "Sealed %d bytes", len(raw),
            extra={"fields": {"content_hash": content_hash}},
        )
        return sealed

    def open(self, sealed: SealedContent, recipient_private_key: RSAPrivateKey) -> bytes:
        """Unwrap and decrypt without the hash comparison.

        Raises:
            UnwrapFailure:     wrong private key or corrupted wrapped key.
            DecryptionFailure: ciphertext, nonce or tag was altered.
        """
        try:
            wrapped = b64d(sealed.wrapped_key)
        except ValidationError as exc:
            raise UnwrapFailure("Wrapped key is not valid base64") from exc
        content_key = unwrap_key(wrapped, recipient_private_key)

        try:
            nonce = b64d(sealed.iv)
            cipher_text = b64d(sealed.cipher_text)
        except ValidationError as exc:
            raise DecryptionFailure("Ciphertext or nonce is not valid base64") from exc
        return aes_gcm_decrypt(content_key, nonce, cipher_text)

    def unseal(self, sealed: SealedContent, recipient_private_key: RSAPrivateKey) -> bytes:
        """Recover the original bytes and check them against content_hash.

        Raises:
            UnwrapFailure, DecryptionFailure: see open().
            IntegrityError: decrypted bytes hash differently from the
                            stored content_hash. The bytes ride along on
                            the exception for soft-fail callers.
        """
        raw = self.open(sealed, recipient_private_key)
        actual = sha256_hex(raw)
        if not hmac.compare_digest(actual, sealed.content_hash):
            raise IntegrityError(sealed.content_hash, actual, content=raw)
        return raw
