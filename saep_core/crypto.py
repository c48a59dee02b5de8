"""
saep_core/crypto.py — Cryptographic primitives for SAEP.

Uses Python `cryptography` library exclusively. No custom crypto.
- SHA-256 for content digests
- AES-256-GCM for authenticated content encryption
- RSA-OAEP (SHA-256) for wrapping per-submission content keys
- RSA-PSS (SHA-256, salt 32) for evaluation signatures

Library exceptions are translated into the SAEP error taxonomy here, so
callers above this module never see `InvalidTag` or `InvalidSignature`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import (
    CryptoOperationError,
    DecryptionFailure,
    UnwrapFailure,
    ValidationError,
)


MIN_RSA_KEY_SIZE = 2048
AES_KEY_BYTES = 32
GCM_NONCE_BYTES = 12
PSS_SALT_LENGTH = 32

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)
_PSS = padding.PSS(
    mgf=padding.MGF1(hashes.SHA256()),
    salt_length=PSS_SALT_LENGTH,
)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def sha256_hex(data: bytes) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


# ---------------------------------------------------------------------------
# Wire encoding
# ---------------------------------------------------------------------------

def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(text: str) -> bytes:
    """Strict base64 decode. Malformed input is a ValidationError."""
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValidationError(f"Not valid base64: {exc}") from exc


# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

def generate_rsa_keypair(key_size: int = MIN_RSA_KEY_SIZE) -> tuple[RSAPrivateKey, RSAPublicKey]:
    """Generate a new RSA keypair (used for both wrapping and signing)."""
    if key_size < MIN_RSA_KEY_SIZE:
        raise ValidationError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return private_key, private_key.public_key()


def private_key_to_pem(key: RSAPrivateKey, passphrase: bytes | None = None) -> bytes:
    """Serialize private key to PKCS#8 PEM, encrypted when a passphrase is given."""
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase)
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def public_key_to_pem(key: RSAPublicKey) -> bytes:
    """Serialize public key to PEM bytes."""
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def private_key_from_pem(pem_data: bytes, passphrase: bytes | None = None) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes."""
    key = serialization.load_pem_private_key(pem_data, password=passphrase or None)
    if not isinstance(key, RSAPrivateKey):
        raise TypeError("Not an RSA private key")
    return key


def public_key_from_pem(pem_data: bytes) -> RSAPublicKey:
    """Deserialize public key from PEM bytes."""
    key = serialization.load_pem_public_key(pem_data)
    if not isinstance(key, RSAPublicKey):
        raise TypeError("Not an RSA public key")
    return key


def public_key_fingerprint(key: RSAPublicKey) -> str:
    """SHA-256 over the DER SubjectPublicKeyInfo, hex."""
    der = key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return sha256_hex(der)


# ---------------------------------------------------------------------------
# Symmetric encryption
# ---------------------------------------------------------------------------

def generate_content_key() -> bytes:
    return AESGCM.generate_key(bit_length=AES_KEY_BYTES * 8)


def aes_gcm_encrypt(key: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt under a fresh random nonce. Returns (nonce, ciphertext||tag)."""
    nonce = os.urandom(GCM_NONCE_BYTES)
    return nonce, AESGCM(key).encrypt(nonce, plaintext, None)


def aes_gcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    if len(nonce) != GCM_NONCE_BYTES:
        raise DecryptionFailure(
            f"Nonce must be {GCM_NONCE_BYTES} bytes, got {len(nonce)}"
        )
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise DecryptionFailure("Authentication tag check failed") from exc


# ---------------------------------------------------------------------------
# Key wrapping
# ---------------------------------------------------------------------------

def wrap_key(content_key: bytes, public_key: RSAPublicKey) -> bytes:
    try:
        return public_key.encrypt(content_key, _OAEP)
    except ValueError as exc:
        raise CryptoOperationError(f"Key wrap failed: {exc}") from exc


def unwrap_key(wrapped: bytes, private_key: RSAPrivateKey) -> bytes:
    try:
        content_key = private_key.decrypt(wrapped, _OAEP)
    except ValueError as exc:
        raise UnwrapFailure(
            "Wrapped key does not open with this private key"
        ) from exc
    if len(content_key) != AES_KEY_BYTES:
        raise UnwrapFailure(
            f"Unwrapped key has length {len(content_key)}, expected {AES_KEY_BYTES}"
        )
    return content_key


# ---------------------------------------------------------------------------
# Signing and verification
# ---------------------------------------------------------------------------

def sign_bytes(private_key: RSAPrivateKey, data: bytes) -> str:
    """Sign data with RSA-PSS. Returns base64-encoded signature.

    PSS is salted, so two signatures over the same data differ.
    """
    return b64e(private_key.sign(data, _PSS, hashes.SHA256()))


def verify_signature(public_key: RSAPublicKey, data: bytes, signature_b64: str) -> bool:
    """Verify RSA-PSS signature. Returns True if valid, False otherwise."""
    try:
        signature = b64d(signature_b64)
    except ValidationError:
        return False
    try:
        public_key.verify(signature, data, _PSS, hashes.SHA256())
        return True
    except InvalidSignature:
        return False
