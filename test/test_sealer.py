"""
test/test_sealer.py — Tests for sealing, signing and verification

Run:  pytest test/test_sealer.py -v
  or: python test/test_sealer.py
"""

import os
import sys
import tempfile

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from saep_core.crypto import b64d, b64e, generate_rsa_keypair, sha256_hex
from saep_core.errors import (
    CryptoOperationError,
    DecryptionFailure,
    IntegrityError,
    NotFoundError,
    SignatureInvalid,
    SigningKeyUnavailable,
    UnwrapFailure,
    ValidationError,
)
from saep_core.keys import KeyDirectory, Keyring
from saep_core.models import Evaluation, KeyPurpose
from saep_core.sealer import ContentSealer
from saep_core.signer import EvaluationSigner
from saep_core.storage import Storage
from saep_core.verifier import VerificationAuthority


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_private_key, _public_key = generate_rsa_keypair()
_other_private, _other_public = generate_rsa_keypair()

_sealer = ContentSealer()

_PASS = 0
_FAIL = 0


def _ok(name: str) -> None:
    global _PASS
    _PASS += 1
    print(f"  PASS: {name}")


def _fail(name: str, err: Exception) -> None:
    global _FAIL
    _FAIL += 1
    print(f"  FAIL: {name} — {err}")


def _flip_bit(text: str, index: int = 0) -> str:
    """Flip one bit in a base64 field and re-encode it."""
    raw = bytearray(b64d(text))
    raw[index] ^= 0x01
    return b64e(bytes(raw))


def _setup_signing(db_path: str):
    storage = Storage(db_path)
    directory = KeyDirectory(storage)
    directory.register("reviewer-1", KeyPurpose.INTEGRITY, _public_key)
    keyring = Keyring("reviewer-1")
    keyring.put(KeyPurpose.INTEGRITY, _private_key)
    return storage, directory, keyring


def _temp_db() -> str:
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        return f.name


# ---------------------------------------------------------------------------
# Seal / unseal
# ---------------------------------------------------------------------------

def test_roundtrip():
    """unseal(seal(x)) == x, including empty and multi-megabyte inputs."""
    for raw in (b"hello world", b"", bytes(range(256)), os.urandom(3 * 1024 * 1024)):
        sealed = _sealer.seal(raw, _public_key)
        assert sealed.content_hash == sha256_hex(raw)
        assert _sealer.unseal(sealed, _private_key) == raw
    _ok("test_roundtrip")


def test_ciphertext_hides_plaintext():
    sealed = _sealer.seal(b"hello world", _public_key)
    cipher = b64d(sealed.cipher_text)
    assert cipher
    assert b"hello world" not in cipher
    assert len(b64d(sealed.iv)) == 12
    _ok("test_ciphertext_hides_plaintext")


def test_fresh_key_and_nonce_per_seal():
    a = _sealer.seal(b"same bytes", _public_key)
    b = _sealer.seal(b"same bytes", _public_key)
    assert a.content_hash == b.content_hash
    assert a.iv != b.iv
    assert a.cipher_text != b.cipher_text
    assert a.wrapped_key != b.wrapped_key
    _ok("test_fresh_key_and_nonce_per_seal")


def test_seal_rejects_bad_input():
    for raw, key in (("text, not bytes", _public_key), (b"data", "not a key"), (b"data", _private_key)):
        try:
            _sealer.seal(raw, key)
            assert False, f"Should reject ({type(raw).__name__}, {type(key).__name__})"
        except ValidationError:
            pass
    _ok("test_seal_rejects_bad_input")


def test_ciphertext_bitflip_fails_at_cipher_layer():
    sealed = _sealer.seal(b"hello world", _public_key)
    for index in (0, 5, len(b64d(sealed.cipher_text)) - 1):
        tampered = sealed.model_copy(update={"cipher_text": _flip_bit(sealed.cipher_text, index)})
        try:
            _sealer.unseal(tampered, _private_key)
            assert False, "Tampered ciphertext should not decrypt"
        except DecryptionFailure:
            pass
    _ok("test_ciphertext_bitflip_fails_at_cipher_layer")


def test_nonce_tamper_fails_at_cipher_layer():
    sealed = _sealer.seal(b"hello world", _public_key)
    for iv in (_flip_bit(sealed.iv), b64e(b"short"), "not*base64"):
        tampered = sealed.model_copy(update={"iv": iv})
        try:
            _sealer.unseal(tampered, _private_key)
            assert False, "Tampered nonce should not decrypt"
        except DecryptionFailure:
            pass
    _ok("test_nonce_tamper_fails_at_cipher_layer")


def test_wrapped_key_bitflip_fails_at_unwrap():
    sealed = _sealer.seal(b"hello world", _public_key)
    tampered = sealed.model_copy(update={"wrapped_key": _flip_bit(sealed.wrapped_key, 10)})
    try:
        _sealer.unseal(tampered, _private_key)
        assert False, "Tampered wrapped key should not unwrap"
    except UnwrapFailure as e:
        assert isinstance(e, CryptoOperationError)
        assert not isinstance(e, IntegrityError)
    _ok("test_wrapped_key_bitflip_fails_at_unwrap")


def test_wrong_private_key_fails_at_unwrap():
    sealed = _sealer.seal(b"hello world", _public_key)
    try:
        _sealer.unseal(sealed, _other_private)
        assert False, "Another principal's key should not unwrap"
    except UnwrapFailure:
        pass
    _ok("test_wrong_private_key_fails_at_unwrap")


def test_hash_mismatch_is_integrity_error():
    """A changed content_hash decrypts fine but fails the digest check."""
    sealed = _sealer.seal(b"hello world", _public_key)
    tampered = sealed.model_copy(update={"content_hash": sha256_hex(b"something else")})

    assert _sealer.open(tampered, _private_key) == b"hello world"
    try:
        _sealer.unseal(tampered, _private_key)
        assert False, "Hash mismatch should raise"
    except IntegrityError as e:
        assert not isinstance(e, CryptoOperationError)
        assert e.expected_hash == tampered.content_hash
        assert e.actual_hash == sha256_hex(b"hello world")
        assert e.content == b"hello world"
    _ok("test_hash_mismatch_is_integrity_error")


# ---------------------------------------------------------------------------
# Sign / verify
# ---------------------------------------------------------------------------

def test_sign_and_verify():
    db_path = _temp_db()
    storage, directory, keyring = _setup_signing(db_path)
    try:
        signer = EvaluationSigner(directory)
        verifier = VerificationAuthority(storage, directory)

        sig1 = signer.sign("sub-1", "A", "Great work", keyring)
        sig2 = signer.sign("sub-1", "A", "Great work", keyring)
        assert sig1 != sig2

        evaluation = Evaluation(
            submission_id="sub-1", evaluator_id="reviewer-1",
            grade="A", feedback="Great work", signature=sig1,
        )
        report = verifier.verify_evaluation(evaluation)
        assert report["signature_valid"] is True
        assert report["reviewer_id"] == "reviewer-1"
        assert report["key_fingerprint"] == directory.fingerprint("reviewer-1", KeyPurpose.INTEGRITY)
        assert verifier.verify_evaluation(evaluation.model_copy(update={"signature": sig2}))
    finally:
        storage.close()
        os.unlink(db_path)
    _ok("test_sign_and_verify")


def test_one_character_change_breaks_signature():
    db_path = _temp_db()
    storage, directory, keyring = _setup_signing(db_path)
    try:
        signature = EvaluationSigner(directory).sign("sub-1", "A", "Great work", keyring)
        verifier = VerificationAuthority(storage, directory)
        original = Evaluation(
            submission_id="sub-1", evaluator_id="reviewer-1",
            grade="A", feedback="Great work", signature=signature,
        )
        for change in ({"grade": "B"}, {"feedback": "Great work!!!"},
                       {"feedback": "great work"}, {"submission_id": "sub-2"}):
            try:
                verifier.verify_evaluation(original.model_copy(update=change))
                assert False, f"Should reject {change!r}"
            except SignatureInvalid:
                pass
    finally:
        storage.close()
        os.unlink(db_path)
    _ok("test_one_character_change_breaks_signature")


def test_verify_against_other_key_fails():
    db_path = _temp_db()
    storage, directory, keyring = _setup_signing(db_path)
    try:
        signature = EvaluationSigner(directory).sign("sub-1", "A", "Great work", keyring)
        # The directory now points at a different key for this reviewer.
        directory.register("reviewer-1", KeyPurpose.INTEGRITY, _other_public)
        evaluation = Evaluation(
            submission_id="sub-1", evaluator_id="reviewer-1",
            grade="A", feedback="Great work", signature=signature,
        )
        try:
            VerificationAuthority(storage, directory).verify_evaluation(evaluation)
            assert False, "Should not verify against another key"
        except SignatureInvalid:
            pass

        unknown = evaluation.model_copy(update={"evaluator_id": "reviewer-9"})
        try:
            VerificationAuthority(storage, directory).verify_evaluation(unknown)
            assert False, "Unregistered reviewer should not verify"
        except SignatureInvalid:
            pass
    finally:
        storage.close()
        os.unlink(db_path)
    _ok("test_verify_against_other_key_fails")


def test_signing_key_unavailable():
    db_path = _temp_db()
    storage, directory, keyring = _setup_signing(db_path)
    try:
        signer = EvaluationSigner(directory)

        # No private integrity key held.
        try:
            signer.sign("sub-1", "A", "ok", Keyring("reviewer-1"))
            assert False, "Should need a private key"
        except SigningKeyUnavailable:
            pass

        # Private key held but nothing registered.
        stranger = Keyring("reviewer-2")
        stranger.put(KeyPurpose.INTEGRITY, _other_private)
        try:
            signer.sign("sub-1", "A", "ok", stranger)
            assert False, "Should need a registered key"
        except SigningKeyUnavailable:
            pass

        # Private key does not match the registered public key.
        mismatched = Keyring("reviewer-1")
        mismatched.put(KeyPurpose.INTEGRITY, _other_private)
        try:
            signer.sign("sub-1", "A", "ok", mismatched)
            assert False, "Should refuse an unregistered key pair"
        except SigningKeyUnavailable:
            pass
    finally:
        storage.close()
        os.unlink(db_path)
    _ok("test_signing_key_unavailable")


def test_verify_submission_without_evaluation():
    db_path = _temp_db()
    storage, directory, _ = _setup_signing(db_path)
    try:
        VerificationAuthority(storage, directory).verify_submission("sub-missing")
        assert False, "Should raise NotFoundError"
    except NotFoundError:
        pass
    finally:
        storage.close()
        os.unlink(db_path)
    _ok("test_verify_submission_without_evaluation")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print("=" * 60)
    print("SAEP Sealer / Signer Tests")
    print("=" * 60)

    tests = [
        test_roundtrip,
        test_ciphertext_hides_plaintext,
        test_fresh_key_and_nonce_per_seal,
        test_seal_rejects_bad_input,
        test_ciphertext_bitflip_fails_at_cipher_layer,
        test_nonce_tamper_fails_at_cipher_layer,
        test_wrapped_key_bitflip_fails_at_unwrap,
        test_wrong_private_key_fails_at_unwrap,
        test_hash_mismatch_is_integrity_error,
        test_sign_and_verify,
        test_one_character_change_breaks_signature,
        test_verify_against_other_key_fails,
        test_signing_key_unavailable,
        test_verify_submission_without_evaluation,
    ]

    for t in tests:
        try:
            t()
        except Exception as e:
            _fail(t.__name__, e)

    print("=" * 60)
    if _FAIL == 0:
        print(f"ALL {_PASS} TESTS PASSED")
    else:
        print(f"{_PASS} passed, {_FAIL} FAILED")
        sys.exit(1)
    print("=" * 60)
