try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
import json

import pytest
from botocore.exceptions import ClientError

from federated_chat.core.exceptions import ContextMismatch, DecryptionFailure
from federated_chat.services.encryption import (
    EncryptionProvider,
    KMSKeyProvider,
    LocalKeyProvider,
)

KEY_ID = "arn:aws:kms:us-east-1:123456789012:key/test"


def _provider(secret: str = "super-secret-key") -> EncryptionProvider:
    return EncryptionProvider(LocalKeyProvider(secret=secret))


def _decode(envelope: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(envelope.encode("ascii")))


def _encode(envelope: dict) -> str:
    raw = json.dumps(envelope, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def test_roundtrip_returns_original_bytes() -> None:
    provider = _provider()
    plaintext = b'{"accessKeyId":"AKIA","sessionToken":"token"}'

    encrypted = provider.encrypt(plaintext, KEY_ID, "alice")
    assert plaintext.decode() not in encrypted

    assert provider.decrypt(encrypted, KEY_ID, "alice") == plaintext


@pytest.mark.parametrize("payload", [b"x", b"\x00\xff" * 64, "héllo".encode()])
def test_other_owner_context_is_rejected(payload: bytes) -> None:
    provider = _provider()
    encrypted = provider.encrypt(payload, KEY_ID, "alice")

    with pytest.raises(ContextMismatch):
        provider.decrypt(encrypted, KEY_ID, "bob")


def test_rewritten_context_fails_authentication() -> None:
    provider = _provider()
    envelope = _decode(provider.encrypt(b"secret", KEY_ID, "alice"))
    envelope["ctx"] = {"ownerId": "bob"}

    with pytest.raises(DecryptionFailure):
        provider.decrypt(_encode(envelope), KEY_ID, "bob")


def test_tampered_ciphertext_is_rejected() -> None:
    provider = _provider()
    envelope = _decode(provider.encrypt(b"secret payload", KEY_ID, "alice"))
    body = bytearray(base64.urlsafe_b64decode(envelope["ct"]))
    body[0] ^= 0x01
    envelope["ct"] = base64.urlsafe_b64encode(bytes(body)).decode("ascii")

    with pytest.raises(DecryptionFailure):
        provider.decrypt(_encode(envelope), KEY_ID, "alice")


def test_different_master_secret_cannot_unwrap() -> None:
    encrypted = _provider("first").encrypt(b"secret", KEY_ID, "alice")

    with pytest.raises(DecryptionFailure):
        _provider("second").decrypt(encrypted, KEY_ID, "alice")


@pytest.mark.parametrize("ciphertext", ["not-valid", _encode({"v": 2, "ctx": {}})])
def test_malformed_envelopes_are_rejected(ciphertext: str) -> None:
    with pytest.raises(DecryptionFailure):
        _provider().decrypt(ciphertext, KEY_ID, "alice")


def test_empty_arguments_are_rejected() -> None:
    provider = _provider()
    with pytest.raises(ValueError):
        provider.encrypt(b"", KEY_ID, "alice")
    with pytest.raises(ValueError):
        provider.encrypt(b"data", KEY_ID, "")


class FakeKMSClient:
    def __init__(self) -> None:
        self.contexts: list[dict] = []

    def generate_data_key(self, *, KeyId: str, KeySpec: str, EncryptionContext: dict) -> dict:
        self.contexts.append(EncryptionContext)
        return {"Plaintext": b"k" * 32, "CiphertextBlob": b"wrapped:" + KeyId.encode()}

    def decrypt(self, *, CiphertextBlob: bytes, KeyId: str, EncryptionContext: dict) -> dict:
        self.contexts.append(EncryptionContext)
        if CiphertextBlob != b"wrapped:" + KeyId.encode():
            raise ClientError(
                {"Error": {"Code": "InvalidCiphertextException", "Message": "bad"}},
                "Decrypt",
            )
        return {"Plaintext": b"k" * 32}


def test_kms_provider_binds_owner_context() -> None:
    kms = FakeKMSClient()
    provider = EncryptionProvider(KMSKeyProvider("us-east-1", kms_client=kms))

    encrypted = provider.encrypt(b"payload", KEY_ID, "alice")
    assert provider.decrypt(encrypted, KEY_ID, "alice") == b"payload"
    assert kms.contexts == [{"ownerId": "alice"}, {"ownerId": "alice"}]


def test_kms_rejection_becomes_decryption_failure() -> None:
    kms = FakeKMSClient()
    provider = EncryptionProvider(KMSKeyProvider("us-east-1", kms_client=kms))
    encrypted = provider.encrypt(b"payload", KEY_ID, "alice")

    with pytest.raises(DecryptionFailure):
        provider.decrypt(encrypted, "arn:aws:kms:us-east-1:123456789012:key/other", "alice")
