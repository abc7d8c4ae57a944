"""Envelope encryption for session records, bound to an owner context.

Each payload is sealed with a fresh AES-256-GCM data key. The data key is
wrapped by a ``KeyProvider`` (AWS KMS in deployment, a locally derived master
key otherwise) and the owner context is authenticated both by the key
provider and as associated data of the payload cipher.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
from typing import Any, Protocol

import boto3
from botocore.exceptions import ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from federated_chat.core.exceptions import ContextMismatch, DecryptionFailure

logger = logging.getLogger(__name__)

_ENVELOPE_VERSION = 1
_NONCE_BYTES = 12


def _b64e(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii")


def _b64d(value: str) -> bytes:
    return base64.urlsafe_b64decode(value.encode("ascii"))


def _canonical(context: dict[str, str]) -> bytes:
    return json.dumps(context, separators=(",", ":"), sort_keys=True).encode("utf-8")


class KeyProvider(Protocol):
    """Issues and unwraps data keys under a managed key."""

    def generate_data_key(
        self, key_id: str, context: dict[str, str]
    ) -> tuple[bytes, bytes]:
        """Return ``(plaintext_key, encrypted_key)``."""
        ...

    def decrypt_data_key(
        self, encrypted_key: bytes, key_id: str, context: dict[str, str]
    ) -> bytes:
        ...


class KMSKeyProvider:
    """Data keys generated and unwrapped by AWS KMS."""

    def __init__(self, region_name: str, kms_client: Any | None = None) -> None:
        self._kms = kms_client or boto3.client("kms", region_name=region_name)

    def generate_data_key(
        self, key_id: str, context: dict[str, str]
    ) -> tuple[bytes, bytes]:
        response = self._kms.generate_data_key(
            KeyId=key_id,
            KeySpec="AES_256",
            EncryptionContext=context,
        )
        return response["Plaintext"], response["CiphertextBlob"]

    def decrypt_data_key(
        self, encrypted_key: bytes, key_id: str, context: dict[str, str]
    ) -> bytes:
        try:
            response = self._kms.decrypt(
                CiphertextBlob=encrypted_key,
                KeyId=key_id,
                EncryptionContext=context,
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"InvalidCiphertextException", "IncorrectKeyException"}:
                raise DecryptionFailure("KMS rejected the encrypted data key.") from exc
            raise
        return response["Plaintext"]


class LocalKeyProvider:
    """Wrap data keys with a master key derived from a local secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Local encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._master = AESGCM(digest)

    def generate_data_key(
        self, key_id: str, context: dict[str, str]
    ) -> tuple[bytes, bytes]:
        data_key = AESGCM.generate_key(bit_length=256)
        nonce = os.urandom(_NONCE_BYTES)
        wrapped = self._master.encrypt(nonce, data_key, self._aad(key_id, context))
        return data_key, nonce + wrapped

    def decrypt_data_key(
        self, encrypted_key: bytes, key_id: str, context: dict[str, str]
    ) -> bytes:
        nonce, wrapped = encrypted_key[:_NONCE_BYTES], encrypted_key[_NONCE_BYTES:]
        try:
            return self._master.decrypt(nonce, wrapped, self._aad(key_id, context))
        except InvalidTag as exc:
            raise DecryptionFailure("Failed to unwrap data key.") from exc

    @staticmethod
    def _aad(key_id: str, context: dict[str, str]) -> bytes:
        return key_id.encode("utf-8") + b"|" + _canonical(context)


class EncryptionProvider:
    """Encrypt and decrypt payloads bound to an owner context."""

    CONTEXT_KEY = "ownerId"

    def __init__(self, key_provider: KeyProvider) -> None:
        self._keys = key_provider

    def encrypt(self, plaintext: bytes, key_id: str, context: str) -> str:
        """Encrypt ``plaintext`` and return a printable envelope."""
        if not plaintext or not key_id or not context:
            raise ValueError("Plaintext, key id and context are required.")

        encryption_context = {self.CONTEXT_KEY: context}
        data_key, encrypted_key = self._keys.generate_data_key(key_id, encryption_context)
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = AESGCM(data_key).encrypt(
            nonce, plaintext, _canonical(encryption_context)
        )
        envelope = {
            "v": _ENVELOPE_VERSION,
            "ctx": encryption_context,
            "kid": key_id,
            "edk": _b64e(encrypted_key),
            "iv": _b64e(nonce),
            "ct": _b64e(ciphertext),
        }
        return _b64e(_canonical(envelope))

    def decrypt(self, ciphertext: str, key_id: str, context: str) -> bytes:
        """Decrypt an envelope produced by :meth:`encrypt` for the same context."""
        envelope = self._parse(ciphertext)
        encryption_context = envelope["ctx"]
        if encryption_context.get(self.CONTEXT_KEY) != context:
            logger.error("Encryption context mismatch for owner %s", context)
            raise ContextMismatch("Invalid encryption context - owner mismatch.")

        try:
            encrypted_key = _b64d(envelope["edk"])
            nonce = _b64d(envelope["iv"])
            body = _b64d(envelope["ct"])
        except (binascii.Error, ValueError, AttributeError) as exc:
            raise DecryptionFailure("Envelope fields are not valid base64.") from exc

        data_key = self._keys.decrypt_data_key(encrypted_key, key_id, encryption_context)
        try:
            return AESGCM(data_key).decrypt(nonce, body, _canonical(encryption_context))
        except (InvalidTag, ValueError) as exc:
            raise DecryptionFailure("Ciphertext failed authentication.") from exc

    @staticmethod
    def _parse(ciphertext: str) -> dict[str, Any]:
        try:
            envelope = json.loads(_b64d(ciphertext))
        except (binascii.Error, ValueError, UnicodeError) as exc:
            raise DecryptionFailure("Ciphertext is not a valid envelope.") from exc
        if (
            not isinstance(envelope, dict)
            or envelope.get("v") != _ENVELOPE_VERSION
            or not isinstance(envelope.get("ctx"), dict)
            or not all(key in envelope for key in ("edk", "iv", "ct"))
        ):
            raise DecryptionFailure("Ciphertext is not a valid envelope.")
        return envelope


__all__ = [
    "EncryptionProvider",
    "KMSKeyProvider",
    "KeyProvider",
    "LocalKeyProvider",
]
