# deploy_worker/core/encryption.py
"""
Chiffrement symétrique des secrets au repos (mots de passe registry,
variables d'environnement, kubeconfig des clusters).

Format: hex(nonce ‖ tag ‖ données chiffrées), AES-256-GCM.
La clé est dérivée une seule fois au démarrage du processus (CipherKey)
puis injectée dans CredentialCipher.
"""
import hashlib
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from deploy_worker.core.exceptions import (
    CiphertextEncodingError,
    CiphertextTooShortError,
    ConfigurationError,
    WrongMasterKeyError,
)

NONCE_LENGTH = 16
TAG_LENGTH = 16
MIN_CIPHERTEXT_LENGTH = (NONCE_LENGTH + TAG_LENGTH) * 2


@dataclass(frozen=True)
class CipherKey:
    """Clé AES-256 dérivée de la master key (SHA-256)"""
    value: bytes

    def __repr__(self) -> str:
        return "CipherKey(<redacted>)"

    @classmethod
    def from_master_key(cls, master_key: Optional[str]) -> "CipherKey":
        """Dérive la clé; échoue si la master key est absente ou vide"""
        if master_key is None:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is not set")
        # Les secrets Kubernetes/configmaps ajoutent souvent un '\n' final
        trimmed = master_key.strip()
        if not trimmed:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is empty after trimming")
        return cls(hashlib.sha256(trimmed.encode("utf-8")).digest())


class CredentialCipher:
    def __init__(self, key: CipherKey):
        self._aead = AESGCM(key.value)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM renvoie données ‖ tag, le format stocké est nonce ‖ tag ‖ données
        encrypted, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return (nonce + tag + encrypted).hex()

    def decrypt(self, ciphertext: str) -> str:
        if len(ciphertext) < MIN_CIPHERTEXT_LENGTH:
            raise CiphertextTooShortError(
                f"Encrypted text is too short ({len(ciphertext)} characters, expected at least "
                f"{MIN_CIPHERTEXT_LENGTH}). This might indicate corrupted data or incorrect format."
            )

        try:
            raw = bytes.fromhex(ciphertext)
        except ValueError as e:
            raise CiphertextEncodingError("Encrypted text contains invalid hex characters") from e

        nonce = raw[:NONCE_LENGTH]
        tag = raw[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        encrypted = raw[NONCE_LENGTH + TAG_LENGTH:]

        try:
            plaintext = self._aead.decrypt(nonce, encrypted + tag, None)
        except InvalidTag as e:
            raise WrongMasterKeyError(
                "Failed to decrypt data. This is likely caused by an incorrect ENCRYPTION_KEY. "
                "Make sure the ENCRYPTION_KEY environment variable matches the key used to encrypt the data."
            ) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CiphertextEncodingError("Decrypted data is not valid UTF-8") from e
