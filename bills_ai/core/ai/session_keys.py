"""Session-key secret encryption (AES-256-GCM).

The key is derived from the user's unlock password and lives only in
memory. While the session is locked nothing can be decrypted.
"""

from __future__ import annotations

import base64
import secrets
from typing import Dict, Optional, Protocol

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .exceptions import SessionLockedError

ALGORITHM = "aes-256-gcm"


class SecretDecryptor(Protocol):
    def has_session_key(self) -> bool:
        ...

    def decrypt_secret(self, iv: str, cipher_text: str) -> str:
        ...


class SessionKeyring:
    def __init__(self) -> None:
        self._key: Optional[bytes] = None

    def set_session_key_from_password(self, password: str, salt_hex: str) -> None:
        kdf = Scrypt(salt=bytes.fromhex(salt_hex), length=32, n=2**14, r=8, p=1)
        self._key = kdf.derive(password.encode("utf-8"))

    def clear_session_key(self) -> None:
        self._key = None

    def has_session_key(self) -> bool:
        return self._key is not None

    def encrypt_secret(self, plain_text: str) -> Dict[str, str]:
        if self._key is None:
            raise SessionLockedError("LOCKED")
        iv = secrets.token_bytes(12)
        # AESGCM appends the 16-byte tag to the ciphertext
        payload = AESGCM(self._key).encrypt(iv, plain_text.encode("utf-8"), None)
        return {
            "iv": base64.b64encode(iv).decode("ascii"),
            "cipherText": base64.b64encode(payload).decode("ascii"),
            "algo": ALGORITHM,
        }

    def decrypt_secret(self, iv: str, cipher_text: str) -> str:
        if self._key is None:
            raise SessionLockedError("LOCKED")
        payload = base64.b64decode(cipher_text)
        return AESGCM(self._key).decrypt(base64.b64decode(iv), payload, None).decode("utf-8")
