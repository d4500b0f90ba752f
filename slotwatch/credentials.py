"""Site credentials at rest: Fernet-encrypted JSON blobs keyed by ENCRYPTION_KEY."""

import base64
import hashlib
import json

from cryptography.fernet import Fernet, InvalidToken

from slotwatch.config import CFG


class DecryptionError(Exception):
    """Raised when a credential blob cannot be decrypted (malformed blob or rotated key)."""


def _fernet(key: str | None = None) -> Fernet:
    passphrase = key if key is not None else CFG["encryption_key"]
    if not passphrase:
        raise DecryptionError("ENCRYPTION_KEY is not configured")
    digest = hashlib.sha256(passphrase.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_credentials(credentials: dict, key: str | None = None) -> str:
    payload = {
        "username": credentials.get("username", ""),
        "password": credentials.get("password", ""),
    }
    token = _fernet(key).encrypt(json.dumps(payload).encode("utf-8"))
    return token.decode("ascii")


def decrypt_credentials(blob: str, key: str | None = None) -> dict:
    if not blob:
        raise DecryptionError("Empty credential blob")
    try:
        raw = _fernet(key).decrypt(blob.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (InvalidToken, UnicodeError, ValueError) as exc:
        raise DecryptionError("Failed to decrypt credentials") from exc

    if not isinstance(data, dict) or "username" not in data or "password" not in data:
        raise DecryptionError("Decrypted payload is not a credential record")
    return {"username": data["username"], "password": data["password"]}
