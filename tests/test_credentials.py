import json

import pytest

from slotwatch import config
from slotwatch.credentials import DecryptionError, _fernet, decrypt_credentials, encrypt_credentials


def test_round_trip_with_configured_key() -> None:
    blob = encrypt_credentials({"username": "alice", "password": "s3cret"})
    assert "s3cret" not in blob
    assert decrypt_credentials(blob) == {"username": "alice", "password": "s3cret"}


def test_rotated_key_raises_without_leaking_blob() -> None:
    blob = encrypt_credentials({"username": "alice", "password": "s3cret"}, key="old-key")
    with pytest.raises(DecryptionError) as excinfo:
        decrypt_credentials(blob, key="new-key")
    assert blob not in str(excinfo.value)


@pytest.mark.parametrize("blob", ["", "not-a-token", "gAAAAAB-broken"])
def test_malformed_blob_raises(blob: str) -> None:
    with pytest.raises(DecryptionError):
        decrypt_credentials(blob)


def test_missing_key_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(config.CFG, "encryption_key", "")
    with pytest.raises(DecryptionError, match="ENCRYPTION_KEY"):
        encrypt_credentials({"username": "a", "password": "b"})


def test_payload_without_credential_fields_raises() -> None:
    token = _fernet().encrypt(json.dumps(["a", "b"]).encode()).decode()
    with pytest.raises(DecryptionError):
        decrypt_credentials(token)
