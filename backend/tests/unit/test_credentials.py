import json
import os
import stat

import pytest

from livepoll.core.errors import ValidationError
from livepoll.services.credentials import CredentialStore, looks_like_api_key
from livepoll.services.notifications import NotificationCenter


@pytest.fixture
def notices() -> NotificationCenter:
    return NotificationCenter()


def test_save_then_load(tmp_path, notices) -> None:
    store = CredentialStore(str(tmp_path / "cfg" / "credentials.json"), notifications=notices)

    assert store.load() is None
    store.save("  sk-or-v1-0123456789abcdefghij  ")

    assert store.load() == "sk-or-v1-0123456789abcdefghij"
    assert store.is_configured()
    assert json.loads(store.path.read_text()) == {"api_key": "sk-or-v1-0123456789abcdefghij"}
    assert notices.history[-1].message == "API key configured successfully"


@pytest.mark.skipif(os.name == "nt", reason="posix permissions")
def test_saved_file_is_owner_only(tmp_path) -> None:
    store = CredentialStore(str(tmp_path / "credentials.json"))
    store.save("gsk_0123456789abcdefghijkl")

    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


def test_unrecognized_format_is_still_saved(tmp_path) -> None:
    store = CredentialStore(str(tmp_path / "credentials.json"))

    assert store.save("my-self-hosted-token") == "my-self-hosted-token"
    assert store.load() == "my-self-hosted-token"


def test_blank_key_rejected(tmp_path, notices) -> None:
    store = CredentialStore(str(tmp_path / "credentials.json"), notifications=notices)

    with pytest.raises(ValidationError):
        store.save("   ")

    assert not store.path.exists()
    assert notices.history[-1].level == "error"


def test_clear_removes_key(tmp_path) -> None:
    store = CredentialStore(str(tmp_path / "credentials.json"))
    store.save("sk-or-v1-0123456789abcdefghij")

    store.clear()
    store.clear()

    assert store.load() is None


def test_corrupt_file_reads_as_unconfigured(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text("{not json")

    assert CredentialStore(str(path)).load() is None


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("sk-or-v1-0123456789abcdefghij", True),
        ("gsk_0123456789abcdefghijkl", True),
        ("sk-short", False),
        ("token-0123456789abcdefghij", False),
    ],
)
def test_looks_like_api_key(key: str, expected: bool) -> None:
    assert looks_like_api_key(key) is expected
