"""
Unit tests for the credential store and its storage backends.
"""

import os
import stat
from unittest.mock import patch

import pytest

from auctionz_shared.exceptions import TokenStorageError
from auctionz_shared.models import Credential
from auctionz_client.auth.token_storage import (
    MemoryStorage, EncryptedFileStorage, KeyringStorage, TokenStore, create_default_storage
)

from conftest import make_credential


class TestTokenStore:
    """Test the all-or-nothing credential semantics."""

    def test_set_and_get(self):
        store = TokenStore(MemoryStorage())
        credential = make_credential()

        store.set(credential)

        assert store.get() == credential
        assert store.is_present()
        assert store.get_session_id() == "sess-42"

    def test_partial_credential_reads_as_absent(self):
        storage = MemoryStorage({"access_token": "a", "session_id": "s"})
        store = TokenStore(storage)

        assert store.get() is None
        assert not store.is_present()
        assert store.get_access_token() is None

    def test_clear_removes_all_keys(self):
        storage = MemoryStorage({"theme": "dark"})
        store = TokenStore(storage)
        store.set(make_credential())

        assert store.clear()

        assert store.get() is None
        assert storage.keys() == ["theme"]

    def test_update_access_token(self):
        store = TokenStore(MemoryStorage())
        store.set(make_credential(access_token="old"))

        assert store.update_access_token("new")

        credential = store.get()
        assert credential.access_token == "new"
        assert credential.refresh_token == "refresh-token-1"

    def test_update_access_token_after_clear_does_not_resurrect(self):
        storage = MemoryStorage()
        store = TokenStore(storage)
        store.set(make_credential())
        store.clear()

        assert not store.update_access_token("new")
        assert storage.keys() == []

    def test_clear_reports_storage_failure(self):
        storage = MemoryStorage()
        store = TokenStore(storage)

        with patch.object(storage, "remove_items", side_effect=TokenStorageError("disk full")):
            assert store.clear() is False


class TestCredential:
    def test_rejects_empty_fields(self):
        with pytest.raises(ValueError):
            Credential("token", "", "sess")

    def test_from_mapping_incomplete(self):
        assert Credential.from_mapping({"access_token": "a", "refresh_token": "r"}) is None


class TestEncryptedFileStorage:
    """Test the encrypted file backend without a keyring."""

    @pytest.fixture
    def file_storage(self, tmp_path):
        return EncryptedFileStorage(tmp_path / "credentials.enc", use_keyring=False)

    def test_round_trip_through_new_instance(self, tmp_path, file_storage):
        file_storage.set_items({"access_token": "a", "refresh_token": "r", "session_id": "s"})

        reopened = EncryptedFileStorage(tmp_path / "credentials.enc", use_keyring=False)
        assert reopened.get_item("session_id") == "s"
        assert sorted(reopened.keys()) == ["access_token", "refresh_token", "session_id"]

    def test_file_is_encrypted_and_private(self, tmp_path, file_storage):
        file_storage.set_items({"access_token": "plain-secret"})

        data_file = tmp_path / "credentials.enc"
        assert b"plain-secret" not in data_file.read_bytes()
        assert stat.S_IMODE(os.stat(data_file).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(tmp_path / "credentials.key").st_mode) == 0o600

    def test_remove_and_clear(self, tmp_path, file_storage):
        file_storage.set_items({"access_token": "a", "theme": "dark"})

        file_storage.remove_items(["access_token"])
        assert file_storage.keys() == ["theme"]

        file_storage.clear()
        assert file_storage.keys() == []
        assert not (tmp_path / "credentials.enc").exists()

    def test_wrong_key_raises_storage_error(self, tmp_path, file_storage):
        file_storage.set_items({"access_token": "a"})
        (tmp_path / "credentials.key").unlink()

        reopened = EncryptedFileStorage(tmp_path / "credentials.enc", use_keyring=False)
        with pytest.raises(TokenStorageError):
            reopened.get_item("access_token")


class TestKeyringStorage:
    """Test the keyring backend against an in-memory keyring."""

    @pytest.fixture
    def fake_keyring(self):
        passwords = {}

        def set_password(service, key, value):
            passwords[(service, key)] = value

        def get_password(service, key):
            return passwords.get((service, key))

        def delete_password(service, key):
            from keyring.errors import PasswordDeleteError
            if (service, key) not in passwords:
                raise PasswordDeleteError(key)
            del passwords[(service, key)]

        with patch("keyring.set_password", side_effect=set_password), \
                patch("keyring.get_password", side_effect=get_password), \
                patch("keyring.delete_password", side_effect=delete_password):
            yield passwords

    def test_index_tracks_keys(self, fake_keyring):
        storage = KeyringStorage("auctionz-test")
        storage.set_items({"access_token": "a", "session_id": "s"})

        assert storage.keys() == ["access_token", "session_id"]

        storage.clear()
        assert storage.keys() == []
        assert storage.get_item("access_token") is None

    def test_is_available_probe(self, fake_keyring):
        assert KeyringStorage.is_available("auctionz-test")

    def test_write_failure_raises_storage_error(self):
        with patch("keyring.set_password", side_effect=RuntimeError("locked")):
            with pytest.raises(TokenStorageError):
                KeyringStorage("auctionz-test").set_items({"access_token": "a"})


class TestCreateDefaultStorage:
    def test_memory_backend(self):
        assert isinstance(create_default_storage("memory"), MemoryStorage)

    def test_falls_back_to_file_without_keyring(self, tmp_path):
        with patch.object(KeyringStorage, "is_available", return_value=False):
            storage = create_default_storage("auto", str(tmp_path / "c.enc"))

        assert isinstance(storage, EncryptedFileStorage)
        assert storage.storage_path == tmp_path / "c.enc"
