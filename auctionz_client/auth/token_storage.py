"""
Credential storage for the AuctionZ session client.

This module provides the key/value storage backends (system keyring,
encrypted file, in-memory) and the TokenStore that keeps the three-part
credential in them as an all-or-nothing unit.
"""

import os
import json
import logging
import base64
from pathlib import Path
from typing import Optional, Dict, List, Iterable

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from auctionz_shared.exceptions import TokenStorageError, ErrorCode
from auctionz_shared.interfaces import IKeyValueStorage
from auctionz_shared.models import (
    Credential, CREDENTIAL_KEYS, ACCESS_TOKEN_KEY, SESSION_ID_KEY
)

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "auctionz-client"


def _default_config_dir() -> Path:
    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        return Path(xdg_config) / 'auctionz'
    return Path.home() / '.config' / 'auctionz'


class MemoryStorage(IKeyValueStorage):
    """Process-local storage; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_items(self, items: Dict[str, str]) -> None:
        self._data.update(items)

    def remove_items(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())


class KeyringStorage(IKeyValueStorage):
    """
    Storage backed by the system keyring.

    The keyring cannot enumerate entries, so the list of stored keys is kept
    in an index entry next to the values.
    """

    INDEX_KEY = "__index__"

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        self.service_name = service_name

    @staticmethod
    def is_available(service_name: str = DEFAULT_SERVICE_NAME) -> bool:
        """Check if system keyring is available."""
        try:
            import keyring
            test_key = f"{service_name}_test"
            keyring.set_password(service_name, test_key, "test")
            result = keyring.get_password(service_name, test_key)
            keyring.delete_password(service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _read_index(self) -> List[str]:
        import keyring

        raw = keyring.get_password(self.service_name, self.INDEX_KEY)
        if not raw:
            return []
        try:
            return list(json.loads(raw))
        except ValueError:
            logger.warning("Keyring index is corrupt, rebuilding")
            return []

    def _write_index(self, keys: List[str]) -> None:
        import keyring

        keyring.set_password(self.service_name, self.INDEX_KEY, json.dumps(sorted(set(keys))))

    def get_item(self, key: str) -> Optional[str]:
        import keyring

        try:
            return keyring.get_password(self.service_name, key)
        except Exception as e:
            logger.error(f"Failed to read {key} from keyring: {e}")
            raise TokenStorageError(f"Failed to read {key}: {e}", ErrorCode.STORAGE_READ_FAILED, cause=e)

    def set_items(self, items: Dict[str, str]) -> None:
        import keyring

        try:
            for key, value in items.items():
                keyring.set_password(self.service_name, key, value)
            self._write_index(self._read_index() + list(items.keys()))
        except Exception as e:
            logger.error(f"Failed to write to keyring: {e}")
            raise TokenStorageError(f"Failed to store values: {e}", cause=e)

    def remove_items(self, keys: Iterable[str]) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        keys = list(keys)
        try:
            for key in keys:
                try:
                    keyring.delete_password(self.service_name, key)
                except PasswordDeleteError:
                    pass
            remaining = [key for key in self._read_index() if key not in keys]
            self._write_index(remaining)
        except Exception as e:
            logger.error(f"Failed to remove keys from keyring: {e}")
            raise TokenStorageError(f"Failed to remove values: {e}", cause=e)

    def keys(self) -> List[str]:
        try:
            return self._read_index()
        except Exception as e:
            logger.error(f"Failed to read keyring index: {e}")
            raise TokenStorageError(f"Failed to list keys: {e}", ErrorCode.STORAGE_READ_FAILED, cause=e)


class EncryptedFileStorage(IKeyValueStorage):
    """
    Storage in a Fernet-encrypted JSON file.

    All keys live in one file, so a multi-key write is a single file write.
    The encryption key is kept in the keyring when available, otherwise in a
    key file with restrictive permissions next to the data file.
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        service_name: str = DEFAULT_SERVICE_NAME,
        use_keyring: bool = True
    ):
        self.service_name = service_name
        self.storage_path = Path(storage_path) if storage_path else _default_config_dir() / 'credentials.enc'
        self.key_path = self.storage_path.with_suffix('.key')
        self.use_keyring = use_keyring

        self._encryption_key: Optional[bytes] = None

    def _derive_key(self) -> bytes:
        password = os.urandom(32)
        salt = os.urandom(16)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(password))

    def _get_encryption_key(self) -> bytes:
        """Get or create encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.use_keyring:
            try:
                import keyring
                stored_key = keyring.get_password(self.service_name, "encryption_key")
                if stored_key:
                    self._encryption_key = base64.b64decode(stored_key.encode())
                    return self._encryption_key
            except Exception as e:
                logger.warning(f"Failed to get encryption key from keyring: {e}")

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = self._derive_key()

        stored = False
        if self.use_keyring:
            try:
                import keyring
                keyring.set_password(self.service_name, "encryption_key", base64.b64encode(key).decode())
                stored = True
            except Exception as e:
                logger.warning(f"Failed to store encryption key in keyring: {e}")

        if not stored:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            self.key_path.write_bytes(key)
            os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _load(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}
        try:
            fernet = Fernet(self._get_encryption_key())
            decrypted = fernet.decrypt(self.storage_path.read_bytes())
            return json.loads(decrypted.decode())
        except InvalidToken as e:
            logger.error("Credential file cannot be decrypted with the current key")
            raise TokenStorageError("Credential file cannot be decrypted", ErrorCode.STORAGE_READ_FAILED, cause=e)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read credential file: {e}")
            raise TokenStorageError(f"Failed to read credential file: {e}", ErrorCode.STORAGE_READ_FAILED, cause=e)

    def _save(self, data: Dict[str, str]) -> None:
        try:
            if not data:
                if self.storage_path.exists():
                    self.storage_path.unlink()
                return

            fernet = Fernet(self._get_encryption_key())
            encrypted = fernet.encrypt(json.dumps(data).encode())

            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.storage_path.with_suffix('.tmp')
            tmp_path.write_bytes(encrypted)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            logger.error(f"Failed to write credential file: {e}")
            raise TokenStorageError(f"Failed to write credential file: {e}", cause=e)

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_items(self, items: Dict[str, str]) -> None:
        data = self._load()
        data.update(items)
        self._save(data)

    def remove_items(self, keys: Iterable[str]) -> None:
        data = self._load()
        keys = [key for key in keys if key in data]
        if not keys:
            return
        for key in keys:
            del data[key]
        self._save(data)

    def keys(self) -> List[str]:
        return list(self._load().keys())

    def clear(self) -> None:
        self._save({})


def create_default_storage(
    backend: str = "auto",
    storage_path: Optional[str] = None,
    service_name: str = DEFAULT_SERVICE_NAME
) -> IKeyValueStorage:
    """
    Create the durable local storage.

    Args:
        backend: One of auto, keyring, file or memory
        storage_path: Path for the encrypted file backend
        service_name: Keyring service name

    Returns:
        Storage instance
    """
    if backend == "memory":
        return MemoryStorage()

    if backend == "keyring" or (backend == "auto" and KeyringStorage.is_available(service_name)):
        logger.info("Using system keyring for credential storage")
        return KeyringStorage(service_name)

    logger.info("Using encrypted file for credential storage")
    return EncryptedFileStorage(
        Path(storage_path) if storage_path else None,
        service_name=service_name,
        use_keyring=backend != "file"
    )


class TokenStore:
    """
    Durable holder for the access token, refresh token and session id.

    The three values are written and removed together; a partially written
    credential is reported as absent.
    """

    def __init__(self, storage: IKeyValueStorage):
        self.storage = storage

    def set(self, credential: Credential) -> None:
        """
        Store the credential.

        Raises:
            TokenStorageError: When the backend cannot be written
        """
        self.storage.set_items(credential.to_dict())
        logger.debug(f"Credential stored for session {credential.session_id}")

    def get(self) -> Optional[Credential]:
        """Return the stored credential, or None when any part is missing."""
        try:
            values = {key: self.storage.get_item(key) for key in CREDENTIAL_KEYS}
        except TokenStorageError as e:
            logger.error(f"Failed to read credential: {e}")
            return None
        return Credential.from_mapping(values)

    def clear(self) -> bool:
        """
        Remove all three credential keys.

        Returns:
            True if the credential was removed
        """
        try:
            self.storage.remove_items(CREDENTIAL_KEYS)
            logger.debug("Credential cleared")
            return True
        except TokenStorageError as e:
            logger.error(f"Failed to clear credential: {e}")
            return False

    def is_present(self) -> bool:
        return self.get() is not None

    def update_access_token(self, access_token: str) -> bool:
        """
        Replace the access token of the stored credential.

        Returns:
            False when the credential was cleared in the meantime
        """
        if not self.is_present():
            logger.warning("Credential cleared before the new access token could be stored")
            return False
        self.storage.set_items({ACCESS_TOKEN_KEY: access_token})
        return True

    def get_access_token(self) -> Optional[str]:
        credential = self.get()
        return credential.access_token if credential else None

    def get_session_id(self) -> Optional[str]:
        try:
            return self.storage.get_item(SESSION_ID_KEY)
        except TokenStorageError:
            return None
