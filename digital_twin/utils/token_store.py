"""
Secure key-value storage for auth tokens and the persisted store snapshot.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from .logging_config import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = 'accessToken'
REFRESH_TOKEN_KEY = 'refreshToken'
STORE_SNAPSHOT_KEY = 'digital-twin-storage'
BACKEND_TOKEN_NAMESPACE = 'backend'


class SecureStorageError(Exception):
    """Base exception for secure storage errors."""
    pass


class EncryptionKeyError(SecureStorageError):
    """Raised when the encryption key cannot be loaded or created."""
    pass


class DecryptionError(SecureStorageError):
    """Raised when stored data cannot be decrypted."""
    pass


class KeyValueStore(ABC):
    """String key-value interface over the platform storage primitive."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store value under key."""

    @abstractmethod
    def delete_item(self, key: str) -> None:
        """Remove key; missing keys are ignored."""


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store used for tests and ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def delete_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class EncryptedFileStore(KeyValueStore):
    """
    Fernet-encrypted key-value file.

    The whole map is encrypted as one JSON document. The key file is created on
    first use and restricted to the owner.

    Example:
        store = EncryptedFileStore(Path('~/.digital_twin/secure_store.enc'), Path('~/.digital_twin/.key'))
        store.set_item('accessToken', 'abc')
        store.get_item('accessToken')
    """

    def __init__(self, path: Path, key_path: Path, auto_create_key: bool = True):
        """
        Initialize encrypted file storage.

        Args:
            path: Encrypted data file
            key_path: File holding the Fernet key
            auto_create_key: Create a key when none exists yet
        """
        self.path = Path(path).expanduser()
        self.key_path = Path(key_path).expanduser()
        self._auto_create_key = auto_create_key
        self._fernet: Optional[Fernet] = None
        self._lock = threading.Lock()

    def _get_fernet(self) -> Fernet:
        if self._fernet is not None:
            return self._fernet

        if self.key_path.exists():
            try:
                self._fernet = Fernet(self.key_path.read_bytes())
            except (OSError, ValueError) as e:
                raise EncryptionKeyError(f'Failed to load encryption key: {e}')
            return self._fernet

        if not self._auto_create_key:
            raise EncryptionKeyError(f'Encryption key not found: {self.key_path}')

        key = Fernet.generate_key()
        try:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            self.key_path.write_bytes(key)
        except OSError as e:
            raise EncryptionKeyError(f'Failed to create encryption key: {e}')

        try:
            os.chmod(self.key_path, 0o600)
        except OSError as e:
            logger.warning(f'Could not set key file permissions: {e}')

        logger.info(f'Created new encryption key at {self.key_path}')
        self._fernet = Fernet(key)
        return self._fernet

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        token = self.path.read_bytes()
        if not token:
            return {}
        try:
            payload = self._get_fernet().decrypt(token)
        except InvalidToken:
            raise DecryptionError(f'Failed to decrypt {self.path}')
        items = json.loads(payload.decode('utf-8'))
        if not isinstance(items, dict):
            raise DecryptionError(f'Unexpected secure store content in {self.path}')
        return items

    def _write_all(self, items: Dict[str, str]) -> None:
        token = self._get_fernet().encrypt(json.dumps(items).encode('utf-8'))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp_path.write_bytes(token)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._read_all()
            items[key] = value
            self._write_all(items)

    def delete_item(self, key: str) -> None:
        with self._lock:
            items = self._read_all()
            if key in items:
                del items[key]
                self._write_all(items)


class TokenStore:
    """Access/refresh token pair persisted in a KeyValueStore.

    A non-empty namespace prefixes both keys so that clients speaking different
    auth schemes can share one KeyValueStore without overwriting each other.
    """

    def __init__(self, storage: KeyValueStore, namespace: str = ''):
        self.storage = storage
        self.namespace = namespace
        prefix = f'{namespace}:' if namespace else ''
        self.access_key = f'{prefix}{ACCESS_TOKEN_KEY}'
        self.refresh_key = f'{prefix}{REFRESH_TOKEN_KEY}'

    def get_access_token(self) -> Optional[str]:
        return self.storage.get_item(self.access_key) or None

    def get_refresh_token(self) -> Optional[str]:
        return self.storage.get_item(self.refresh_key) or None

    def set_access_token(self, token: str) -> None:
        self.storage.set_item(self.access_key, token)

    def save_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self.storage.set_item(self.access_key, access_token)
        if refresh_token:
            self.storage.set_item(self.refresh_key, refresh_token)

    def clear(self) -> None:
        """Remove both tokens (logout)."""
        self.storage.delete_item(self.access_key)
        self.storage.delete_item(self.refresh_key)
