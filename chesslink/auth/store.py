"""Encrypted on-disk storage for access tokens.

Tokens are kept in a single Fernet-encrypted JSON file keyed by API base
URL, so a client can restore its authenticated configuration between runs.
The encryption key lives in the OS keyring; when no keyring backend is
available a key derived from machine-specific data is used instead.
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import keyring
from cryptography.fernet import Fernet, InvalidToken

from .tokens import TokenSet

logger = logging.getLogger(__name__)

if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)
        with open(lock_path, "r") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        # msvcrt has no shared locks; every lock is exclusive
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)
        with open(lock_path, "r+") as lock_file:
            msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
            try:
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


KEYRING_SERVICE = "chesslink"
KEYRING_USERNAME = "token-encryption-key"

DEFAULT_STORE_DIR = Path.home() / ".local" / "share" / "chesslink"
TOKENS_FILE = "tokens.json"


class TokenStoreError(Exception):
    """Error in token storage operations."""

    pass


class TokenDecryptionError(TokenStoreError):
    """The token file cannot be decrypted (key changed or file corrupted).

    Callers should ask the user to log in again, or clear the store.
    """

    pass


def _derive_fallback_key() -> bytes:
    """Fernet key derived from machine-specific data, used without a keyring."""
    components = []
    machine_id = Path("/etc/machine-id")
    if machine_id.exists():
        components.append(machine_id.read_text().strip())
    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "chesslink")))

    digest = hashlib.sha256(":".join(components).encode()).digest()
    return base64.urlsafe_b64encode(digest)


def _normalize(api_url: str) -> str:
    return api_url.rstrip("/").lower()


class TokenStore:
    """Encrypted token storage keyed by API base URL.

    The store directory is created with 0700 permissions and the token
    file is written with 0600.
    """

    def __init__(self, store_dir: Path | None = None):
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self._cipher: Fernet | None = None
        self._using_keyring = False

        self._init_storage()
        self._init_encryption()

    @property
    def tokens_path(self) -> Path:
        return self.store_dir / TOKENS_FILE

    def _init_storage(self) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not set directory permissions: {e}")

    def _init_encryption(self) -> None:
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")
            self._cipher = Fernet(key.encode("ascii"))
            self._using_keyring = True
        except Exception as e:
            # Any keyring backend failure falls back to the derived key
            logger.warning(
                f"Keyring not available ({type(e).__name__}: {e}). "
                f"Tokens are encrypted with a machine-derived key instead."
            )
            self._cipher = Fernet(_derive_fallback_key())
            self._using_keyring = False

    def is_using_keyring(self) -> bool:
        return self._using_keyring

    def _read(self) -> dict[str, Any]:
        """Read and decrypt the token file.

        Raises:
            TokenDecryptionError: If the file cannot be decrypted or parsed
        """
        path = self.tokens_path
        if not path.exists():
            return {}
        assert self._cipher is not None

        with _file_lock(path, exclusive=False):
            encrypted = path.read_text()

        try:
            data: dict[str, Any] = json.loads(self._cipher.decrypt(encrypted.encode("ascii")))
        except InvalidToken as e:
            raise TokenDecryptionError(
                "Cannot decrypt stored tokens. The encryption key may have changed. "
                "Run 'chesslink auth logout --all' and log in again."
            ) from e
        except (ValueError, UnicodeDecodeError) as e:
            raise TokenDecryptionError(
                "Stored token file is corrupted. Run 'chesslink auth logout --all' and log in again."
            ) from e
        return data

    def _write(self, data: dict[str, Any]) -> None:
        assert self._cipher is not None
        path = self.tokens_path
        encrypted = self._cipher.encrypt(json.dumps(data, indent=2).encode("utf-8")).decode("ascii")

        with _file_lock(path, exclusive=True):
            path.write_text(encrypted)
            try:
                path.chmod(stat.S_IRUSR | stat.S_IWUSR)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

    def get_token(self, api_url: str) -> TokenSet | None:
        entry = self._read().get(_normalize(api_url))
        if entry is None:
            return None
        try:
            return TokenSet.from_dict(entry)
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring invalid stored token for {api_url}: {e}")
            return None

    def set_token(self, api_url: str, token: TokenSet) -> None:
        data = self._read()
        data[_normalize(api_url)] = token.to_dict()
        self._write(data)
        logger.debug(f"Stored token for {api_url}")

    def delete_token(self, api_url: str) -> bool:
        """Delete the token for ``api_url``. Returns False if there was none."""
        data = self._read()
        if data.pop(_normalize(api_url), None) is None:
            return False
        self._write(data)
        logger.debug(f"Deleted token for {api_url}")
        return True

    def list_api_urls(self) -> list[str]:
        return list(self._read().keys())

    def get_token_info(self, api_url: str) -> dict[str, Any] | None:
        """Token metadata safe to display (never the token itself)."""
        token = self.get_token(api_url)
        if token is None:
            return None
        return {
            "api_url": token.api_url,
            "token_type": token.token_type,
            "scope": token.scope,
            "issued_at": token.issued_at.isoformat(),
            "expires_at": token.expires_at.isoformat() if token.expires_at else None,
            "is_expired": token.is_expired(),
        }

    def clear_all(self) -> None:
        """Delete every stored token."""
        if self.tokens_path.exists():
            self.tokens_path.unlink()
        logger.info("Cleared all stored tokens")
