# =============================================================================
# drms_core/offline/crypto.py
# AES-GCM Encryption of Cached Records with Versioned Keys
# =============================================================================
"""
KeyManager - Encrypts and decrypts cached payloads on the field device.

Features:
- AES-256-GCM with a fresh 12-byte nonce per payload
- Keys stored in the local store's encryption_keys table, one row per version
- Automatic rotation once the active key is older than the rotation window
- The most recent old keys are kept so earlier payloads stay readable
"""

from __future__ import annotations
import base64
import binascii
import os
import threading
from datetime import timedelta
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from drms_core.errors import LocalStoreCorruptionError
from drms_core.logging import get_logger
from drms_core.models.records import format_timestamp, parse_timestamp, utcnow

if TYPE_CHECKING:
    from drms_core.offline.local_store import LocalStore

logger = get_logger(__name__)

NONCE_SIZE = 12
KEY_BITS = 256


class KeyManager:
    """
    Versioned AES-GCM keys backed by the local store.

    Ciphertext tokens are base64(nonce || ciphertext+tag). Callers keep the
    key version next to each token so rotation never orphans old records.
    """

    def __init__(self, store: LocalStore, rotation_days: int = 90, max_old_keys: int = 5):
        self.store = store
        self.rotation_days = rotation_days
        self.max_old_keys = max_old_keys
        self._keys: Dict[int, AESGCM] = {}
        self._current_version: Optional[int] = None
        self._lock = threading.RLock()

    @property
    def current_version(self) -> int:
        self._ensure_loaded()
        return self._current_version

    def _ensure_loaded(self) -> None:
        with self._lock:
            if self._current_version is not None:
                return

            active = self.store.query(
                "SELECT * FROM encryption_keys WHERE is_active = 1 ORDER BY version DESC LIMIT 1"
            )
            if not active:
                self._create_key(1)
            else:
                row = active[0]
                self._current_version = row["version"]
                self._keys[row["version"]] = AESGCM(base64.b64decode(row["key_data"]))
                self.store.execute(
                    "UPDATE encryption_keys SET last_used = ? WHERE version = ?",
                    [format_timestamp(utcnow()), row["version"]],
                )
                if self.should_rotate(row["created_at"]):
                    logger.info(f"Encryption key v{row['version']} is due for rotation")
                    self.rotate()

    def should_rotate(self, created_at) -> bool:
        created = parse_timestamp(created_at)
        if created is None:
            return True
        return utcnow() - created >= timedelta(days=self.rotation_days)

    def _create_key(self, version: int) -> None:
        key = AESGCM.generate_key(bit_length=KEY_BITS)
        now = format_timestamp(utcnow())
        self.store.execute(
            """
            INSERT INTO encryption_keys (version, key_data, created_at, last_used, is_active)
            VALUES (?, ?, ?, ?, 1)
            """,
            [version, base64.b64encode(key).decode("ascii"), now, now],
        )
        self._keys[version] = AESGCM(key)
        self._current_version = version
        logger.info(f"Created encryption key v{version}")

    def rotate(self) -> int:
        """Retire the active key, create the next version and prune old keys."""
        with self._lock:
            previous = self._current_version or 0
            self.store.execute("UPDATE encryption_keys SET is_active = 0 WHERE is_active = 1")
            self._create_key(previous + 1)

            # Keep the active key plus the most recent `max_old_keys` retired ones
            cutoff = self._current_version - self.max_old_keys
            removed = self.store.execute("DELETE FROM encryption_keys WHERE version < ?", [cutoff])
            for version in [v for v in self._keys if v < cutoff]:
                del self._keys[version]
            if removed:
                logger.info(f"Pruned {removed} retired encryption keys")
            return self._current_version

    def _key(self, version: int) -> AESGCM:
        with self._lock:
            if version in self._keys:
                return self._keys[version]
            rows = self.store.query("SELECT key_data FROM encryption_keys WHERE version = ?", [version])
            if not rows:
                raise LocalStoreCorruptionError(f"Encryption key v{version} is not available")
            self._keys[version] = AESGCM(base64.b64decode(rows[0]["key_data"]))
            return self._keys[version]

    def encrypt(self, plaintext: str) -> Tuple[str, int]:
        """Returns (token, key version)."""
        version = self.current_version
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._key(version).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii"), version

    def decrypt(self, token: str, version: int) -> str:
        """
        Raises:
            LocalStoreCorruptionError: unknown key version, bad encoding or
                failed authentication
        """
        try:
            raw = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise LocalStoreCorruptionError(f"Ciphertext is not valid base64: {e}") from e
        if len(raw) <= NONCE_SIZE:
            raise LocalStoreCorruptionError("Ciphertext is truncated")

        try:
            plaintext = self._key(version).decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise LocalStoreCorruptionError(f"Ciphertext failed authentication under key v{version}") from e
        return plaintext.decode("utf-8")

    def reset(self) -> None:
        """Forget cached key material; the next use reloads from the store."""
        with self._lock:
            self._keys.clear()
            self._current_version = None
