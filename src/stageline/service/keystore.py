"""
Encrypted API-key storage (single record file).

AES-256-GCM with a master key kept as hex in ``<data_dir>/secret.key``,
generated on first use. The record ``<data_dir>/api-key.enc`` holds
``ivHex:authTagHex:ciphertextHex`` and is replaced whole on every save.
"""
import logging
import os
import re
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from stageline.config import settings
from stageline.contracts import KeySaveResult

logger = logging.getLogger(__name__)

MASTER_KEY_FILE = "secret.key"
RECORD_FILE = "api-key.enc"
KEY_LEN = 32
IV_LEN = 12
TAG_LEN = 16

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class ApiKeyStore:
    """Stores one API key encrypted at rest."""

    def __init__(self, data_dir: Union[str, Path, None] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else settings.DATA_DIR
        self.master_key_path = self.data_dir / MASTER_KEY_FILE
        self.record_path = self.data_dir / RECORD_FILE

    def _ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _get_encryption_key(self) -> bytes:
        """
        Get or create the 32-byte master key.

        A missing or malformed key file is replaced by a fresh key; any
        record encrypted under the old key becomes unreadable.
        """
        self._ensure_data_dir()
        if self.master_key_path.exists():
            hex_key = self.master_key_path.read_text(encoding="utf-8").strip()
            if _HEX_KEY_RE.match(hex_key):
                return bytes.fromhex(hex_key)
            logger.warning(f"Master key at {self.master_key_path} is malformed, generating a new one")

        master_key = os.urandom(KEY_LEN)
        self.master_key_path.write_text(master_key.hex(), encoding="utf-8")
        return master_key

    def save(self, plain_key: str) -> KeySaveResult:
        """Encrypt and store the API key. Failures are returned, not raised."""
        try:
            key = self._get_encryption_key()
            iv = os.urandom(IV_LEN)
            sealed = AESGCM(key).encrypt(iv, plain_key.encode("utf-8"), None)
            ciphertext, auth_tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]
            line = ":".join([iv.hex(), auth_tag.hex(), ciphertext.hex()])
            self._ensure_data_dir()
            self.record_path.write_text(line, encoding="utf-8")
            return KeySaveResult(ok=True)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"apiKeyStore: failed to save: {e}")
            return KeySaveResult(ok=False, error=str(e))

    def load(self) -> Optional[str]:
        """Read and decrypt the stored API key; None if missing or invalid."""
        if not self.record_path.exists():
            return None
        try:
            key = self._get_encryption_key()
            line = self.record_path.read_text(encoding="utf-8").strip()
            parts = line.split(":")
            if len(parts) != 3:
                return None
            iv_hex, auth_tag_hex, enc_hex = parts
            iv = bytes.fromhex(iv_hex)
            auth_tag = bytes.fromhex(auth_tag_hex)
            enc = bytes.fromhex(enc_hex)
            return AESGCM(key).decrypt(iv, enc + auth_tag, None).decode("utf-8")
        except (InvalidTag, OSError, ValueError) as e:
            logger.warning(f"apiKeyStore: failed to read/decrypt: {e!r}")
            return None
