"""Encrypted file backend"""

import asyncio
import json
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from wmtp.utils.errors import EncryptionError
from wmtp.utils.paths import MASTER_KEY_PATH, SESSIONS_PATH

from .base import StorageBackend


class EncryptedFileBackend(StorageBackend):
    """Encrypted file backend (fallback)."""

    def __init__(
        self,
        records_path: Optional[Path] = None,
        master_key_path: Optional[Path] = None,
    ):
        self._records_path = records_path or SESSIONS_PATH
        self._master_key_path = master_key_path or MASTER_KEY_PATH
        self._master_key: Optional[bytes] = None

    @property
    def name(self) -> str:
        return "Encrypted File"

    @property
    def priority(self) -> int:
        return 99  # Lowest priority (fallback)

    async def is_available(self) -> bool:
        """Always available as fallback."""
        return True

    async def store(self, service: str, key: str, value: str) -> None:
        records = await self._load_records()
        records[f"{service}:{key}"] = value
        await self._save_records(records)

    async def retrieve(self, service: str, key: str) -> Optional[str]:
        records = await self._load_records()
        return records.get(f"{service}:{key}")

    async def delete(self, service: str, key: str) -> None:
        records = await self._load_records()
        if records.pop(f"{service}:{key}", None) is not None:
            await self._save_records(records)

    async def _get_master_key(self) -> bytes:
        """Get or create master encryption key.

        Returns:
            bytes: The master encryption key.
        """
        if self._master_key:
            return self._master_key

        def load_or_create():
            self._master_key_path.parent.mkdir(parents=True, exist_ok=True)

            if self._master_key_path.exists():
                return self._master_key_path.read_bytes()

            key = Fernet.generate_key()
            self._master_key_path.write_bytes(key)
            self._master_key_path.chmod(0o600)
            return key

        self._master_key = await asyncio.to_thread(load_or_create)
        return self._master_key

    async def _load_records(self) -> dict:
        """Load and decrypt stored records.

        Returns:
            dict: The decrypted records keyed by ``service:key``.
        """
        if not self._records_path.exists():
            return {}

        def load(master_key):
            encrypted_data = self._records_path.read_bytes()
            if not encrypted_data:
                return {}

            try:
                decrypted = Fernet(master_key).decrypt(encrypted_data)
            except InvalidToken as e:
                raise EncryptionError(
                    "Stored sessions could not be decrypted",
                    details={"path": str(self._records_path)},
                ) from e

            return json.loads(decrypted)

        master_key = await self._get_master_key()
        return await asyncio.to_thread(load, master_key)

    async def _save_records(self, records: dict) -> None:
        """Encrypt and save records.

        Args:
            records (dict): The records to save.
        """

        def save(master_key):
            self._records_path.parent.mkdir(parents=True, exist_ok=True)

            encrypted = Fernet(master_key).encrypt(json.dumps(records).encode())

            # Atomic write
            temp_path = self._records_path.with_suffix(".tmp")
            temp_path.write_bytes(encrypted)
            temp_path.chmod(0o600)
            temp_path.replace(self._records_path)

        master_key = await self._get_master_key()
        await asyncio.to_thread(save, master_key)
