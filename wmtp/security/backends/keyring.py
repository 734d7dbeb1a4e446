"""System keyring backend"""

import asyncio
from typing import Optional

import keyring
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import PasswordDeleteError

from wmtp.utils.logging import get_logger

from .base import StorageBackend

logger = get_logger(__name__)


class KeyringBackend(StorageBackend):
    """System keyring backend."""

    @property
    def name(self) -> str:
        return "System Keyring"

    @property
    def priority(self) -> int:
        return 1

    async def is_available(self) -> bool:
        """Check if a usable keyring is configured.

        Returns:
            bool: True unless keyring resolved to its failing placeholder.
        """
        try:
            backend = await asyncio.to_thread(keyring.get_keyring)
        except Exception as e:
            logger.debug(f"Keyring availability check failed: {e}")
            return False

        return not isinstance(backend, FailKeyring)

    async def store(self, service: str, key: str, value: str) -> None:
        """Store in system keyring.

        Args:
            service (str): The name of the service.
            key (str): The record key.
            value (str): The serialized record.
        """
        await asyncio.to_thread(keyring.set_password, service, key, value)

    async def retrieve(self, service: str, key: str) -> Optional[str]:
        """Retrieve from system keyring.

        Args:
            service (str): The name of the service.
            key (str): The record key.

        Returns:
            Optional[str]: The stored value, or None if not found.
        """
        return await asyncio.to_thread(keyring.get_password, service, key)

    async def delete(self, service: str, key: str) -> None:
        """Delete from system keyring.

        Args:
            service (str): The name of the service.
            key (str): The record key.
        """
        try:
            await asyncio.to_thread(keyring.delete_password, service, key)
        except PasswordDeleteError:
            logger.debug(f"No keyring entry to delete for key: {key}")
