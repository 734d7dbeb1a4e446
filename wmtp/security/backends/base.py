"""Base classes for session storage backends."""

from abc import ABC, abstractmethod
from typing import Optional


class StorageBackend(ABC):
    """Abstract base for key-value session storage backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for display."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Priority for auto-selection (lower = higher priority)."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if backend is available on system.

        Returns:
            bool: True if available, False otherwise.
        """

    @abstractmethod
    async def store(self, service: str, key: str, value: str) -> None:
        """Store a value.

        Args:
            service (str): The service name.
            key (str): The record key.
            value (str): The serialized record.
        """

    @abstractmethod
    async def retrieve(self, service: str, key: str) -> Optional[str]:
        """Retrieve a value.

        Args:
            service (str): The service name.
            key (str): The record key.

        Returns:
            Optional[str]: The stored value, or None if not found.
        """

    @abstractmethod
    async def delete(self, service: str, key: str) -> None:
        """Delete a value. Deleting a missing key is not an error.

        Args:
            service (str): The service name.
            key (str): The record key.
        """
