"""Persistent storage for resumable session records."""

from typing import List, Optional

from wmtp.security.backends.base import StorageBackend
from wmtp.security.backends.encrypted_file import EncryptedFileBackend
from wmtp.security.backends.keyring import KeyringBackend
from wmtp.utils.errors import (
    BackendUnavailableError,
    SessionStoreError,
    WMTPError,
)
from wmtp.utils.logging import get_logger, log_event

logger = get_logger(__name__)

SERVICE_NAME = "wmtp"


class SessionStore:
    """Stores serialized session records through the best available backend.

    Backends are tried in priority order: the system keyring first and an
    encrypted file as the fallback. ``backend`` may be ``"auto"``,
    ``"keyring"`` or ``"file"``; explicit backends can also be injected.
    """

    def __init__(
        self,
        backend: str = "auto",
        service_name: str = SERVICE_NAME,
        backends: Optional[List[StorageBackend]] = None,
    ):
        self.service_name = service_name
        self._preference = backend
        self._candidates = backends
        self.backend: Optional[StorageBackend] = None

    def _default_candidates(self) -> List[StorageBackend]:
        if self._preference == "keyring":
            return [KeyringBackend()]
        if self._preference == "file":
            return [EncryptedFileBackend()]
        return [KeyringBackend(), EncryptedFileBackend()]

    async def initialise(self) -> StorageBackend:
        """Select the highest priority backend that is available.

        Returns:
            StorageBackend: The selected backend.

        Raises:
            BackendUnavailableError: If no candidate backend is available.
        """
        if self.backend is not None:
            return self.backend

        candidates = self._candidates or self._default_candidates()

        for candidate in sorted(candidates, key=lambda b: b.priority):
            if await candidate.is_available():
                self.backend = candidate
                logger.info(f"Using session storage backend: {candidate.name}")
                log_event(
                    "session_store_initialised",
                    f"Session store using {candidate.name}",
                    backend=candidate.name,
                    service=self.service_name,
                )
                if self._preference == "auto" and isinstance(candidate, EncryptedFileBackend):
                    logger.warning(
                        "System keyring unavailable, storing sessions in an encrypted file"
                    )
                return candidate

        raise BackendUnavailableError(
            "No session storage backend is available",
            details={"preference": self._preference},
        )

    async def get(self, key: str) -> Optional[str]:
        """Retrieve a stored record, or None when missing or unreadable.

        Args:
            key (str): The record key.

        Returns:
            Optional[str]: The stored record.
        """
        try:
            backend = await self.initialise()
            return await backend.retrieve(self.service_name, key)
        except Exception as e:
            logger.error(f"Failed to read stored session '{key}': {e}")
            return None

    async def set(self, key: str, value: str) -> None:
        """Store a record, replacing any previous value.

        Args:
            key (str): The record key.
            value (str): The serialized record.

        Raises:
            SessionStoreError: If the backend fails to store the record.
        """
        backend = await self.initialise()
        try:
            await backend.store(self.service_name, key, value)
        except WMTPError:
            raise
        except Exception as e:
            raise SessionStoreError(
                f"Failed to store session '{key}'",
                details={"backend": backend.name, "error": str(e)},
            ) from e

    async def delete(self, key: str) -> None:
        """Delete a record. Missing records are ignored.

        Args:
            key (str): The record key.

        Raises:
            SessionStoreError: If the backend fails to delete the record.
        """
        backend = await self.initialise()
        try:
            await backend.delete(self.service_name, key)
        except WMTPError:
            raise
        except Exception as e:
            raise SessionStoreError(
                f"Failed to delete session '{key}'",
                details={"backend": backend.name, "error": str(e)},
            ) from e
