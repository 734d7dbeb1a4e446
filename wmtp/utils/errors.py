"""Error hierarchy and centralized error handling for the WMTP client."""

from enum import Enum
from typing import Any, Dict

from wmtp.utils.logging import get_logger

_logger = None


def _get_logger():
    """Get logger with lazy initialisation."""
    global _logger
    if _logger is None:
        _logger = get_logger(__name__)
    return _logger


## Error Categories


class ErrorCategory(Enum):
    """Categories of errors for better handling."""

    NETWORK = "network"
    PROTOCOL = "protocol"
    VALIDATION = "validation"
    STORAGE = "storage"
    FILE_SYSTEM = "file_system"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


## Custom Exceptions


class WMTPError(Exception):
    """Base exception for all WMTP client errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        """Initialise WMTPError with optional message and details."""
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error details to a dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Network Errors


class NetworkError(WMTPError):
    """Base exception for connection and stream errors."""

    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class CapabilityUnavailableError(NetworkError):
    """The runtime has no WebTransport support."""

    user_message = "WebTransport is not available in this environment"


class NotConnectedError(NetworkError):
    """A send was attempted without an open connection."""

    user_message = "Not connected"


class HandshakeError(NetworkError):
    """Connection or stream setup failed during connect."""

    user_message = "Failed to establish connection"


class CertificatePinError(HandshakeError):
    """The server certificate does not match the pinned fingerprint."""

    user_message = "Server certificate does not match the pinned hash"


class ReadStreamError(NetworkError):
    """The control stream failed while reading."""

    user_message = "Connection stream failed"


class NetworkTimeoutError(NetworkError):
    """Exception for network timeout errors."""

    user_message = "The connection timed out"


class HeartbeatTimeoutError(NetworkTimeoutError):
    """No traffic arrived from the server within the heartbeat window."""

    user_message = "Server heartbeat lost"


## Protocol Errors


class ProtocolError(WMTPError):
    """Base exception for wire protocol errors."""

    category = ErrorCategory.PROTOCOL
    user_message = "A protocol error occurred"


class FrameParseError(ProtocolError):
    """A received frame could not be decoded into a message."""

    user_message = "Received a malformed message"


## Validation Errors


class ValidationError(WMTPError):
    """Base exception for validation-related errors."""

    category = ErrorCategory.VALIDATION
    user_message = "Invalid input"


class MissingRequiredFieldError(ValidationError):
    """Exception for missing required fields."""

    user_message = "A required field is missing"


class InvalidCommandError(ValidationError):
    """A custom command is not a JSON object with a command name."""

    user_message = "Invalid command"


class InvalidCertificateHashError(ValidationError):
    """A certificate hash is not a base64 SHA-256 digest."""

    user_message = "Invalid certificate hash"


## Session Store Errors


class SessionStoreError(WMTPError):
    """Base exception for session store errors."""

    category = ErrorCategory.STORAGE
    user_message = "A session store error occurred"


class EncryptionError(SessionStoreError):
    """Exception for encryption/decryption failures."""

    user_message = "Failed to encrypt/decrypt data"


class BackendUnavailableError(SessionStoreError):
    """Exception when no storage backend can be used."""

    user_message = "Session storage is unavailable"


## File System Errors


class FileSystemError(WMTPError):
    """Base exception for file system-related errors."""

    category = ErrorCategory.FILE_SYSTEM
    user_message = "A file system error occurred"


## Configuration Errors


class ConfigurationError(WMTPError):
    """Base exception for configuration-related errors."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class MissingConfigError(ConfigurationError):
    """Exception for missing configuration settings."""

    user_message = "Missing configuration settings"


class InvalidConfigError(ConfigurationError):
    """Exception for invalid configuration settings."""

    user_message = "Invalid configuration settings"


## Error Handler


class ErrorHandler:
    """Centralized error handling and logging."""

    @staticmethod
    def handle(
        error: Exception, context: str = "", log_traceback: bool = True
    ) -> Dict[str, Any]:
        """Handle errors with logging and user-friendly message."""
        if isinstance(error, WMTPError):
            _get_logger().error(f"{context}: {error.message}", extra=error.details)
            if log_traceback:
                _get_logger().exception(error)
            return error.to_dict()
        else:
            _get_logger().error(f"{context}: {str(error)}")
            if log_traceback:
                _get_logger().exception(error)
            return {
                "error_type": "UnknownError",
                "category": ErrorCategory.UNKNOWN.value,
                "message": str(error),
                "details": {"context": context},
            }


def format_error_message(error: Exception) -> str:
    """Format an error message for display."""
    if isinstance(error, WMTPError):
        return error.message
    else:
        return "An unexpected error occurred - check logs for details."
