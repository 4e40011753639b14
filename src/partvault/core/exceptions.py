"""Custom exceptions for partvault."""


class PartVaultError(Exception):
    """Base exception for all partvault errors."""


class ConfigError(PartVaultError):
    """Raised when configuration is invalid or missing."""


class MissingCredentialsError(ConfigError):
    """Raised when backend credentials are absent after environment fallback."""


class ProgrammingMisuseError(PartVaultError):
    """Raised when a backend is used outside its lifecycle (double init, use after stop)."""


class StorageError(PartVaultError):
    """Raised when a storage operation fails."""

    retryable = False


class NotFoundError(StorageError):
    """Raised when a part or file does not exist in the backend."""


class ContentMismatchError(StorageError):
    """Raised when a key already holds an object with different content."""


class TransferError(StorageError):
    """Raised when listing or moving bytes fails.

    ``retryable`` tells the caller whether the same call may succeed later
    (timeouts, throttling, server errors, truncated streams).
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class OperationCancelledError(TransferError):
    """Raised when a caller cancelled an in-flight operation or its deadline passed."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message, retryable=True)
