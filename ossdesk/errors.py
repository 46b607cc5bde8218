"""
Exceptions raised by the profile, session and listing layers.
"""


class OssDeskError(Exception):
    """Base exception for all application-specific errors."""


class ValidationError(OssDeskError):
    """Raised when a profile is missing a required field or does not exist."""


class ProviderError(OssDeskError):
    """Raised when the storage client or one of its calls fails."""


class DecryptionError(OssDeskError):
    """Raised when a ciphertext is malformed or was produced under another key."""


class NotConnectedError(OssDeskError):
    """Raised when a bucket operation is attempted without a live session."""

    def __init__(self, message: str = "Storage client is not connected") -> None:
        super().__init__(message)


class ConfigurationError(OssDeskError):
    """Raised for settings files whose values cannot be used."""
