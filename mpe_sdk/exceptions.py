"""
Exceptions for the MPE SDK.
"""
from typing import Optional


class MPEError(Exception):
    """Base exception for all MPE SDK errors."""
    pass


class SigningError(MPEError):
    """Raised when the signer is unavailable or rejects a message."""
    pass


class ChainTransactionError(MPEError):
    """Raised when a transaction is rejected, reverted or not confirmed."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class DaemonRpcError(MPEError):
    """Raised when a call to the service daemon fails."""

    def __init__(self, message: str, status_code: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message)


class DaemonConnectionError(DaemonRpcError):
    """Raised when the service daemon cannot be reached."""
    pass


class DaemonTimeoutError(DaemonRpcError):
    """Raised when a daemon call exceeds its deadline."""
    pass


class InsufficientFundsError(MPEError):
    """Raised when the escrow balance cannot cover the required price."""
    pass


class StaleStateError(MPEError):
    """Raised when daemon-reported channel state contradicts the chain."""
    pass


class ConfigurationError(MPEError):
    """Raised for missing or invalid configuration."""
    pass
