"""
MPE SDK - client-side payments for multi-party escrow services.
"""
from .account import Account
from .client import MPEClient, ServiceClient
from .config import SDKConfig, configure_logging
from .exceptions import (
    MPEError,
    SigningError,
    ChainTransactionError,
    DaemonRpcError,
    DaemonConnectionError,
    DaemonTimeoutError,
    InsufficientFundsError,
    StaleStateError,
    ConfigurationError,
)
from .models import (
    ConcurrencyToken,
    FreeCallToken,
    PaymentChannelState,
    PaymentMetadata,
    SignedClaim,
    TxReceipt,
    TypedValue,
)
from .service import ServiceGroup, ServiceMetadata
from .signing import SignedMessageBuilder, Signer
from .strategies import DefaultPaymentStrategy, PaymentKind, decide_payment_kind
from .version import __version__

__all__ = [
    "MPEClient",
    "ServiceClient",
    "Account",
    "SDKConfig",
    "configure_logging",
    "ServiceGroup",
    "ServiceMetadata",
    "SignedMessageBuilder",
    "Signer",
    "DefaultPaymentStrategy",
    "PaymentKind",
    "decide_payment_kind",
    "ConcurrencyToken",
    "FreeCallToken",
    "PaymentChannelState",
    "PaymentMetadata",
    "SignedClaim",
    "TxReceipt",
    "TypedValue",
    "MPEError",
    "SigningError",
    "ChainTransactionError",
    "DaemonRpcError",
    "DaemonConnectionError",
    "DaemonTimeoutError",
    "InsufficientFundsError",
    "StaleStateError",
    "ConfigurationError",
    "__version__",
]
