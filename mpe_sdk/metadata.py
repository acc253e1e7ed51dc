"""
Payment metadata attached to outbound service calls.

Keys ending in ``-bin`` are gRPC binary metadata and carry raw bytes;
every other value is sent as a plain string. Fields passed as None are
left out.
"""
from typing import Optional, Union

from .models import PaymentMetadata

PAYMENT_TYPE = "snet-payment-type"
CHANNEL_ID = "snet-payment-channel-id"
CHANNEL_NONCE = "snet-payment-channel-nonce"
CHANNEL_AMOUNT = "snet-payment-channel-amount"
SIGNATURE = "snet-payment-channel-signature-bin"
PREPAID_AUTH_TOKEN = "snet-prepaid-auth-token-bin"
FREE_CALL_USER_ID = "snet-free-call-user-id"
FREE_CALL_USER_ADDRESS = "snet-free-call-user-address"
CURRENT_BLOCK_NUMBER = "snet-current-block-number"
FREE_CALL_AUTH_TOKEN = "snet-free-call-auth-token-bin"
FREE_CALL_TOKEN_EXPIRY_BLOCK = "snet-free-call-token-expiry-block"
TRAIN_MODEL_ID = "snet-train-model-id"

ESCROW = "escrow"
PREPAID_CALL = "prepaid-call"
FREE_CALL = "free-call"
TRAIN_CALL = "train-call"


def _append(metadata: PaymentMetadata, key: str, value: Optional[Union[str, int, bytes]]) -> None:
    if value is None:
        return
    if key.endswith("-bin"):
        if isinstance(value, str):
            value = value.encode("utf-8")
        metadata.append((key, bytes(value)))
    else:
        metadata.append((key, str(value)))


def escrow_metadata(channel_id: int, nonce: int, amount: int, signature: bytes) -> PaymentMetadata:
    """Metadata of a pay-per-call escrow payment"""
    metadata: PaymentMetadata = []
    _append(metadata, PAYMENT_TYPE, ESCROW)
    _append(metadata, CHANNEL_ID, channel_id)
    _append(metadata, CHANNEL_NONCE, nonce)
    _append(metadata, CHANNEL_AMOUNT, amount)
    _append(metadata, SIGNATURE, signature)
    return metadata


def training_metadata(
    model_id: str,
    channel_id: int,
    nonce: int,
    amount: int,
    signature: bytes
) -> PaymentMetadata:
    """Metadata of a model-training payment"""
    metadata: PaymentMetadata = []
    _append(metadata, PAYMENT_TYPE, TRAIN_CALL)
    _append(metadata, CHANNEL_ID, channel_id)
    _append(metadata, CHANNEL_NONCE, nonce)
    _append(metadata, CHANNEL_AMOUNT, amount)
    _append(metadata, SIGNATURE, signature)
    _append(metadata, TRAIN_MODEL_ID, model_id)
    return metadata


def prepaid_metadata(channel_id: int, nonce: int, token: str) -> PaymentMetadata:
    """Metadata of a prepaid call authorized by a concurrency token"""
    metadata: PaymentMetadata = []
    _append(metadata, PAYMENT_TYPE, PREPAID_CALL)
    _append(metadata, CHANNEL_ID, channel_id)
    _append(metadata, CHANNEL_NONCE, nonce)
    _append(metadata, PREPAID_AUTH_TOKEN, token)
    return metadata


def free_call_metadata(
    user_address: str,
    current_block: int,
    token: Optional[bytes],
    signature: bytes,
    user_id: Optional[str] = None,
    token_expiry_block: Optional[int] = None
) -> PaymentMetadata:
    """Metadata of a free call"""
    metadata: PaymentMetadata = []
    _append(metadata, PAYMENT_TYPE, FREE_CALL)
    _append(metadata, FREE_CALL_USER_ID, user_id)
    _append(metadata, FREE_CALL_USER_ADDRESS, user_address)
    _append(metadata, CURRENT_BLOCK_NUMBER, current_block)
    _append(metadata, FREE_CALL_AUTH_TOKEN, token)
    _append(metadata, FREE_CALL_TOKEN_EXPIRY_BLOCK, token_expiry_block)
    _append(metadata, SIGNATURE, signature)
    return metadata
