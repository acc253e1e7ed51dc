"""
Data models for the MPE SDK.
"""
from typing import Dict, Any, Optional, List, Tuple, Union, Literal
from pydantic import BaseModel, Field, model_validator

from .exceptions import StaleStateError

SolidityType = Literal["string", "address", "uint256", "bytes"]

# Ordered (header, value) pairs attached to an outbound daemon call
PaymentMetadata = List[Tuple[str, Union[str, bytes]]]


class TypedValue(BaseModel):
    """One field of a signed message, in ABI-style type/value form"""
    type: SolidityType
    value: Union[str, int, bytes]


class ChannelOnChainState(BaseModel):
    """Channel tuple as stored by the escrow contract"""
    nonce: int = 0
    expiry: int = 0
    amount_deposited: int = 0


class ChannelOffChainState(BaseModel):
    """Highest nonce/amount the daemon has accepted for a channel"""
    current_nonce: int = 0
    current_signed_amount: int = 0


class PaymentChannelState(BaseModel):
    """
    Immutable snapshot of a payment channel.

    Combines the authoritative on-chain tuple with the daemon's
    off-chain view. A snapshot whose signed amount exceeds the
    deposit means chain and daemon have diverged.
    """
    nonce: int = 0
    expiry: int = 0
    amount_deposited: int = 0
    current_nonce: int = 0
    current_signed_amount: int = 0

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_consistency(self) -> "PaymentChannelState":
        if self.amount_deposited - self.current_signed_amount < 0:
            raise StaleStateError(
                f"Signed amount {self.current_signed_amount} exceeds deposited "
                f"amount {self.amount_deposited}"
            )
        return self

    @property
    def available_amount(self) -> int:
        return self.amount_deposited - self.current_signed_amount

    @classmethod
    def from_parts(
        cls,
        on_chain: ChannelOnChainState,
        off_chain: ChannelOffChainState
    ) -> "PaymentChannelState":
        return cls(
            nonce=on_chain.nonce,
            expiry=on_chain.expiry,
            amount_deposited=on_chain.amount_deposited,
            current_nonce=off_chain.current_nonce,
            current_signed_amount=off_chain.current_signed_amount,
        )


class OpenChannelEvent(BaseModel):
    """Decoded ChannelOpen event emitted by the escrow contract"""
    channel_id: int
    nonce: int
    sender: str
    signer: str
    recipient: str
    group_id: bytes
    amount: int
    expiry: int
    block_number: int


class SignedClaim(BaseModel):
    """Off-chain authorization to redeem a cumulative amount from a channel"""
    channel_id: int
    nonce: int
    amount: int
    signature: bytes


class ConcurrencyToken(BaseModel):
    """Daemon-issued token amortizing one claim across concurrent calls"""
    token: str
    channel_id: int
    planned_amount: int
    used_amount: int

    @property
    def is_exhausted(self) -> bool:
        return self.used_amount >= self.planned_amount


class FreeCallToken(BaseModel):
    """Daemon-issued free-call authorization"""
    token_hex: str = ""
    expiration_block: int = 0

    def is_valid_at(self, block_number: int) -> bool:
        return bool(self.token_hex) and self.expiration_block > block_number


class TxReceipt(BaseModel):
    """Transaction receipt from the blockchain"""
    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: str = Field(..., alias="blockHash")
    status: int
    gas_used: int = Field(..., alias="gasUsed")
    from_address: str = Field(..., alias="from")
    to_address: Optional[str] = Field(None, alias="to")
    logs: List[Dict[str, Any]]

    class Config:
        populate_by_name = True
