"""
Signed-message construction for escrow claims and daemon requests.

Every message is a fixed, ordered tuple of ABI-typed fields. The tuple is
packed and hashed exactly like Solidity's ``keccak256(abi.encodePacked(...))``
and the 32-byte digest is signed as an Ethereum personal message, which is
what the escrow contract and the service daemon recover signers from.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from eth_account.messages import encode_defunct, SignableMessage
from web3 import Web3

from .exceptions import SigningError
from .models import TypedValue

logger = logging.getLogger(__name__)

CLAIM_MESSAGE_PREFIX = "__MPE_claim_message"
CHANNEL_STATE_PREFIX = "__get_channel_state"
FREE_CALL_PREFIX = "__prefix_free_trial"

FieldLike = Union[TypedValue, Tuple[str, Any]]


class Signer(Protocol):
    """Protocol for custom signers"""
    address: str

    def sign_message(self, signable_message: SignableMessage) -> Any:
        """Sign an EIP-191 message and return an object with ``signature``"""
        ...

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...


def _to_typed_value(field: FieldLike) -> TypedValue:
    if isinstance(field, TypedValue):
        return field
    abi_type, value = field
    return TypedValue(type=abi_type, value=value)


def _normalize(field: TypedValue) -> Any:
    value = field.value
    if field.type == "uint256":
        return int(value)
    if field.type == "address":
        return Web3.to_checksum_address(value)
    if field.type == "bytes":
        if isinstance(value, bytes):
            return value
        hex_value = str(value)
        if hex_value.lower().startswith("0x"):
            hex_value = hex_value[2:]
        return bytes.fromhex(hex_value)
    return str(value)


class SignedMessageBuilder:
    """
    Hashes and signs ordered tuples of typed fields.

    The builder is a pure function of its inputs and the signer: it never
    retries and never caches signatures.
    """

    def __init__(self, signer: Signer):
        self.signer = signer

    def solidity_hash(self, fields: Sequence[FieldLike]) -> bytes:
        """
        Compute the packed keccak256 digest of the fields in the given order.

        Args:
            fields: TypedValue instances or (type, value) tuples

        Returns:
            32-byte digest

        Raises:
            SigningError: If a value cannot be encoded as its declared type
        """
        typed = [_to_typed_value(f) for f in fields]
        try:
            return bytes(Web3.solidity_keccak(
                [f.type for f in typed],
                [_normalize(f) for f in typed]
            ))
        except (ValueError, TypeError) as e:
            raise SigningError(f"encoding message fields failed: {e}") from e

    def sign(self, fields: Sequence[FieldLike]) -> bytes:
        """
        Sign the fields with the configured signer.

        Args:
            fields: TypedValue instances or (type, value) tuples

        Returns:
            65-byte r||s||v signature

        Raises:
            SigningError: If encoding fails or the signer rejects the message
        """
        digest = self.solidity_hash(fields)
        try:
            signed = self.signer.sign_message(encode_defunct(primitive=digest))
        except Exception as e:
            logger.error(f"Signer rejected message: {e}")
            raise SigningError(f"generating signature failed: {e}") from e
        signature = getattr(signed, "signature", None)
        if signature is None:
            raise SigningError("generating signature failed: signer returned no signature")
        return bytes(signature)


def build_claim_fields(
    mpe_address: str,
    channel_id: int,
    nonce: int,
    amount: int
) -> List[TypedValue]:
    """Fields of an escrow claim authorizing ``amount`` cumulative tokens"""
    return [
        TypedValue(type="string", value=CLAIM_MESSAGE_PREFIX),
        TypedValue(type="address", value=mpe_address),
        TypedValue(type="uint256", value=channel_id),
        TypedValue(type="uint256", value=nonce),
        TypedValue(type="uint256", value=amount),
    ]


def build_channel_state_fields(
    mpe_address: str,
    channel_id: int,
    current_block: int
) -> List[TypedValue]:
    """Fields of a signed channel-state request"""
    return [
        TypedValue(type="string", value=CHANNEL_STATE_PREFIX),
        TypedValue(type="address", value=mpe_address),
        TypedValue(type="uint256", value=channel_id),
        TypedValue(type="uint256", value=current_block),
    ]


def build_token_fields(claim_signature: bytes, current_block: int) -> List[TypedValue]:
    """
    Fields of the outer concurrency-token signature.

    Signing the claim signature together with a block number binds the
    claim to the instant it was submitted, so a captured claim cannot be
    replayed against the token service outside that window.
    """
    return [
        TypedValue(type="bytes", value=claim_signature),
        TypedValue(type="uint256", value=current_block),
    ]


def normalize_free_call_token(token: str) -> str:
    """Strip an optional 0x prefix from a hex free-call token"""
    if not isinstance(token, str):
        raise SigningError("Free-call token must be a string")
    return token[2:] if token.lower().startswith("0x") else token


def build_free_call_fields(
    address: str,
    org_id: str,
    service_id: str,
    group_id: str,
    current_block: int,
    token: Optional[str] = None,
    user_id: str = ""
) -> List[TypedValue]:
    """Fields of a free-call authorization signature"""
    fields = [
        TypedValue(type="string", value=FREE_CALL_PREFIX),
        TypedValue(type="string", value=address),
        TypedValue(type="string", value=user_id),
        TypedValue(type="string", value=org_id),
        TypedValue(type="string", value=service_id),
        TypedValue(type="string", value=group_id),
        TypedValue(type="uint256", value=current_block),
    ]
    if token:
        fields.append(TypedValue(type="bytes", value=normalize_free_call_token(token)))
    return fields
