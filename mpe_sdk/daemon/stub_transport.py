"""
Stub-based transport implementation for the service daemon.

This module provides an in-memory daemon used when gRPC is not installed,
for local development and for tests. It keeps just enough state to
behave like a real daemon: per-channel signed amounts, free-call counters
and concurrency tokens.
"""
import hashlib
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import DaemonConnectionError, DaemonRpcError
from ..models import ChannelOffChainState, ConcurrencyToken, FreeCallToken
from .transport import DaemonTransport

logger = logging.getLogger(__name__)

DEFAULT_FREE_CALL_TOKEN_LIFETIME = 172800


class StubDaemonTransport(DaemonTransport):
    """
    A simple in-memory implementation of the daemon transport.

    Every RPC is recorded in ``calls`` as ``(method, kwargs)``.
    """

    def __init__(self, free_call_token_lifetime: int = DEFAULT_FREE_CALL_TOKEN_LIFETIME):
        """Initialize the stub transport."""
        self.endpoint = None
        self.initialized = False
        self.free_call_token_lifetime = free_call_token_lifetime
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._channels: Dict[int, ChannelOffChainState] = {}
        self._free_calls: Dict[str, int] = {}
        self._tokens: Dict[Tuple[int, int, int], ConcurrencyToken] = {}
        self._usage: Dict[int, int] = {}
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        """
        Check if stub transport is available.

        Returns:
            Always True since stub transport has no dependencies
        """
        return True

    def initialize(self, endpoint: str, verify_ssl: bool = True) -> None:
        """
        Initialize the stub transport.

        Args:
            endpoint: URL of the daemon (ignored)
            verify_ssl: Whether to verify SSL certificates (ignored)
        """
        self.endpoint = endpoint
        self.initialized = True
        logger.debug(f"Initialized stub daemon transport for {endpoint}")

    def _record(self, method: str, **kwargs: Any) -> None:
        if not self.initialized:
            raise DaemonConnectionError("Stub daemon transport not initialized")
        self.calls.append((method, kwargs))

    # ------------------------------------------------------------------
    # Test and development helpers
    # ------------------------------------------------------------------

    def set_channel_state(self, channel_id: int, nonce: int = 0, signed_amount: int = 0) -> None:
        """Set the off-chain state the daemon reports for a channel"""
        with self._lock:
            self._channels[channel_id] = ChannelOffChainState(
                current_nonce=nonce,
                current_signed_amount=signed_amount,
            )

    def set_free_calls(self, address: str, count: int) -> None:
        """Set the remaining free calls for an address"""
        with self._lock:
            self._free_calls[address.lower()] = count

    def consume(self, channel_id: int, amount: int) -> None:
        """Simulate the daemon charging ``amount`` against a channel's tokens"""
        with self._lock:
            self._usage[channel_id] = self._usage.get(channel_id, 0) + amount
            for key, token in list(self._tokens.items()):
                if key[0] == channel_id:
                    self._tokens[key] = token.model_copy(update={"used_amount": self._usage[channel_id]})

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    # ------------------------------------------------------------------
    # DaemonTransport
    # ------------------------------------------------------------------

    def get_channel_state(
        self,
        channel_id: int,
        signature: bytes,
        current_block: int,
        timeout: Optional[int] = None
    ) -> ChannelOffChainState:
        self._record("get_channel_state", channel_id=channel_id, signature=signature,
                     current_block=current_block)
        with self._lock:
            return self._channels.get(channel_id, ChannelOffChainState())

    def get_free_calls_available(
        self,
        address: str,
        token: bytes,
        signature: bytes,
        current_block: int,
        user_id: str = "",
        timeout: Optional[int] = None
    ) -> int:
        self._record("get_free_calls_available", address=address, token=token,
                     signature=signature, current_block=current_block, user_id=user_id)
        with self._lock:
            return self._free_calls.get(address.lower(), 0)

    def get_free_call_token(
        self,
        address: str,
        signature: bytes,
        current_block: int,
        user_id: str = "",
        timeout: Optional[int] = None
    ) -> FreeCallToken:
        self._record("get_free_call_token", address=address, signature=signature,
                     current_block=current_block, user_id=user_id)
        token_hex = hashlib.sha256(f"{address.lower()}:{current_block}".encode()).hexdigest()
        return FreeCallToken(
            token_hex=token_hex,
            expiration_block=current_block + self.free_call_token_lifetime,
        )

    def get_token(
        self,
        channel_id: int,
        current_nonce: int,
        signed_amount: int,
        signature: bytes,
        current_block: int,
        claim_signature: bytes,
        timeout: Optional[int] = None
    ) -> ConcurrencyToken:
        self._record("get_token", channel_id=channel_id, current_nonce=current_nonce,
                     signed_amount=signed_amount, signature=signature,
                     current_block=current_block, claim_signature=claim_signature)
        with self._lock:
            state = self._channels.get(channel_id, ChannelOffChainState())
            if current_nonce != state.current_nonce:
                raise DaemonRpcError(
                    f"claim nonce {current_nonce} does not match channel nonce {state.current_nonce}",
                    "FAILED_PRECONDITION"
                )
            if signed_amount < state.current_signed_amount:
                raise DaemonRpcError(
                    f"signed amount {signed_amount} is below accepted amount "
                    f"{state.current_signed_amount}",
                    "FAILED_PRECONDITION"
                )

            key = (channel_id, current_nonce, signed_amount)
            token = self._tokens.get(key)
            if token is None:
                digest = hashlib.sha256(f"{channel_id}:{current_nonce}:{signed_amount}".encode())
                token = ConcurrencyToken(
                    token=digest.hexdigest(),
                    channel_id=channel_id,
                    planned_amount=signed_amount,
                    used_amount=self._usage.get(channel_id, 0),
                )
                self._tokens[key] = token
                self._channels[channel_id] = ChannelOffChainState(
                    current_nonce=current_nonce,
                    current_signed_amount=signed_amount,
                )
            return token

    def close(self) -> None:
        """Close the stub transport."""
        self.initialized = False
        logger.debug("Stub daemon transport closed")
