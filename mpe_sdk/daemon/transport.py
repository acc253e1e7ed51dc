"""
Transport layer for the service daemon.

This module defines the protocol adapter every daemon transport implements
(channel state, free calls and concurrency tokens), and picks the best
available implementation: gRPC when grpcio and protobuf are installed,
otherwise the in-memory stub.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..models import ChannelOffChainState, ConcurrencyToken, FreeCallToken

logger = logging.getLogger(__name__)


class DaemonTransport(ABC):
    """
    Abstract base class for daemon transport implementations.

    Components that talk to the daemon receive an instance of this class,
    so a missing RPC is a TypeError at construction time rather than a
    runtime surprise.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this transport is available for use.

        Returns:
            True if transport is available, False otherwise
        """
        pass

    @abstractmethod
    def initialize(self, endpoint: str, verify_ssl: bool = True) -> None:
        """
        Initialize the transport with the given daemon endpoint.

        Args:
            endpoint: URL of the service daemon
            verify_ssl: Whether to verify SSL certificates

        Raises:
            DaemonConnectionError: If connection initialization fails
        """
        pass

    @abstractmethod
    def get_channel_state(
        self,
        channel_id: int,
        signature: bytes,
        current_block: int,
        timeout: Optional[int] = None
    ) -> ChannelOffChainState:
        """
        Fetch the daemon's view of a payment channel.

        Args:
            channel_id: Channel to query
            signature: Signature over the channel-state request fields
            current_block: Block number included in the signature
            timeout: Request timeout in seconds

        Returns:
            Latest nonce and signed amount accepted by the daemon

        Raises:
            DaemonRpcError: If the daemon rejects the request or is unreachable
        """
        pass

    @abstractmethod
    def get_free_calls_available(
        self,
        address: str,
        token: bytes,
        signature: bytes,
        current_block: int,
        user_id: str = "",
        timeout: Optional[int] = None
    ) -> int:
        """
        Ask the daemon how many free calls remain for an identity.

        Raises:
            DaemonRpcError: If the daemon rejects the request or is unreachable
        """
        pass

    @abstractmethod
    def get_free_call_token(
        self,
        address: str,
        signature: bytes,
        current_block: int,
        user_id: str = "",
        timeout: Optional[int] = None
    ) -> FreeCallToken:
        """
        Obtain a free-call authorization token.

        Raises:
            DaemonRpcError: If the daemon rejects the request or is unreachable
        """
        pass

    @abstractmethod
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
        """
        Mint, or look up, a concurrency token for a signed amount.

        Args:
            channel_id: Channel the claim is drawn on
            current_nonce: Channel nonce the claim was signed for
            signed_amount: Cumulative amount authorized by the claim
            signature: Signature over (claim_signature, current_block)
            current_block: Block number included in ``signature``
            claim_signature: The escrow claim signature itself
            timeout: Request timeout in seconds

        Raises:
            DaemonRpcError: If the daemon rejects the claim or is unreachable
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections or resources."""
        pass


def get_grpc_transport() -> Optional[DaemonTransport]:
    """
    Get a gRPC transport implementation if available.

    Returns:
        gRPC transport implementation, or None if not available
    """
    try:
        from .grpc_transport import GrpcDaemonTransport
        transport = GrpcDaemonTransport()
        if transport.is_available():
            return transport
        return None
    except ImportError:
        logger.debug("gRPC daemon transport not available")
        return None


def get_stub_transport() -> DaemonTransport:
    """
    Get the in-memory stub transport.

    This always returns a valid transport since the stub implementation
    has no external dependencies.
    """
    from .stub_transport import StubDaemonTransport
    return StubDaemonTransport()


def get_transport(prefer_grpc: bool = True) -> DaemonTransport:
    """
    Get the best available transport implementation.

    Args:
        prefer_grpc: Whether to prefer the gRPC transport if available

    Returns:
        Transport implementation
    """
    if prefer_grpc:
        grpc_transport = get_grpc_transport()
        if grpc_transport:
            logger.info("Using gRPC transport for service daemon")
            return grpc_transport

    logger.info("Using stub transport for service daemon")
    return get_stub_transport()
