"""
gRPC transport implementation for the service daemon.

This module talks to the daemon's ``escrow`` payment services using the
message classes registered in :mod:`mpe_sdk.daemon.proto`.
"""
import os
import urllib.parse
import logging
from typing import Any, Callable, Optional

# Conditionally import gRPC dependencies
try:
    import grpc

    try:
        from .proto import (
            ChannelStateRequest,
            ChannelStateReply,
            FreeCallStateRequest,
            FreeCallStateReply,
            GetFreeCallTokenRequest,
            FreeCallToken as ProtoFreeCallToken,
            TokenRequest,
            TokenReply,
            GET_CHANNEL_STATE_METHOD,
            GET_FREE_CALLS_AVAILABLE_METHOD,
            GET_FREE_CALL_TOKEN_METHOD,
            GET_TOKEN_METHOD,
            PROTO_AVAILABLE
        )
        GRPC_AVAILABLE = PROTO_AVAILABLE
    except ImportError:
        PROTO_AVAILABLE = False
        GRPC_AVAILABLE = False
except ImportError:
    # gRPC not available
    GRPC_AVAILABLE = False
    PROTO_AVAILABLE = False

from ..config import validate_endpoint_url
from ..exceptions import DaemonRpcError, DaemonConnectionError, DaemonTimeoutError
from ..models import ChannelOffChainState, ConcurrencyToken, FreeCallToken
from ._deps import ensure_grpc_installed
from .transport import DaemonTransport

logger = logging.getLogger(__name__)


def encode_channel_id(channel_id: int) -> bytes:
    """Channel id as carried in ChannelStateRequest: 4-byte big-endian"""
    return int(channel_id).to_bytes(4, byteorder="big")


def decode_big_int(value: bytes) -> int:
    return int.from_bytes(value, byteorder="big") if value else 0


class GrpcDaemonTransport(DaemonTransport):
    """
    gRPC-based transport for the daemon payment services.
    """

    def __init__(self):
        """Initialize the gRPC transport."""
        self.channel = None
        self.endpoint = None
        self._get_channel_state = None
        self._get_free_calls_available = None
        self._get_free_call_token = None
        self._get_token = None

    def is_available(self) -> bool:
        """
        Check if gRPC transport is available.

        Returns:
            True if gRPC and proto dependencies are available, False otherwise
        """
        return GRPC_AVAILABLE and PROTO_AVAILABLE

    def _create_channel(self, endpoint: str, verify_ssl: bool) -> "grpc.Channel":
        """
        Create a gRPC channel to the daemon.

        Args:
            endpoint: Daemon URL
            verify_ssl: Whether to verify SSL certificates

        Returns:
            gRPC channel
        """
        parsed = urllib.parse.urlparse(endpoint)
        host = parsed.hostname
        # Default to port 443 for https, 80 for http if not specified
        default_port = 443 if parsed.scheme == 'https' else 80
        port = parsed.port or default_port
        target = f"{host}:{port}"

        if parsed.scheme == "https" and verify_ssl:
            # MPE_DAEMON_CA replaces the system roots with a custom CA bundle
            ca_path = os.environ.get("MPE_DAEMON_CA")
            if ca_path:
                with open(ca_path, 'rb') as f:
                    creds = grpc.ssl_channel_credentials(root_certificates=f.read())
                logger.info(f"Using custom CA certificate from {ca_path}")
            else:
                creds = grpc.ssl_channel_credentials()
            options = [
                ('grpc.keepalive_time_ms', 30000),  # 30 seconds
                ('grpc.keepalive_timeout_ms', 10000),  # 10 seconds
            ]
            return grpc.secure_channel(target, creds, options=options)

        logger.warning(f"Creating insecure gRPC channel to {target} (not recommended for production)")
        return grpc.insecure_channel(target)

    def initialize(self, endpoint: str, verify_ssl: bool = True) -> None:
        """
        Initialize the transport with the given daemon endpoint.

        Raises:
            DaemonConnectionError: If connection initialization fails
            ImportError: If gRPC dependencies are not installed
            ValueError: If the endpoint is not an acceptable URL
        """
        ensure_grpc_installed()
        validate_endpoint_url("daemon endpoint", endpoint)
        self.endpoint = endpoint

        try:
            self.channel = self._create_channel(endpoint, verify_ssl)
            self._get_channel_state = self.channel.unary_unary(
                GET_CHANNEL_STATE_METHOD,
                request_serializer=ChannelStateRequest.SerializeToString,
                response_deserializer=ChannelStateReply.FromString,
            )
            self._get_free_calls_available = self.channel.unary_unary(
                GET_FREE_CALLS_AVAILABLE_METHOD,
                request_serializer=FreeCallStateRequest.SerializeToString,
                response_deserializer=FreeCallStateReply.FromString,
            )
            self._get_free_call_token = self.channel.unary_unary(
                GET_FREE_CALL_TOKEN_METHOD,
                request_serializer=GetFreeCallTokenRequest.SerializeToString,
                response_deserializer=ProtoFreeCallToken.FromString,
            )
            self._get_token = self.channel.unary_unary(
                GET_TOKEN_METHOD,
                request_serializer=TokenRequest.SerializeToString,
                response_deserializer=TokenReply.FromString,
            )
            logger.debug(f"Initialized gRPC daemon transport for {endpoint}")
        except Exception as e:
            raise DaemonConnectionError(f"Failed to initialize gRPC daemon transport: {e}") from e

    def _invoke(self, operation: str, rpc: Optional[Callable], request: Any, timeout: Optional[int]) -> Any:
        if rpc is None:
            raise DaemonConnectionError("gRPC daemon transport not initialized")
        if timeout is None:
            timeout = int(os.environ.get("MPE_DAEMON_TIMEOUT", "10"))
        try:
            return rpc(request, timeout=timeout)
        except grpc.RpcError as e:
            code = e.code()
            code_name = getattr(code, "name", str(code))
            if code == grpc.StatusCode.DEADLINE_EXCEEDED:
                raise DaemonTimeoutError(f"{operation} timed out after {timeout}s", code_name) from e
            if code == grpc.StatusCode.UNAVAILABLE:
                raise DaemonConnectionError(f"{operation} failed: daemon unavailable: {e.details()}", code_name) from e
            raise DaemonRpcError(f"{operation} failed: {code_name} - {e.details()}", code_name) from e

    def get_channel_state(
        self,
        channel_id: int,
        signature: bytes,
        current_block: int,
        timeout: Optional[int] = None
    ) -> ChannelOffChainState:
        request = ChannelStateRequest(
            channel_id=encode_channel_id(channel_id),
            signature=signature,
            current_block=current_block,
        )
        reply = self._invoke("fetching channel state", self._get_channel_state, request, timeout)
        return ChannelOffChainState(
            current_nonce=decode_big_int(reply.current_nonce),
            current_signed_amount=decode_big_int(reply.current_signed_amount),
        )

    def get_free_calls_available(
        self,
        address: str,
        token: bytes,
        signature: bytes,
        current_block: int,
        user_id: str = "",
        timeout: Optional[int] = None
    ) -> int:
        request = FreeCallStateRequest(
            address=address,
            user_id=user_id,
            free_call_token=token,
            signature=signature,
            current_block=current_block,
        )
        reply = self._invoke("fetching free calls available", self._get_free_calls_available, request, timeout)
        return reply.free_calls_available

    def get_free_call_token(
        self,
        address: str,
        signature: bytes,
        current_block: int,
        user_id: str = "",
        timeout: Optional[int] = None
    ) -> FreeCallToken:
        request = GetFreeCallTokenRequest(
            address=address,
            signature=signature,
            current_block=current_block,
            user_id=user_id,
        )
        reply = self._invoke("fetching free call token", self._get_free_call_token, request, timeout)
        token_hex = reply.token_hex or reply.token.hex()
        return FreeCallToken(token_hex=token_hex, expiration_block=reply.token_expiration_block)

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
        request = TokenRequest(
            channel_id=channel_id,
            current_nonce=current_nonce,
            signed_amount=signed_amount,
            signature=signature,
            current_block=current_block,
            claim_signature=claim_signature,
        )
        reply = self._invoke("fetching concurrency token", self._get_token, request, timeout)
        return ConcurrencyToken(
            token=reply.token,
            channel_id=reply.channel_id or channel_id,
            planned_amount=reply.planned_amount,
            used_amount=reply.used_amount,
        )

    def close(self) -> None:
        """Close any open connections."""
        if self.channel is not None:
            try:
                self.channel.close()
                logger.debug("gRPC daemon transport closed")
            except Exception as e:
                logger.warning(f"Error closing gRPC daemon transport: {e}")
            finally:
                self.channel = None
