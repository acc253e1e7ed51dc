"""
MPEClient - entry point wiring the payment layer for service calls.
"""
import logging
from typing import Any, Dict, Optional, Tuple, Union

from eth_account import Account as EthAccount
from web3 import Web3

from .account import Account
from .concurrency import ConcurrencyManager
from .config import SDKConfig, configure_logging
from .daemon.transport import DaemonTransport, get_grpc_transport
from .exceptions import ConfigurationError
from .models import PaymentMetadata
from .mpe.channel import PaymentChannel
from .mpe.contract import MPEContract
from .mpe.repository import ChannelRepository
from .service import ServiceGroup, ServiceMetadata
from .signing import Signer
from .strategies.default import DefaultPaymentStrategy

logger = logging.getLogger(__name__)


class MPEClient:
    """
    Client for paying service calls through the multi-party escrow.

    To use this client, you'll need:
    - An Ethereum RPC endpoint
    - The escrow contract address
    - Either a private key (in the config) or a custom signer
    """

    def __init__(
        self,
        config: SDKConfig,
        signer: Optional[Signer] = None,
        w3: Optional[Web3] = None
    ):
        """
        Initialize the client

        Args:
            config: SDK settings
            signer: Custom signer object (optional if config.private_key is set)
            w3: Web3 instance (defaults to an HTTP provider on config.rpc_url)

        Raises:
            ConfigurationError: If neither a private key nor a signer is provided
        """
        if not config.private_key and signer is None:
            raise ConfigurationError("Either private_key or signer must be provided")

        self.config = config
        configure_logging(config.log_level)

        self.w3 = w3 or Web3(Web3.HTTPProvider(config.rpc_url))
        self.signer: Signer = signer or EthAccount.from_key(config.private_key)
        self.mpe_contract = MPEContract(
            self.w3,
            config.mpe_contract_address,
            deployment_block=config.mpe_deployment_block
        )
        self.account = Account(
            self.w3,
            self.mpe_contract,
            self.signer,
            token_contract_address=config.token_contract_address,
            default_gas_limit=config.default_gas_limit,
            gas_price_override=config.default_gas_price,
            receipt_timeout=config.receipt_timeout,
        )

    @property
    def address(self) -> str:
        return self.account.address

    def assert_chain_id(self) -> None:
        """
        Check that the RPC endpoint serves the configured network

        Raises:
            ConfigurationError: If the connected chain id differs from network_id
        """
        chain_id = self.w3.eth.chain_id
        if chain_id != self.config.network_id:
            raise ConfigurationError(
                f"Connected to chain {chain_id}, expected network {self.config.network_id}"
            )

    def service_client(
        self,
        org_id: str,
        service_id: str,
        group: Union[ServiceGroup, Dict[str, Any]],
        transport: Optional[DaemonTransport] = None,
        **options: Any
    ) -> "ServiceClient":
        """
        Create a client paying for calls to one service group.

        Args:
            org_id: Organization id
            service_id: Service id
            group: Payment group from the service metadata
            transport: Daemon transport (defaults to gRPC)
            **options: ``endpoint``, ``concurrency``, ``concurrent_calls``

        Raises:
            ConfigurationError: If the RPC endpoint serves another chain, the
                group has no usable endpoint, or no transport was given and
                gRPC is not installed
        """
        self.assert_chain_id()
        service = ServiceMetadata(
            org_id,
            service_id,
            group,
            self.mpe_contract.address,
            options=options
        )
        if transport is None:
            # Channel state must come from the real daemon; the stub is opt-in only
            transport = get_grpc_transport()
            if transport is None:
                raise ConfigurationError(
                    "Daemon gRPC transport requires grpcio and protobuf. "
                    "Please install with: pip install mpe-sdk[grpc]"
                )
        transport.initialize(service.service_endpoint)
        return ServiceClient(self, service, transport)


class ServiceClient:
    """Payment metadata and channel management for one service group"""

    def __init__(self, client: MPEClient, service: ServiceMetadata, transport: DaemonTransport):
        config = client.config
        self.account = client.account
        self.service = service
        self.transport = transport
        self.repository = ChannelRepository(
            client.account,
            client.mpe_contract,
            transport,
            service,
            daemon_timeout=config.daemon_timeout
        )
        self.concurrency_manager = ConcurrencyManager(
            client.account,
            transport,
            concurrent_calls=service.options.get("concurrent_calls", config.concurrent_calls),
            daemon_timeout=config.daemon_timeout
        )
        self.payment_strategy = DefaultPaymentStrategy(
            client.account,
            service,
            self.repository,
            transport,
            concurrency_manager=self.concurrency_manager,
            block_offset=config.block_offset,
            call_allowance=config.call_allowance,
            daemon_timeout=config.daemon_timeout
        )

    @property
    def concurrent_calls(self) -> int:
        return self.concurrency_manager.concurrent_calls

    def get_payment_metadata(self) -> PaymentMetadata:
        return self.payment_strategy.get_payment_metadata()

    def get_concurrency_token_and_channel_id(self) -> Tuple[str, int]:
        return self.payment_strategy.get_concurrency_token_and_channel_id()

    def get_training_payment_metadata(self, model_id: str, amount: int) -> PaymentMetadata:
        return self.payment_strategy.paid_call.get_training_payment_metadata(model_id, amount)

    def load_open_channels(self) -> Tuple[PaymentChannel, ...]:
        return self.repository.load_open_channels()

    def update_channel_states(self) -> Tuple[PaymentChannel, ...]:
        return self.repository.update_channel_states()

    def open_channel(self, amount: int, expiry: int) -> PaymentChannel:
        return self.repository.open_channel(amount, expiry)

    def deposit_and_open_channel(self, amount: int, expiry: int) -> PaymentChannel:
        return self.repository.deposit_and_open_channel(amount, expiry)

    def get_free_calls_available(self) -> int:
        return self.payment_strategy.free_call.get_free_calls_available()

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "ServiceClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
