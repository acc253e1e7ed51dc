"""
Prepaid strategy: calls carry a concurrency token instead of a claim.
"""
from typing import Optional, TYPE_CHECKING

from ..config import DEFAULT_BLOCK_OFFSET, DEFAULT_CALL_ALLOWANCE
from ..exceptions import ConfigurationError
from ..metadata import prepaid_metadata
from ..models import PaymentMetadata
from ..mpe.channel import PaymentChannel
from .base import BasePaidPaymentStrategy

if TYPE_CHECKING:
    from ..account import Account
    from ..concurrency import ConcurrencyManager
    from ..mpe.repository import ChannelRepository
    from ..service import ServiceMetadata


class PrepaidPaymentStrategy(BasePaidPaymentStrategy):
    """Prepays ``concurrent_calls`` calls with one concurrency token"""

    def __init__(
        self,
        account: "Account",
        service: "ServiceMetadata",
        repository: "ChannelRepository",
        concurrency_manager: Optional["ConcurrencyManager"],
        block_offset: int = DEFAULT_BLOCK_OFFSET,
        call_allowance: int = DEFAULT_CALL_ALLOWANCE
    ):
        super().__init__(account, service, repository, block_offset, call_allowance)
        self.concurrency_manager = concurrency_manager

    def _require_manager(self) -> "ConcurrencyManager":
        if self.concurrency_manager is None:
            raise ConfigurationError("concurrency manager not found")
        return self.concurrency_manager

    def get_price(self) -> int:
        if self.concurrency_manager is None or not self.concurrency_manager.concurrent_calls:
            return 0
        return self.service.price_per_service_call * self.concurrency_manager.concurrent_calls

    def get_payment_metadata(self, preselect_id: Optional[int] = None) -> PaymentMetadata:
        """
        Raises:
            ConfigurationError: If no concurrency manager is configured
            DaemonRpcError: If the daemon does not issue a token
        """
        self._require_manager()
        channel = self.select_channel(preselect_id)
        token = self.get_concurrency_token(channel)
        return prepaid_metadata(channel.channel_id, channel.state.nonce, token)

    def get_concurrency_token(self, channel: PaymentChannel) -> str:
        manager = self._require_manager()
        return manager.get_token(channel, self.get_price()).token
