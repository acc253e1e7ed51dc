"""
Base class of the strategies that pay through a payment channel.
"""
from abc import ABC, abstractmethod
from typing import Optional, TYPE_CHECKING

from ..config import DEFAULT_BLOCK_OFFSET, DEFAULT_CALL_ALLOWANCE
from ..models import PaymentMetadata
from ..mpe.channel import PaymentChannel
from ..mpe.selector import ChannelSelector

if TYPE_CHECKING:
    from ..account import Account
    from ..mpe.repository import ChannelRepository
    from ..service import ServiceMetadata


class BasePaidPaymentStrategy(ABC):
    """Selects a channel for the subclass's price and builds its metadata"""

    def __init__(
        self,
        account: "Account",
        service: "ServiceMetadata",
        repository: "ChannelRepository",
        block_offset: int = DEFAULT_BLOCK_OFFSET,
        call_allowance: int = DEFAULT_CALL_ALLOWANCE
    ):
        self.account = account
        self.service = service
        self.repository = repository
        self.selector = ChannelSelector(
            account,
            repository,
            service,
            block_offset=block_offset,
            call_allowance=call_allowance,
        )

    @abstractmethod
    def get_price(self) -> int:
        """Amount a channel must be able to pay for one invocation"""

    @abstractmethod
    def get_payment_metadata(self, preselect_id: Optional[int] = None) -> PaymentMetadata:
        """Metadata to attach to the next call"""

    def select_channel(
        self,
        preselect_id: Optional[int] = None,
        price: Optional[int] = None
    ) -> PaymentChannel:
        if price is None:
            price = self.get_price()
        return self.selector.select_channel(preselect_id=preselect_id, price=price)
