"""
Default payment strategy: free call, then prepaid, then pay-per-call.
"""
import enum
import logging
from typing import Optional, Tuple, TYPE_CHECKING

from ..config import DEFAULT_BLOCK_OFFSET, DEFAULT_CALL_ALLOWANCE
from ..models import PaymentMetadata
from .free_call import FreeCallPaymentStrategy
from .paid_call import PaidCallPaymentStrategy
from .prepaid import PrepaidPaymentStrategy

if TYPE_CHECKING:
    from ..account import Account
    from ..concurrency import ConcurrencyManager
    from ..daemon.transport import DaemonTransport
    from ..mpe.repository import ChannelRepository
    from ..service import ServiceMetadata

logger = logging.getLogger(__name__)


class PaymentKind(enum.Enum):
    FREE_CALL = "free-call"
    PREPAID = "prepaid-call"
    PAY_PER_CALL = "escrow"


def decide_payment_kind(free_calls_available: int, concurrency_enabled: bool) -> PaymentKind:
    """First match wins: free call, then prepaid, then pay-per-call"""
    if free_calls_available > 0:
        return PaymentKind.FREE_CALL
    if concurrency_enabled:
        return PaymentKind.PREPAID
    return PaymentKind.PAY_PER_CALL


class DefaultPaymentStrategy:
    """
    Chooses how each call is paid and returns the metadata for it.

    ``channel_id`` preselects the channel used by the prepaid strategy.
    """

    def __init__(
        self,
        account: "Account",
        service: "ServiceMetadata",
        repository: "ChannelRepository",
        daemon: "DaemonTransport",
        concurrency_manager: Optional["ConcurrencyManager"] = None,
        block_offset: int = DEFAULT_BLOCK_OFFSET,
        call_allowance: int = DEFAULT_CALL_ALLOWANCE,
        daemon_timeout: Optional[int] = None
    ):
        self.service = service
        self.channel_id: Optional[int] = None
        self.free_call = FreeCallPaymentStrategy(
            account, service, daemon, daemon_timeout=daemon_timeout
        )
        self.prepaid = PrepaidPaymentStrategy(
            account, service, repository, concurrency_manager,
            block_offset=block_offset, call_allowance=call_allowance
        )
        self.paid_call = PaidCallPaymentStrategy(
            account, service, repository,
            block_offset=block_offset, call_allowance=call_allowance
        )

    @property
    def concurrent_calls(self) -> int:
        manager = self.prepaid.concurrency_manager
        return manager.concurrent_calls if manager is not None else 1

    def get_payment_metadata(self) -> PaymentMetadata:
        """
        Metadata for the next call.

        Raises:
            MPEError: If the selected paid strategy fails; free-call check
                failures only fall through to the paid strategies
        """
        kind = decide_payment_kind(
            self.free_call.available_free_calls(),
            self.service.concurrency_flag
        )
        logger.debug(f"Paying for {self.service.org_id}/{self.service.service_id} with {kind.value}")
        if kind is PaymentKind.FREE_CALL:
            return self.free_call.get_payment_metadata()
        if kind is PaymentKind.PREPAID:
            return self.prepaid.get_payment_metadata(self.channel_id)
        return self.paid_call.get_payment_metadata()

    def get_concurrency_token_and_channel_id(self) -> Tuple[str, int]:
        """Select a channel and obtain a concurrency token for it"""
        channel = self.prepaid.select_channel()
        token = self.prepaid.get_concurrency_token(channel)
        return token, channel.channel_id
