"""
ChannelSelector - picks a channel and brings it into a usable state.

Before a paid call the selected channel must hold at least the call price
and must not expire before the group's payment expiration threshold. The
selector opens, funds or extends a channel on-chain when it does not.
"""
import logging
import threading
from typing import Dict, Optional, Tuple, TYPE_CHECKING

from ..config import DEFAULT_BLOCK_OFFSET, DEFAULT_CALL_ALLOWANCE
from ..exceptions import ConfigurationError, InsufficientFundsError
from .channel import PaymentChannel

if TYPE_CHECKING:
    from ..account import Account
    from ..service import ServiceMetadata
    from .repository import ChannelRepository

logger = logging.getLogger(__name__)

# Module-level single-flight locks keyed by (payer, payment group)
_selection_locks: Dict[Tuple[str, bytes], threading.RLock] = {}
_locks_lock = threading.Lock()


def selection_lock(payer: str, group_id: bytes) -> threading.RLock:
    """
    Lock serializing channel selection for one payer and payment group.

    Two concurrent selections against the same channel set would otherwise
    both see "no channel" or "not enough funds" and both send a transaction.
    """
    key = (payer.lower(), group_id)
    with _locks_lock:
        lock = _selection_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _selection_locks[key] = lock
        return lock


def has_sufficient_funds(channel: PaymentChannel, required_amount: int) -> bool:
    return channel.state.available_amount >= required_amount


def is_valid_channel(channel: PaymentChannel, expiry: int) -> bool:
    return channel.state.expiry >= expiry


class ChannelSelector:
    """
    Channel lifecycle state machine for one payer and payment group.

    ``block_offset`` is added to the target expiry whenever a channel is
    opened or extended, and a top-up covers ``call_allowance`` calls.
    """

    def __init__(
        self,
        account: "Account",
        repository: "ChannelRepository",
        service: "ServiceMetadata",
        block_offset: int = DEFAULT_BLOCK_OFFSET,
        call_allowance: int = DEFAULT_CALL_ALLOWANCE
    ):
        self.account = account
        self.repository = repository
        self.service = service
        self.block_offset = block_offset
        self.call_allowance = call_allowance

    def select_channel(
        self,
        preselect_id: Optional[int] = None,
        price: Optional[int] = None
    ) -> PaymentChannel:
        """
        Return a channel that can pay ``price`` right now.

        With ``preselect_id`` the matching channel is returned as it is,
        without any top-up.

        Args:
            preselect_id: Channel chosen by the caller
            price: Required amount (defaults to the service call price)

        Returns:
            A channel with ``available_amount >= price`` and an expiry at or
            beyond the default expiration (unless preselected)

        Raises:
            ConfigurationError: If the preselected channel is unknown
            InsufficientFundsError: If neither escrow nor wallet can fund a new channel
            ChainTransactionError: If an on-chain mutation fails
            DaemonRpcError: If channel state cannot be refreshed
        """
        if price is None:
            price = self.service.price_per_service_call

        with selection_lock(self.account.address, self.service.group_id_bytes):
            channels = self.repository.update_channel_states()

            if preselect_id is not None:
                channel = self.repository.find_channel(preselect_id)
                if channel is None:
                    raise ConfigurationError(
                        f"PaymentChannel[id: {preselect_id}] not found for this payment group"
                    )
                logger.debug(f"Using preselected PaymentChannel[id: {preselect_id}]")
                return channel

            current_block = self.account.current_block_number()
            default_expiration = self.service.default_channel_expiration(current_block)
            extended_expiry = default_expiration + self.block_offset
            extended_fund = price * self.call_allowance

            if not channels:
                channel = self._open_channel(price, extended_expiry)
            else:
                channel = channels[0]

            sufficient = has_sufficient_funds(channel, price)
            valid = is_valid_channel(channel, default_expiration)
            if sufficient and valid:
                return channel

            if sufficient and not valid:
                channel.extend_expiry(extended_expiry)
            elif not sufficient and valid:
                channel.add_funds(extended_fund)
            else:
                channel.extend_and_add_funds(extended_expiry, extended_fund)
            # Re-read rather than assume what the transaction changed
            return self.repository.refresh(channel)

    def _open_channel(self, price: int, expiry: int) -> PaymentChannel:
        escrow_balance = self.account.escrow_balance()
        if price <= escrow_balance:
            return self.repository.open_channel(price, expiry)

        logger.info(
            f"Escrow balance {escrow_balance} does not cover {price} cogs, "
            f"depositing before opening a channel"
        )
        wallet_balance = self.account.balance()
        if wallet_balance < price:
            raise InsufficientFundsError(
                f"opening channel failed: need {price} cogs, escrow holds {escrow_balance} "
                f"and wallet holds {wallet_balance}"
            )
        return self.repository.deposit_and_open_channel(price, expiry)
