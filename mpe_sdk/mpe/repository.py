"""
ChannelRepository - the set of channels known for one payer and payment group.
"""
import logging
import threading
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from ..exceptions import ChainTransactionError, StaleStateError
from ..models import OpenChannelEvent, TxReceipt
from .channel import PaymentChannel

if TYPE_CHECKING:
    from ..account import Account
    from ..daemon.transport import DaemonTransport
    from ..service import ServiceMetadata
    from .contract import MPEContract

logger = logging.getLogger(__name__)


class ChannelRepository:
    """
    Owns the known channels of ``(payer, payment group)``.

    Channels are discovered by replaying ChannelOpen events and are never
    removed once seen. Other components get a read-only tuple through
    :attr:`channels`.
    """

    def __init__(
        self,
        account: "Account",
        mpe_contract: "MPEContract",
        daemon: "DaemonTransport",
        service: "ServiceMetadata",
        daemon_timeout: Optional[int] = None
    ):
        self.account = account
        self.mpe_contract = mpe_contract
        self.daemon = daemon
        self.service = service
        self.daemon_timeout = daemon_timeout
        self.last_read_block: Optional[int] = None
        self._channels: List[PaymentChannel] = []
        self._by_id: Dict[int, PaymentChannel] = {}
        self._lock = threading.RLock()

    @property
    def channels(self) -> Tuple[PaymentChannel, ...]:
        with self._lock:
            return tuple(self._channels)

    def find_channel(self, channel_id: int) -> Optional[PaymentChannel]:
        with self._lock:
            return self._by_id.get(int(channel_id))

    def _merge(self, events: List[OpenChannelEvent]) -> List[PaymentChannel]:
        added = []
        with self._lock:
            for event in events:
                if event.channel_id in self._by_id:
                    continue
                channel = PaymentChannel(
                    event.channel_id,
                    self.account,
                    self.mpe_contract,
                    self.daemon,
                    daemon_timeout=self.daemon_timeout,
                )
                self._channels.append(channel)
                self._by_id[event.channel_id] = channel
                added.append(channel)
        return added

    def _past_open_channels(self, from_block: Optional[int]) -> List[OpenChannelEvent]:
        return self.mpe_contract.get_past_open_channels(
            self.account.address,
            self.service.payment_address,
            self.service.group_id_bytes,
            from_block=from_block,
        )

    def load_open_channels(self) -> Tuple[PaymentChannel, ...]:
        """
        Merge channels opened since the last read into the known set.

        Safe to call repeatedly: a channel id already known is skipped.

        Raises:
            MPEError: If the event query fails
        """
        with self._lock:
            current_block = self.account.current_block_number()
            events = self._past_open_channels(self.last_read_block)
            added = self._merge(events)
            logger.debug(
                f"Found {len(events)} payment channel open events, {len(added)} new"
            )
            self.last_read_block = current_block
            return tuple(self._channels)

    def refresh(self, channel: PaymentChannel) -> PaymentChannel:
        """Refresh one channel's state; the old state is kept on failure"""
        return channel.sync_state()

    def update_channel_states(self) -> Tuple[PaymentChannel, ...]:
        """
        Load new channels and refresh the state of every known channel.

        Raises:
            DaemonRpcError: If the daemon cannot report a channel's state
            MPEError: If a contract read fails
        """
        logger.info("Updating payment channel states")
        with self._lock:
            channels = self.load_open_channels()
            for channel in channels:
                self.refresh(channel)
            return channels

    def open_channel(self, amount: int, expiry: int) -> PaymentChannel:
        """
        Open a channel funded from the escrow balance

        Raises:
            ChainTransactionError: If the transaction fails
        """
        try:
            receipt = self.mpe_contract.open_channel(
                self.account,
                self.service.payment_address,
                self.service.group_id_bytes,
                amount,
                expiry
            )
        except ChainTransactionError as e:
            raise ChainTransactionError(f"opening channel failed: {e}", tx_hash=e.tx_hash) from e
        return self._newly_opened_channel(receipt)

    def deposit_and_open_channel(self, amount: int, expiry: int) -> PaymentChannel:
        """
        Deposit tokens into escrow and open a channel in one transaction

        Raises:
            ChainTransactionError: If the approval or open transaction fails
        """
        try:
            receipt = self.mpe_contract.deposit_and_open_channel(
                self.account,
                self.service.payment_address,
                self.service.group_id_bytes,
                amount,
                expiry
            )
        except ChainTransactionError as e:
            raise ChainTransactionError(
                f"depositing and opening channel failed: {e}", tx_hash=e.tx_hash
            ) from e
        return self._newly_opened_channel(receipt)

    def _newly_opened_channel(self, receipt: TxReceipt) -> PaymentChannel:
        events = self._past_open_channels(receipt.block_number)
        with self._lock:
            known_before = set(self._by_id)
            self._merge(events)
            new_ids = [event.channel_id for event in events if event.channel_id not in known_before]
            if not new_ids and events:
                new_ids = [events[0].channel_id]
            if not new_ids:
                raise StaleStateError(
                    f"no ChannelOpen event found for transaction {receipt.tx_hash} "
                    f"in block {receipt.block_number}"
                )
            channel = self._by_id[new_ids[0]]
        logger.info(f"New PaymentChannel[id: {channel.channel_id}] opened")
        return self.refresh(channel)
