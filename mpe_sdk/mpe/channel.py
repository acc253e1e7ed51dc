"""
PaymentChannel - one escrow channel between the payer and a payment group.
"""
import logging
from typing import Optional, TYPE_CHECKING

from ..exceptions import ChainTransactionError, DaemonRpcError
from ..models import PaymentChannelState, SignedClaim, TxReceipt
from ..signing import build_channel_state_fields, build_claim_fields

if TYPE_CHECKING:
    from ..account import Account
    from ..daemon.transport import DaemonTransport
    from .contract import MPEContract

logger = logging.getLogger(__name__)


class PaymentChannel:
    """
    A payment channel and the latest snapshot of its state.

    The snapshot only changes through :meth:`sync_state`; on-chain
    mutations leave it untouched until the next sync.
    """

    def __init__(
        self,
        channel_id: int,
        account: "Account",
        mpe_contract: "MPEContract",
        daemon: "DaemonTransport",
        daemon_timeout: Optional[int] = None
    ):
        self.channel_id = channel_id
        self.account = account
        self.mpe_contract = mpe_contract
        self.daemon = daemon
        self.daemon_timeout = daemon_timeout
        self._state = PaymentChannelState()

    @property
    def state(self) -> PaymentChannelState:
        return self._state

    def __repr__(self) -> str:
        return f"PaymentChannel(id={self.channel_id}, state={self._state!r})"

    def add_funds(self, amount: int) -> TxReceipt:
        try:
            return self.mpe_contract.channel_add_funds(self.account, self.channel_id, amount)
        except ChainTransactionError as e:
            raise ChainTransactionError(
                f"adding funds to channel failed: {e}", tx_hash=e.tx_hash
            ) from e

    def extend_expiry(self, expiry: int) -> TxReceipt:
        try:
            return self.mpe_contract.channel_extend(self.account, self.channel_id, expiry)
        except ChainTransactionError as e:
            raise ChainTransactionError(f"extending channel failed: {e}", tx_hash=e.tx_hash) from e

    def extend_and_add_funds(self, expiry: int, amount: int) -> TxReceipt:
        try:
            return self.mpe_contract.channel_extend_and_add_funds(
                self.account, self.channel_id, expiry, amount
            )
        except ChainTransactionError as e:
            raise ChainTransactionError(
                f"extending and adding funds to channel failed: {e}", tx_hash=e.tx_hash
            ) from e

    def claim_unused_tokens(self) -> TxReceipt:
        """Return the unclaimed funds of an expired channel to the escrow balance"""
        try:
            return self.mpe_contract.channel_claim_timeout(self.account, self.channel_id)
        except ChainTransactionError as e:
            raise ChainTransactionError(
                f"claiming channel timeout failed: {e}", tx_hash=e.tx_hash
            ) from e

    def sign_claim(self, amount: int) -> SignedClaim:
        """
        Sign a claim for ``amount`` cumulative cogs at the current nonce

        Raises:
            SigningError: If the signer fails
        """
        nonce = self._state.nonce
        signature = self.account.sign_data(
            *build_claim_fields(self.mpe_contract.address, self.channel_id, nonce, amount)
        )
        return SignedClaim(
            channel_id=self.channel_id,
            nonce=nonce,
            amount=amount,
            signature=signature,
        )

    def sync_state(self) -> "PaymentChannel":
        """
        Refresh the snapshot from the escrow contract and the daemon.

        Either both reads succeed and the snapshot is replaced, or the
        previous snapshot is kept and the error propagates.

        Raises:
            DaemonRpcError: If the daemon call fails
            SigningError: If the state request cannot be signed
            StaleStateError: If the daemon reports more than was deposited
            MPEError: If the contract read fails
        """
        logger.debug(f"Syncing PaymentChannel[id: {self.channel_id}] state")
        on_chain = self.mpe_contract.channels(self.channel_id)

        current_block = self.account.current_block_number()
        signature = self.account.sign_data(
            *build_channel_state_fields(self.mpe_contract.address, self.channel_id, current_block)
        )
        try:
            off_chain = self.daemon.get_channel_state(
                self.channel_id,
                signature,
                current_block,
                timeout=self.daemon_timeout
            )
        except DaemonRpcError as e:
            logger.error(
                f"Failed to fetch latest PaymentChannel[id: {self.channel_id}] "
                f"state from service daemon: {e}"
            )
            raise

        self._state = PaymentChannelState.from_parts(on_chain, off_chain)
        logger.debug(
            f"Latest PaymentChannel[id: {self.channel_id}] state: "
            f"available={self._state.available_amount} expiry={self._state.expiry}"
        )
        return self
