"""
Concurrency tokens - one signed claim shared by several concurrent calls.
"""
import logging
from typing import Optional, TYPE_CHECKING

from .exceptions import DaemonRpcError
from .models import ConcurrencyToken
from .signing import build_token_fields

if TYPE_CHECKING:
    from .account import Account
    from .daemon.transport import DaemonTransport
    from .mpe.channel import PaymentChannel

logger = logging.getLogger(__name__)


class ConcurrencyManager:
    """
    Obtains concurrency tokens from the daemon's token service.

    A token is reused while the daemon reports that less than its planned
    amount has been used, so a batch of calls costs a single claim
    signature until that amount runs out.
    """

    def __init__(
        self,
        account: "Account",
        daemon: "DaemonTransport",
        concurrent_calls: int = 1,
        daemon_timeout: Optional[int] = None
    ):
        self.account = account
        self.daemon = daemon
        self._concurrent_calls = concurrent_calls
        self.daemon_timeout = daemon_timeout

    @property
    def concurrent_calls(self) -> int:
        return self._concurrent_calls

    def get_token(self, channel: "PaymentChannel", price: int) -> ConcurrencyToken:
        """
        Reuse the token for the already signed amount, or mint a new one.

        Args:
            channel: Freshly synced channel
            price: Amount to authorize on top of the current signed amount

        Raises:
            DaemonRpcError: If the daemon rejects the claim
            SigningError: If a signature cannot be produced
        """
        current_signed_amount = channel.state.current_signed_amount
        if current_signed_amount != 0:
            token = self._get_token_for_amount(channel, current_signed_amount)
            if token.used_amount < token.planned_amount:
                logger.debug(
                    f"Reusing concurrency token for PaymentChannel[id: {channel.channel_id}] "
                    f"({token.used_amount}/{token.planned_amount} used)"
                )
                return token
        return self._get_token_for_amount(channel, current_signed_amount + price)

    def _get_token_for_amount(self, channel: "PaymentChannel", amount: int) -> ConcurrencyToken:
        claim = channel.sign_claim(amount)
        current_block = self.account.current_block_number()
        signature = self.account.sign_data(*build_token_fields(claim.signature, current_block))
        try:
            return self.daemon.get_token(
                claim.channel_id,
                claim.nonce,
                claim.amount,
                signature,
                current_block,
                claim.signature,
                timeout=self.daemon_timeout
            )
        except DaemonRpcError as e:
            logger.error(f"Token request for PaymentChannel[id: {channel.channel_id}] failed: {e}")
            raise
