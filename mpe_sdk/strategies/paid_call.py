"""
Pay-per-call strategy: every call carries a freshly signed escrow claim.
"""
import logging
from typing import Optional

from ..metadata import escrow_metadata, training_metadata
from ..models import PaymentMetadata
from .base import BasePaidPaymentStrategy

logger = logging.getLogger(__name__)


class PaidCallPaymentStrategy(BasePaidPaymentStrategy):
    """Signs a claim for ``current signed amount + price`` on each call"""

    def get_price(self) -> int:
        return self.service.price_per_service_call

    def get_payment_metadata(self, preselect_id: Optional[int] = None) -> PaymentMetadata:
        """
        Raises:
            ChainTransactionError: If the channel had to be funded and that failed
            DaemonRpcError: If channel state cannot be refreshed
            SigningError: If the claim cannot be signed
        """
        channel = self.select_channel(preselect_id)
        amount = channel.state.current_signed_amount + self.get_price()
        claim = channel.sign_claim(amount)
        logger.info(
            f"Using PaymentChannel[id: {claim.channel_id}] with nonce: {claim.nonce} "
            f"and amount: {claim.amount}"
        )
        return escrow_metadata(claim.channel_id, claim.nonce, claim.amount, claim.signature)

    def get_training_payment_metadata(self, model_id: str, amount: int) -> PaymentMetadata:
        """Metadata paying ``amount`` cogs for a training operation on ``model_id``"""
        channel = self.select_channel(price=amount)
        claim = channel.sign_claim(channel.state.current_signed_amount + amount)
        return training_metadata(
            model_id, claim.channel_id, claim.nonce, claim.amount, claim.signature
        )
