"""
Free-call strategy: calls covered by the service's free allowance.
"""
import logging
import threading
from typing import Optional, TYPE_CHECKING

from .._rate_limited_log import rate_limited_log
from ..exceptions import ConfigurationError, MPEError
from ..metadata import free_call_metadata
from ..models import FreeCallToken, PaymentMetadata
from ..signing import build_free_call_fields, normalize_free_call_token

if TYPE_CHECKING:
    from ..account import Account
    from ..daemon.transport import DaemonTransport
    from ..service import ServiceMetadata

logger = logging.getLogger(__name__)


class FreeCallPaymentStrategy:
    """
    Pays nothing; authenticates the caller for a free call instead.

    The daemon-issued free-call token is kept until its expiration block.
    The remaining free-call count is never cached: it is asked for on
    every call because other clients of the same identity consume it too.
    """

    def __init__(
        self,
        account: "Account",
        service: "ServiceMetadata",
        daemon: "DaemonTransport",
        daemon_timeout: Optional[int] = None
    ):
        self.account = account
        self.service = service
        self.daemon = daemon
        self.daemon_timeout = daemon_timeout
        self._free_call_token = FreeCallToken()
        self._token_lock = threading.Lock()

    @property
    def free_call_token(self) -> FreeCallToken:
        return self._free_call_token

    def _generate_signature(self, address: str, current_block: int, token: Optional[str] = None) -> bytes:
        if not self.service.org_id or not self.service.service_id or not self.service.group_id:
            raise ConfigurationError("Missing service metadata details")
        return self.account.sign_data(*build_free_call_fields(
            address,
            self.service.org_id,
            self.service.service_id,
            self.service.group_id,
            current_block,
            token=token,
        ))

    def _update_free_call_token(self, address: str) -> FreeCallToken:
        with self._token_lock:
            current_block = self.account.current_block_number()
            if self._free_call_token.is_valid_at(current_block):
                return self._free_call_token
            logger.debug(f"Requesting free call token for address={address}")
            signature = self._generate_signature(address, current_block)
            self._free_call_token = self.daemon.get_free_call_token(
                address,
                signature,
                current_block,
                timeout=self.daemon_timeout
            )
            return self._free_call_token

    def get_free_calls_available(self) -> int:
        """
        Ask the daemon how many free calls remain

        Raises:
            DaemonRpcError: If the daemon call fails
            SigningError: If the request cannot be signed
        """
        address = self.account.address
        token = self._update_free_call_token(address)
        current_block = self.account.current_block_number()
        signature = self._generate_signature(address, current_block, token.token_hex)
        available = self.daemon.get_free_calls_available(
            address,
            bytes.fromhex(normalize_free_call_token(token.token_hex)),
            signature,
            current_block,
            timeout=self.daemon_timeout
        )
        logger.debug(f"Available free calls={available}")
        return available

    def available_free_calls(self) -> int:
        """Free calls left, or 0 when the daemon cannot tell"""
        try:
            return self.get_free_calls_available()
        except (MPEError, ValueError) as e:
            rate_limited_log(
                f"Free call check for {self.service.org_id}/{self.service.service_id} failed, "
                f"falling back to paid call: {e}",
                logger_instance=logger
            )
            return 0

    def is_free_call_available(self) -> bool:
        return self.available_free_calls() > 0

    def get_payment_metadata(self) -> PaymentMetadata:
        address = self.account.address
        token = self._update_free_call_token(address)
        current_block = self.account.current_block_number()
        signature = self._generate_signature(address, current_block, token.token_hex)
        return free_call_metadata(
            address,
            current_block,
            bytes.fromhex(normalize_free_call_token(token.token_hex)),
            signature,
            token_expiry_block=token.expiration_block,
        )
