"""
Service metadata - pricing, payment group and endpoint of one service.
"""
import base64
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

FIXED_PRICE_MODEL = "fixed_price"


class PricingEntry(BaseModel):
    """One pricing tier of a payment group"""
    price_model: str
    price_in_cogs: int = 0
    default: bool = False


class GroupPayment(BaseModel):
    """Payment settings of a group as published in the service metadata"""
    payment_address: str
    payment_expiration_threshold: int = 0
    payment_channel_storage_type: Optional[str] = None


class ServiceGroup(BaseModel):
    """A payment group: one recipient, one price list, one set of daemons"""
    group_name: str = ""
    group_id: str = Field(..., description="Base64 encoded 32-byte group id")
    pricing: List[PricingEntry] = Field(default_factory=list)
    endpoints: List[str] = Field(default_factory=list)
    payment: GroupPayment
    free_calls: int = 0


class ServiceMetadata:
    """
    Metadata of a service as needed by the payment layer.

    Options:
        endpoint: Daemon URL used instead of the group's first endpoint
        concurrency: Whether prepaid concurrent calls are enabled (default True)
    """

    def __init__(
        self,
        org_id: str,
        service_id: str,
        group: Union[ServiceGroup, Dict[str, Any]],
        mpe_address: str,
        options: Optional[Dict[str, Any]] = None
    ):
        self.org_id = org_id
        self.service_id = service_id
        self.group = group if isinstance(group, ServiceGroup) else ServiceGroup.model_validate(group)
        self.mpe_address = mpe_address
        self.options = dict(options or {})

    @property
    def group_id(self) -> str:
        return self.group.group_id

    @property
    def group_id_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.group.group_id)
        except ValueError as e:
            raise ConfigurationError(f"Group id {self.group.group_id!r} is not valid base64") from e

    @property
    def payment_address(self) -> str:
        return self.group.payment.payment_address

    @property
    def price_per_service_call(self) -> int:
        """
        Price of a single call in cogs

        Raises:
            ConfigurationError: If the group has no fixed-price tier
        """
        for entry in self.group.pricing:
            if entry.price_model == FIXED_PRICE_MODEL:
                return entry.price_in_cogs
        raise ConfigurationError(
            f"Group {self.group.group_name or self.group_id} has no {FIXED_PRICE_MODEL} pricing"
        )

    @property
    def payment_expiration_threshold(self) -> int:
        return self.group.payment.payment_expiration_threshold or 0

    def default_channel_expiration(self, current_block: int) -> int:
        """Lowest expiry block a channel must have to be used right now"""
        return current_block + self.payment_expiration_threshold

    @property
    def concurrency_flag(self) -> bool:
        concurrency = self.options.get("concurrency")
        if concurrency is None:
            return True
        return bool(concurrency)

    @property
    def service_endpoint(self) -> str:
        """
        Daemon endpoint for this service

        Raises:
            ConfigurationError: If no endpoint is configured
        """
        endpoint = self.options.get("endpoint")
        if endpoint:
            return endpoint
        if not self.group.endpoints:
            raise ConfigurationError("Service endpoints is empty")
        endpoint = self.group.endpoints[0]
        logger.debug(f"Service endpoint: {endpoint}")
        return endpoint

    def service_details(self) -> Dict[str, Any]:
        return {
            "org_id": self.org_id,
            "service_id": self.service_id,
            "group_id": self.group_id,
            "group_id_bytes": self.group_id_bytes,
            "daemon_endpoint": self.service_endpoint,
        }
