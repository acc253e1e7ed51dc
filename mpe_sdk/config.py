"""
Configuration for the MPE SDK.

Settings can be passed explicitly or read from ``MPE_*`` environment
variables with :meth:`SDKConfig.from_env`.
"""
import os
import logging
import urllib.parse
from typing import Optional, Dict, Any

from pydantic import BaseModel, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

NETWORK_IDS = {
    "mainnet": 1,
    "sepolia": 11155111,
}

VALID_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

DEFAULT_BLOCK_OFFSET = 240
DEFAULT_CALL_ALLOWANCE = 1
DEFAULT_GAS_LIMIT = 210000

_ENV_FIELDS = {
    "MPE_RPC_URL": "rpc_url",
    "MPE_PRIVATE_KEY": "private_key",
    "MPE_NETWORK_ID": "network_id",
    "MPE_CONTRACT_ADDRESS": "mpe_contract_address",
    "MPE_TOKEN_ADDRESS": "token_contract_address",
    "MPE_LOG_LEVEL": "log_level",
    "MPE_DEPLOYMENT_BLOCK": "mpe_deployment_block",
    "MPE_DAEMON_TIMEOUT": "daemon_timeout",
}


def is_local_host(url: str) -> bool:
    """Check whether a URL points at a loopback host"""
    host = urllib.parse.urlparse(url).hostname or ""
    return host in ("localhost", "127.0.0.1", "::1")


def validate_endpoint_url(name: str, url: str) -> str:
    """
    Validate that an endpoint URL is http(s) and secure.

    Args:
        name: Setting name used in error messages
        url: URL to validate

    Returns:
        The URL unchanged

    Raises:
        ValueError: If the URL is not http(s), or uses plain http for a
            non-local host while MPE_ALLOW_INSECURE is not set
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"{name} must be a valid HTTP/HTTPS URL (got: {url})")
    if parsed.scheme != "https" and not is_local_host(url):
        if os.environ.get("MPE_ALLOW_INSECURE") != "1":
            raise ValueError(
                f"{name} must use https:// for security (got: {parsed.scheme}://). "
                "Set MPE_ALLOW_INSECURE=1 to allow HTTP for development."
            )
    return url


class SDKConfig(BaseModel):
    """Settings shared by every service client created from one MPEClient"""
    rpc_url: str
    network_id: int
    mpe_contract_address: str
    private_key: Optional[str] = None
    token_contract_address: Optional[str] = None
    mpe_deployment_block: int = 0
    log_level: str = "info"
    default_gas_limit: int = DEFAULT_GAS_LIMIT
    default_gas_price: Optional[int] = None
    block_offset: int = DEFAULT_BLOCK_OFFSET
    call_allowance: int = DEFAULT_CALL_ALLOWANCE
    concurrent_calls: int = 1
    daemon_timeout: int = 10
    receipt_timeout: int = 120

    @field_validator("rpc_url")
    @classmethod
    def _check_rpc_url(cls, value: str) -> str:
        return validate_endpoint_url("rpc_url", value)

    @field_validator("network_id")
    @classmethod
    def _check_network_id(cls, value: int) -> int:
        valid = sorted(NETWORK_IDS.values())
        if value not in valid:
            raise ValueError(f"Network ID must be one of: {', '.join(map(str, valid))}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in VALID_LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {', '.join(VALID_LOG_LEVELS)}")
        return value

    @field_validator("block_offset", "call_allowance", "concurrent_calls", "mpe_deployment_block")
    @classmethod
    def _check_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @classmethod
    def create(cls, **settings: Any) -> "SDKConfig":
        """
        Build a config, converting validation failures to ConfigurationError.

        Raises:
            ConfigurationError: If any setting is missing or invalid
        """
        try:
            return cls(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid SDK configuration: {e}") from e

    @classmethod
    def from_env(cls, **overrides: Any) -> "SDKConfig":
        """
        Build a config from MPE_* environment variables.

        Args:
            **overrides: Settings that take precedence over the environment

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        settings: Dict[str, Any] = {}
        for env_name, field_name in _ENV_FIELDS.items():
            value = os.environ.get(env_name)
            if value:
                settings[field_name] = value
        settings.update(overrides)
        return cls.create(**settings)


def configure_logging(level: str) -> None:
    """Set the level of every logger under the ``mpe_sdk`` namespace"""
    logging.getLogger("mpe_sdk").setLevel(level.upper())
