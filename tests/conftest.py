"""
Pytest fixtures for the MPE SDK tests.

The escrow contract is replaced by an in-memory fake that keeps channel
tuples and ChannelOpen events, and the daemon by StubDaemonTransport, so
no test touches a network.
"""
import base64
import itertools
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from eth_account import Account as EthAccount
from web3.providers.rpc import HTTPProvider

from mpe_sdk._rate_limited_log import reset_rate_limits
from mpe_sdk.account import Account
from mpe_sdk.daemon.stub_transport import StubDaemonTransport
from mpe_sdk.models import ChannelOnChainState, OpenChannelEvent, TxReceipt
from mpe_sdk.mpe.repository import ChannelRepository
from mpe_sdk.service import ServiceMetadata

# Constants for testing
TEST_RPC_URL = "https://rpc.example.com"
TEST_DAEMON_URL = "https://daemon.example.com:8080"
TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_MPE_ADDRESS = "0x5e592f9b1d303183d963635f895f0f0c48284f4e"
TEST_TOKEN_ADDRESS = "0x5b7533812759b45c2b44c19e320ba2cd2681b542"
TEST_PAYMENT_ADDRESS = "0x3e2d6c5f3a5b1ae8e1e1b3c0b5b0a1f2e3d4c5b6"
TEST_GROUP_ID_BYTES = bytes(range(32))
TEST_GROUP_ID = base64.b64encode(TEST_GROUP_ID_BYTES).decode()
TEST_PRICE = 100
TEST_EXPIRATION_THRESHOLD = 50
TEST_START_BLOCK = 100


def make_group(**overrides) -> Dict:
    group = {
        "group_name": "default_group",
        "group_id": TEST_GROUP_ID,
        "pricing": [{"price_model": "fixed_price", "price_in_cogs": TEST_PRICE, "default": True}],
        "endpoints": [TEST_DAEMON_URL],
        "payment": {
            "payment_address": TEST_PAYMENT_ADDRESS,
            "payment_expiration_threshold": TEST_EXPIRATION_THRESHOLD,
        },
    }
    group.update(overrides)
    return group


class FakeMPEContract:
    """
    In-memory escrow contract.

    Mutating calls are recorded in ``calls`` as ``(name, channel_id, *args)``
    and confirm instantly in the current block.
    """

    def __init__(self, w3, address: str = TEST_MPE_ADDRESS):
        self.w3 = w3
        self.address = address
        self.deployment_block = 0
        self.escrow: Dict[str, int] = {}
        self.onchain: Dict[int, ChannelOnChainState] = {}
        self.events: List[OpenChannelEvent] = []
        self.calls: List[tuple] = []
        self._ids = itertools.count()

    def _receipt(self, sender: str) -> TxReceipt:
        block = self.w3.eth.block_number
        return TxReceipt(
            tx_hash="0x" + f"{len(self.calls):064x}",
            block_number=block,
            block_hash="0x" + "ab" * 32,
            status=1,
            gas_used=21000,
            from_address=sender,
            to_address=self.address,
            logs=[],
        )

    def add_existing_channel(
        self,
        sender: str,
        amount: int,
        expiry: int,
        nonce: int = 0,
        recipient: str = TEST_PAYMENT_ADDRESS,
        group_id: bytes = TEST_GROUP_ID_BYTES,
        block_number: Optional[int] = None
    ) -> int:
        channel_id = next(self._ids)
        self.onchain[channel_id] = ChannelOnChainState(
            nonce=nonce, expiry=expiry, amount_deposited=amount
        )
        self.events.append(OpenChannelEvent(
            channel_id=channel_id,
            nonce=nonce,
            sender=sender,
            signer=sender,
            recipient=recipient,
            group_id=group_id,
            amount=amount,
            expiry=expiry,
            block_number=self.w3.eth.block_number if block_number is None else block_number,
        ))
        return channel_id

    def balance(self, address: str) -> int:
        return self.escrow.get(address.lower(), 0)

    def deposit(self, account, amount):
        self.calls.append(("deposit", None, amount))
        self.escrow[account.address.lower()] = self.balance(account.address) + amount
        return self._receipt(account.address)

    def withdraw(self, account, amount):
        self.calls.append(("withdraw", None, amount))
        self.escrow[account.address.lower()] = self.balance(account.address) - amount
        return self._receipt(account.address)

    def open_channel(self, account, payment_address, group_id, amount, expiry):
        self.calls.append(("open_channel", None, amount, expiry))
        self.escrow[account.address.lower()] = self.balance(account.address) - amount
        self.add_existing_channel(account.address, amount, expiry,
                                  recipient=payment_address, group_id=group_id)
        return self._receipt(account.address)

    def deposit_and_open_channel(self, account, payment_address, group_id, amount, expiry):
        self.calls.append(("deposit_and_open_channel", None, amount, expiry))
        self.add_existing_channel(account.address, amount, expiry,
                                  recipient=payment_address, group_id=group_id)
        return self._receipt(account.address)

    def _update(self, channel_id: int, **changes) -> None:
        self.onchain[channel_id] = self.onchain[channel_id].model_copy(update=changes)

    def channel_add_funds(self, account, channel_id, amount):
        self.calls.append(("channel_add_funds", channel_id, amount))
        state = self.onchain[channel_id]
        self._update(channel_id, amount_deposited=state.amount_deposited + amount)
        return self._receipt(account.address)

    def channel_extend(self, account, channel_id, expiry):
        self.calls.append(("channel_extend", channel_id, expiry))
        self._update(channel_id, expiry=expiry)
        return self._receipt(account.address)

    def channel_extend_and_add_funds(self, account, channel_id, expiry, amount):
        self.calls.append(("channel_extend_and_add_funds", channel_id, expiry, amount))
        state = self.onchain[channel_id]
        self._update(channel_id, expiry=expiry, amount_deposited=state.amount_deposited + amount)
        return self._receipt(account.address)

    def channel_claim_timeout(self, account, channel_id):
        self.calls.append(("channel_claim_timeout", channel_id))
        self._update(channel_id, amount_deposited=0)
        return self._receipt(account.address)

    def channels(self, channel_id):
        return self.onchain[channel_id]

    def get_past_open_channels(self, sender, payment_address, group_id, from_block=None, to_block="latest"):
        if from_block is None:
            from_block = self.deployment_block
        return [
            event for event in self.events
            if event.sender.lower() == sender.lower()
            and event.recipient.lower() == payment_address.lower()
            and event.group_id == group_id
            and event.block_number >= from_block
        ]


class PaymentEnv:
    """Account, fake chain, stub daemon and service for one payer and group"""

    def __init__(self, escrow_balance: int = 1000, group: Optional[Dict] = None, **options):
        self.w3 = MagicMock()
        self.w3.eth.block_number = TEST_START_BLOCK
        self.signer = EthAccount.from_key(TEST_PRIV_KEY)
        self.mpe = FakeMPEContract(self.w3)
        self.account = Account(self.w3, self.mpe, self.signer)
        self.mpe.escrow[self.account.address.lower()] = escrow_balance
        self.daemon = StubDaemonTransport()
        self.daemon.initialize(TEST_DAEMON_URL)
        self.service = ServiceMetadata(
            "snet",
            "example-service",
            group or make_group(),
            self.mpe.address,
            options=options,
        )
        self.repository = ChannelRepository(self.account, self.mpe, self.daemon, self.service)

    def add_channel(self, amount: int, expiry: int, signed_amount: int = 0, nonce: int = 0) -> int:
        channel_id = self.mpe.add_existing_channel(self.account.address, amount, expiry, nonce=nonce)
        self.daemon.set_channel_state(channel_id, nonce=nonce, signed_amount=signed_amount)
        return channel_id

    def mine(self, blocks: int = 1) -> None:
        self.w3.eth.block_number += blocks


def make_env(**kwargs) -> PaymentEnv:
    return PaymentEnv(**kwargs)


@pytest.fixture(autouse=True)
def _patch_http_provider(monkeypatch):
    """
    Stub every Web3 HTTP call so no DNS / network traffic is triggered.
    """
    def _dummy(self, method, params=None, _=None):
        if method == "eth_chainId":
            return {"jsonrpc": "2.0", "id": 1, "result": "0xaa36a7"}
        if method == "eth_gasPrice":
            return {"jsonrpc": "2.0", "id": 1, "result": "0x3b9aca00"}
        return {"jsonrpc": "2.0", "id": 1, "result": "0x0"}

    monkeypatch.setattr(HTTPProvider, "make_request", _dummy, raising=True)


@pytest.fixture(autouse=True)
def _reset_rate_limited_log():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def env():
    """Payer with 1000 cogs in escrow and no channels"""
    return make_env()


@pytest.fixture
def eth_account():
    """Create a deterministic test account"""
    return EthAccount.from_key(TEST_PRIV_KEY)
