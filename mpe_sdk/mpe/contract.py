"""
Wrapper around the MultiPartyEscrow contract.

Mutating calls are sent through :class:`mpe_sdk.account.Account` and block
until the transaction is confirmed. Read calls go straight to the node.
"""
import logging
from typing import Any, List, Optional, TYPE_CHECKING

from web3 import Web3
from web3.exceptions import Web3Exception

from ..exceptions import MPEError
from ..models import ChannelOnChainState, OpenChannelEvent, TxReceipt

if TYPE_CHECKING:
    from ..account import Account

logger = logging.getLogger(__name__)

CHANNEL_OPEN_EVENT_SIGNATURE = (
    "ChannelOpen(uint256,uint256,address,address,address,bytes32,uint256,uint256)"
)


def _address_topic(address: str) -> str:
    return "0x" + "0" * 24 + Web3.to_checksum_address(address)[2:].lower()


def _bytes32_topic(value: bytes) -> str:
    return "0x" + value.ljust(32, b"\0")[:32].hex()


class MPEContract:
    """Escrow contract operations used by the payment layer"""

    # Subset of the MultiPartyEscrow ABI
    MPE_ABI = [
        {
            "inputs": [{"internalType": "address", "name": "", "type": "address"}],
            "name": "balances",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "name": "channels",
            "outputs": [
                {"internalType": "uint256", "name": "nonce", "type": "uint256"},
                {"internalType": "address", "name": "sender", "type": "address"},
                {"internalType": "address", "name": "signer", "type": "address"},
                {"internalType": "address", "name": "recipient", "type": "address"},
                {"internalType": "bytes32", "name": "groupId", "type": "bytes32"},
                {"internalType": "uint256", "name": "value", "type": "uint256"},
                {"internalType": "uint256", "name": "expiration", "type": "uint256"}
            ],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "uint256", "name": "value", "type": "uint256"}],
            "name": "deposit",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "uint256", "name": "value", "type": "uint256"}],
            "name": "withdraw",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "address", "name": "signer", "type": "address"},
                {"internalType": "address", "name": "recipient", "type": "address"},
                {"internalType": "bytes32", "name": "groupId", "type": "bytes32"},
                {"internalType": "uint256", "name": "value", "type": "uint256"},
                {"internalType": "uint256", "name": "expiration", "type": "uint256"}
            ],
            "name": "openChannel",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "address", "name": "signer", "type": "address"},
                {"internalType": "address", "name": "recipient", "type": "address"},
                {"internalType": "bytes32", "name": "groupId", "type": "bytes32"},
                {"internalType": "uint256", "name": "value", "type": "uint256"},
                {"internalType": "uint256", "name": "expiration", "type": "uint256"}
            ],
            "name": "depositAndOpenChannel",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "channel_id", "type": "uint256"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"}
            ],
            "name": "channelAddFunds",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "channel_id", "type": "uint256"},
                {"internalType": "uint256", "name": "new_expiration", "type": "uint256"}
            ],
            "name": "channelExtend",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "channel_id", "type": "uint256"},
                {"internalType": "uint256", "name": "new_expiration", "type": "uint256"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"}
            ],
            "name": "channelExtendAndAddFunds",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "uint256", "name": "channel_id", "type": "uint256"}],
            "name": "channelClaimTimeout",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "anonymous": False,
            "inputs": [
                {"indexed": False, "internalType": "uint256", "name": "channelId", "type": "uint256"},
                {"indexed": False, "internalType": "uint256", "name": "nonce", "type": "uint256"},
                {"indexed": True, "internalType": "address", "name": "sender", "type": "address"},
                {"indexed": False, "internalType": "address", "name": "signer", "type": "address"},
                {"indexed": True, "internalType": "address", "name": "recipient", "type": "address"},
                {"indexed": True, "internalType": "bytes32", "name": "groupId", "type": "bytes32"},
                {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
                {"indexed": False, "internalType": "uint256", "name": "expiration", "type": "uint256"}
            ],
            "name": "ChannelOpen",
            "type": "event"
        }
    ]

    def __init__(self, w3: Web3, address: str, deployment_block: int = 0):
        """
        Args:
            w3: Web3 instance
            address: Escrow contract address
            deployment_block: First block scanned when replaying open events
        """
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.deployment_block = deployment_block
        self.contract = self.w3.eth.contract(address=self.address, abi=self.MPE_ABI)

    def balance(self, address: str) -> int:
        """Escrowed token balance of ``address``"""
        try:
            return self.contract.functions.balances(Web3.to_checksum_address(address)).call()
        except Web3Exception as e:
            raise MPEError(f"reading escrow balance failed: {e}") from e

    def deposit(self, account: "Account", amount: int) -> TxReceipt:
        logger.info(f"Depositing {amount} cogs to MPE account")
        return account.send_transaction(self.contract.functions.deposit(amount))

    def withdraw(self, account: "Account", amount: int) -> TxReceipt:
        logger.info(f"Withdrawing {amount} cogs from MPE account")
        return account.send_transaction(self.contract.functions.withdraw(amount))

    def open_channel(
        self,
        account: "Account",
        payment_address: str,
        group_id: bytes,
        amount: int,
        expiry: int
    ) -> TxReceipt:
        """
        Open a channel funded from the payer's escrow balance

        Args:
            account: Payer account; also used as the channel signer
            payment_address: Recipient address of the service group
            group_id: 32-byte payment group id
            amount: Tokens to lock in the channel
            expiry: Expiration block
        """
        logger.info(f"Opening new payment channel [amount: {amount}, expiry: {expiry}]")
        return account.send_transaction(self.contract.functions.openChannel(
            account.address,
            Web3.to_checksum_address(payment_address),
            group_id,
            amount,
            expiry
        ))

    def deposit_and_open_channel(
        self,
        account: "Account",
        payment_address: str,
        group_id: bytes,
        amount: int,
        expiry: int
    ) -> TxReceipt:
        """
        Move tokens into escrow and open a channel in a single transaction.

        The token transfer is approved first when the current allowance
        does not cover ``amount``.
        """
        account.ensure_allowance(amount)
        logger.info(f"Depositing {amount} cogs and opening new payment channel [expiry: {expiry}]")
        return account.send_transaction(self.contract.functions.depositAndOpenChannel(
            account.address,
            Web3.to_checksum_address(payment_address),
            group_id,
            amount,
            expiry
        ))

    def channel_add_funds(self, account: "Account", channel_id: int, amount: int) -> TxReceipt:
        logger.info(f"Adding {amount} cogs to PaymentChannel[id: {channel_id}]")
        return account.send_transaction(self.contract.functions.channelAddFunds(channel_id, amount))

    def channel_extend(self, account: "Account", channel_id: int, expiry: int) -> TxReceipt:
        logger.info(f"Extending PaymentChannel[id: {channel_id}] expiry to {expiry}")
        return account.send_transaction(self.contract.functions.channelExtend(channel_id, expiry))

    def channel_extend_and_add_funds(
        self,
        account: "Account",
        channel_id: int,
        expiry: int,
        amount: int
    ) -> TxReceipt:
        logger.info(
            f"Extending PaymentChannel[id: {channel_id}] expiry to {expiry} "
            f"and adding {amount} cogs"
        )
        return account.send_transaction(
            self.contract.functions.channelExtendAndAddFunds(channel_id, expiry, amount)
        )

    def channel_claim_timeout(self, account: "Account", channel_id: int) -> TxReceipt:
        logger.info(f"Claiming unused funds of expired PaymentChannel[id: {channel_id}]")
        return account.send_transaction(self.contract.functions.channelClaimTimeout(channel_id))

    def channels(self, channel_id: int) -> ChannelOnChainState:
        """
        Read the authoritative on-chain tuple of a channel

        Raises:
            MPEError: If the contract call fails
        """
        try:
            nonce, _sender, _signer, _recipient, _group_id, value, expiration = (
                self.contract.functions.channels(channel_id).call()
            )
        except Web3Exception as e:
            raise MPEError(f"reading PaymentChannel[id: {channel_id}] failed: {e}") from e
        return ChannelOnChainState(nonce=nonce, expiry=expiration, amount_deposited=value)

    def get_past_open_channels(
        self,
        sender: str,
        payment_address: str,
        group_id: bytes,
        from_block: Optional[int] = None,
        to_block: Any = "latest"
    ) -> List[OpenChannelEvent]:
        """
        Replay ChannelOpen events for one payer and payment group

        Args:
            sender: Payer address
            payment_address: Recipient address of the group
            group_id: 32-byte payment group id
            from_block: First block to scan (defaults to the deployment block)
            to_block: Last block to scan

        Returns:
            Decoded events in log order

        Raises:
            MPEError: If the log query fails
        """
        if from_block is None:
            from_block = self.deployment_block
        log_filter = {
            "address": self.address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [
                "0x" + Web3.keccak(text=CHANNEL_OPEN_EVENT_SIGNATURE).hex().removeprefix("0x"),
                _address_topic(sender),
                _address_topic(payment_address),
                _bytes32_topic(group_id),
            ],
        }
        try:
            logs = self.w3.eth.get_logs(log_filter)
        except Web3Exception as e:
            raise MPEError(f"fetching ChannelOpen events failed: {e}") from e

        event = self.contract.events.ChannelOpen()
        events = []
        for log in logs:
            decoded = event.process_log(log)
            args = decoded["args"]
            events.append(OpenChannelEvent(
                channel_id=args["channelId"],
                nonce=args["nonce"],
                sender=args["sender"],
                signer=args["signer"],
                recipient=args["recipient"],
                group_id=bytes(args["groupId"]),
                amount=args["amount"],
                expiry=args["expiration"],
                block_number=decoded["blockNumber"],
            ))
        logger.debug(f"Found {len(events)} payment channel open events since block {from_block}")
        return events
