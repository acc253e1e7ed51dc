"""
Account - the payer identity used for escrow transactions and signatures.
"""
import logging
from typing import Dict, Any, Optional, TYPE_CHECKING

from web3 import Web3
from web3.exceptions import TimeExhausted
from web3.types import TxReceipt as Web3TxReceipt

from .config import DEFAULT_GAS_LIMIT
from .exceptions import ChainTransactionError, ConfigurationError
from .models import TxReceipt
from .signing import Signer, SignedMessageBuilder, FieldLike

if TYPE_CHECKING:
    from .mpe.contract import MPEContract

logger = logging.getLogger(__name__)


class Account:
    """
    Payer account backed by a signer and a web3 connection.

    Sends the escrow and token transactions on behalf of the payer and
    signs off-chain messages with the same key.
    """

    # Subset of the ERC-20 ABI used for the escrow deposit path
    TOKEN_ABI = [
        {
            "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
            "name": "balanceOf",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "address", "name": "owner", "type": "address"},
                {"internalType": "address", "name": "spender", "type": "address"}
            ],
            "name": "allowance",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "address", "name": "spender", "type": "address"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"}
            ],
            "name": "approve",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        }
    ]

    def __init__(
        self,
        w3: Web3,
        mpe_contract: "MPEContract",
        signer: Signer,
        token_contract_address: Optional[str] = None,
        default_gas_limit: int = DEFAULT_GAS_LIMIT,
        gas_price_override: Optional[int] = None,
        receipt_timeout: int = 120,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the account

        Args:
            w3: Web3 instance connected to the target network
            mpe_contract: Escrow contract wrapper
            signer: Signer holding the payer key
            token_contract_address: ERC-20 token used for escrow deposits
            default_gas_limit: Gas limit used when estimation fails
            gas_price_override: Fixed gas price (defaults to network price)
            receipt_timeout: Seconds to wait for a transaction receipt
            logger: Optional logger instance
        """
        self.w3 = w3
        self.signer = signer
        self.mpe_contract = mpe_contract
        self.default_gas_limit = default_gas_limit
        self.gas_price_override = gas_price_override
        self.receipt_timeout = receipt_timeout
        self.logger = logger or logging.getLogger(__name__)
        self.message_builder = SignedMessageBuilder(signer)

        self.token_contract = None
        if token_contract_address:
            self.token_contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(token_contract_address),
                abi=self.TOKEN_ABI
            )

    @property
    def address(self) -> str:
        """Checksum address of the payer"""
        return Web3.to_checksum_address(self.signer.address)

    def current_block_number(self) -> int:
        return self.w3.eth.block_number

    def escrow_balance(self) -> int:
        """
        Tokens the payer holds inside the escrow contract

        Raises:
            MPEError: If the balance cannot be read
        """
        return self.mpe_contract.balance(self.address)

    def balance(self) -> int:
        """Token balance outside the escrow contract"""
        return self._require_token_contract().functions.balanceOf(self.address).call()

    def allowance(self) -> int:
        """Tokens already approved for transfer to the escrow contract"""
        self.logger.debug("Fetching already approved allowance")
        return self._require_token_contract().functions.allowance(
            self.address,
            self.mpe_contract.address
        ).call()

    def approve_transfer(self, amount: int) -> TxReceipt:
        """
        Approve the escrow contract to pull ``amount`` tokens

        Raises:
            ChainTransactionError: If the approval transaction fails
        """
        self.logger.info(f"Approving {amount} cogs transfer to MPE address")
        token = self._require_token_contract()
        return self.send_transaction(token.functions.approve(self.mpe_contract.address, amount))

    def ensure_allowance(self, amount: int) -> None:
        """Approve ``amount`` unless the current allowance already covers it"""
        if amount > self.allowance():
            self.approve_transfer(amount)

    def deposit_to_escrow_account(self, amount: int) -> TxReceipt:
        """
        Approve (if needed) and deposit tokens into the escrow account

        Raises:
            ChainTransactionError: If either transaction fails
        """
        self.ensure_allowance(amount)
        return self.mpe_contract.deposit(self, amount)

    def withdraw_from_escrow_account(self, amount: int) -> TxReceipt:
        return self.mpe_contract.withdraw(self, amount)

    def sign_data(self, *fields: FieldLike) -> bytes:
        """
        Sign an ordered tuple of typed fields

        Raises:
            SigningError: If the signer fails
        """
        return self.message_builder.sign(fields)

    def send_transaction(self, contract_function: Any, value: int = 0) -> TxReceipt:
        """
        Build, sign, broadcast and confirm a contract call

        Args:
            contract_function: Bound web3 contract function
            value: Wei to attach

        Returns:
            Receipt of the confirmed transaction

        Raises:
            ChainTransactionError: If signing, broadcasting or confirmation
                fails, or the transaction reverts
        """
        from_address = self.address
        try:
            nonce = self.w3.eth.get_transaction_count(from_address)
            try:
                gas = contract_function.estimate_gas({'from': from_address, 'value': value})
                # Add 10% buffer to gas estimate
                gas = int(gas * 1.1)
                self.logger.debug(f"Estimated gas: {gas}")
            except Exception as e:
                gas = self.default_gas_limit
                self.logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")

            tx_params: Dict[str, Any] = {
                'from': from_address,
                'nonce': nonce,
                'gas': gas,
                'value': value,
            }
            if self.gas_price_override is not None:
                tx_params['gasPrice'] = self.gas_price_override
            else:
                tx_params['gasPrice'] = self.w3.eth.gas_price
            tx = contract_function.build_transaction(tx_params)
        except Exception as e:
            self.logger.error(f"Preparing transaction failed: {e}")
            raise ChainTransactionError(f"preparing transaction failed: {e}") from e

        try:
            signed_tx = self.signer.sign_transaction(tx)
        except Exception as e:
            self.logger.error(f"Transaction signing failed: {e}")
            raise ChainTransactionError(f"signing transaction failed: {e}") from e

        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except Exception as e:
            self.logger.error(f"Failed to send transaction: {e}")
            raise ChainTransactionError(f"sending transaction failed: {e}") from e
        tx_hash_hex = "0x" + tx_hash.hex().removeprefix("0x") if isinstance(tx_hash, bytes) else str(tx_hash)
        self.logger.info(f"Transaction sent: {tx_hash_hex}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout
            )
        except TimeExhausted as e:
            # Not confirmed is not the same as failed; callers must re-read chain state
            raise ChainTransactionError(
                f"transaction {tx_hash_hex} not confirmed within {self.receipt_timeout}s",
                tx_hash=tx_hash_hex
            ) from e
        except Exception as e:
            self.logger.error(f"Waiting for receipt of {tx_hash_hex} failed: {e}")
            raise ChainTransactionError(
                f"transaction {tx_hash_hex} outcome unknown: {e}",
                tx_hash=tx_hash_hex
            ) from e

        converted = self._convert_receipt(receipt)
        if converted.status != 1:
            raise ChainTransactionError(
                f"transaction {tx_hash_hex} reverted",
                tx_hash=tx_hash_hex
            )
        return converted

    def _require_token_contract(self):
        if self.token_contract is None:
            raise ConfigurationError("Token contract address not provided during initialization")
        return self.token_contract

    def _convert_receipt(self, web3_receipt: Web3TxReceipt) -> TxReceipt:
        """
        Convert Web3 receipt to our TxReceipt model
        """
        receipt_dict = dict(web3_receipt)

        # Convert bytes to hex strings
        for key, value in list(receipt_dict.items()):
            if isinstance(value, bytes):
                receipt_dict[key] = '0x' + value.hex().removeprefix('0x')
        receipt_dict['logs'] = [dict(log) for log in receipt_dict.get('logs', [])]

        return TxReceipt.model_validate(receipt_dict)
