from __future__ import annotations

import logging

from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from apps.rewards.config import PayoutSettings
from apps.rewards.models import RewardToken
from apps.rewards.providers.base import PayoutConfigurationError, PayoutMode, PayoutProvider, PayoutProviderError

logger = logging.getLogger(__name__)

ERC20_TRANSFER_ABI = [
    {
        "constant": False,
        "inputs": [{"name": "to", "type": "address"}, {"name": "value", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


class OnchainPayoutProvider(PayoutProvider):
    """Signs and broadcasts transfers from the distributor key, waiting for each receipt."""

    mode = PayoutMode.ONCHAIN

    def __init__(self, config: PayoutSettings, web3: Web3 | None = None) -> None:
        if not config.onchain_rpc_url:
            raise PayoutConfigurationError("BASE_RPC_URL is not configured.")
        if not config.onchain_private_key:
            raise PayoutConfigurationError("DISTRIBUTOR_PRIVATE_KEY is not configured.")
        self.web3 = web3 or Web3(Web3.HTTPProvider(config.onchain_rpc_url))
        try:
            self.account = self.web3.eth.account.from_key(config.onchain_private_key)
        except ValueError as exc:
            raise PayoutConfigurationError("DISTRIBUTOR_PRIVATE_KEY is not a valid key.") from exc
        self.chain_id = config.onchain_chain_id
        self.usdc_address = config.onchain_usdc_address
        self.receipt_timeout = config.onchain_receipt_timeout_seconds

    def _base_tx(self) -> dict:
        return {
            "from": self.account.address,
            "nonce": self.web3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": self.chain_id,
        }

    def _build_eth(self, destination: str, amount: int) -> dict:
        tx = self._base_tx()
        tx.update({"to": destination, "value": amount})
        tx["gas"] = self.web3.eth.estimate_gas(tx)
        tx["gasPrice"] = self.web3.eth.gas_price
        return tx

    def _build_usdc(self, destination: str, amount: int) -> dict:
        if not self.usdc_address:
            raise PayoutConfigurationError("USDC_ADDRESS_BASE is not configured.")
        contract = self.web3.eth.contract(address=Web3.to_checksum_address(self.usdc_address), abi=ERC20_TRANSFER_ABI)
        tx = self._base_tx()
        tx["gasPrice"] = self.web3.eth.gas_price
        return contract.functions.transfer(destination, amount).build_transaction(tx)

    def transfer(self, token: str, destination: str, amount: int) -> str:
        token = str(token or "").upper()
        try:
            destination = Web3.to_checksum_address(destination)
        except ValueError as exc:
            raise PayoutProviderError(f"invalid destination address: {destination}") from exc

        if token == RewardToken.ETH:
            build = self._build_eth
        elif token == RewardToken.USDC:
            build = self._build_usdc
        else:
            raise PayoutConfigurationError(f"Unsupported reward token: {token}")

        try:
            tx = build(destination, int(amount))
            signed = self.account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except (Web3Exception, ValueError, OSError) as exc:
            logger.warning("payouts.onchain_broadcast_failed", extra={"token": token, "error": str(exc)})
            raise PayoutProviderError(f"on-chain broadcast failed: {exc}") from exc

        tx_hex = Web3.to_hex(tx_hash)
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as exc:
            raise PayoutProviderError(f"timed out waiting for receipt of {tx_hex}") from exc
        except (Web3Exception, OSError) as exc:
            raise PayoutProviderError(f"receipt lookup for {tx_hex} failed: {exc}") from exc

        if int(receipt.get("status", 0)) != 1:
            raise PayoutProviderError(f"transaction {tx_hex} reverted")
        logger.info(
            "payouts.onchain_confirmed",
            extra={"tx_hash": tx_hex, "block_number": receipt.get("blockNumber"), "token": token},
        )
        return tx_hex
