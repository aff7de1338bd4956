"""JSON-RPC chain backend.

Implements the ChainState reads with raw eth_calls and sends planned
transactions from a local key.

Credentials (environment variables):
  - RPC_URL: JSON-RPC endpoint
  - PRIVATE_KEY: hex key of the sending account

Install the optional dependency:
  pip install orderrouter[web3]
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Sequence

from eth_abi import decode
from eth_account import Account

from orderrouter.adapters.base import OrderStatus, encode_call
from orderrouter.adapters.registry import AdapterRegistry
from orderrouter.models.execution import Transaction
from orderrouter.models.order import ZERO_ADDRESS, OrderKind
from orderrouter.util.errors import UnsuccessfulExecution

try:
    from web3 import Web3
except ImportError as e:
    raise ImportError(
        "web3 is required for the JSON-RPC chain backend. "
        "Install with: pip install orderrouter[web3]"
    ) from e

logger = logging.getLogger(__name__)

ERC1155_INTERFACE_ID = "0xd9b67a26"
DEFAULT_GAS_LIMIT = 1_000_000
SEAPORT_KINDS = (OrderKind.SEAPORT_V15, OrderKind.SEAPORT_V16)


def _as_int(value: Any) -> int:
    return int(value, 0) if isinstance(value, str) else int(value)


class Web3Chain:
    """Live ChainState and transaction executor over JSON-RPC."""

    def __init__(
        self,
        rpc_url: str | None = None,
        private_key: str | None = None,
        registry: Optional[AdapterRegistry] = None,
        receipt_timeout: int = 120,
    ) -> None:
        rpc_url = rpc_url or os.environ.get("RPC_URL", "")
        private_key = private_key or os.environ.get("PRIVATE_KEY", "")
        if not rpc_url:
            raise ValueError(
                "RPC URL required. Set RPC_URL environment variable, "
                "or pass rpc_url= to the constructor."
            )
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 15}))
        self.account = Account.from_key(private_key) if private_key else None
        self.registry = registry
        self.receipt_timeout = receipt_timeout

    # ── Thin RPC layer (mock this for tests) ──────────────────────────

    def _call(self, to: str, signature: str, args: Sequence[Any], returns: Sequence[str]) -> tuple:
        data = encode_call(signature, args)
        raw = self.w3.eth.call({"to": Web3.to_checksum_address(to), "data": data})
        return decode(list(returns), bytes(raw))

    # ── ChainState ───────────────────────────────────────────────────

    def timestamp(self) -> int:
        return int(self.w3.eth.get_block("latest")["timestamp"])

    def balance_of(self, currency: str, owner: str) -> int:
        if currency.lower() == ZERO_ADDRESS:
            return int(self.w3.eth.get_balance(Web3.to_checksum_address(owner)))
        (balance,) = self._call(currency, "balanceOf(address)", [owner], ["uint256"])
        return balance

    def allowance(self, currency: str, owner: str, spender: str) -> int:
        (amount,) = self._call(
            currency, "allowance(address,address)", [owner, spender], ["uint256"]
        )
        return amount

    def nft_balance(self, contract: str, owner: str, token_id: int) -> int:
        (is_1155,) = self._call(
            contract,
            "supportsInterface(bytes4)",
            [bytes.fromhex(ERC1155_INTERFACE_ID[2:])],
            ["bool"],
        )
        if is_1155:
            (balance,) = self._call(
                contract, "balanceOf(address,uint256)", [owner, token_id], ["uint256"]
            )
            return balance
        (holder,) = self._call(contract, "ownerOf(uint256)", [token_id], ["address"])
        return 1 if holder.lower() == owner.lower() else 0

    def nft_approved(self, contract: str, owner: str, operator: str) -> bool:
        (approved,) = self._call(
            contract, "isApprovedForAll(address,address)", [owner, operator], ["bool"]
        )
        return approved

    def master_nonce(self, exchange: str, maker: str, method: str) -> int:
        (nonce,) = self._call(exchange, f"{method}(address)", [maker], ["uint256"])
        return nonce

    def order_status(self, exchange: str, order_hash: str) -> OrderStatus:
        """Seaport reports cancellation and fills on chain; other exchanges read as open."""
        if self.registry is None or self.registry.by_exchange(exchange).kind not in SEAPORT_KINDS:
            return OrderStatus()
        _, cancelled, total_filled, _ = self._call(
            exchange,
            "getOrderStatus(bytes32)",
            [bytes.fromhex(order_hash[2:])],
            ["bool", "bool", "uint256", "uint256"],
        )
        return OrderStatus(cancelled=cancelled, filled=total_filled)

    # ── Sending ──────────────────────────────────────────────────────

    def send_rpc_transaction(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Sign, broadcast and wait for an RPC-style transaction dict."""
        if self.account is None:
            raise ValueError(
                "Private key required to send transactions. Set PRIVATE_KEY "
                "environment variable, or pass private_key= to the constructor."
            )
        sender = Web3.to_checksum_address(data.get("from") or self.account.address)
        tx = {
            "from": sender,
            "to": Web3.to_checksum_address(data["to"]),
            "data": data.get("data", "0x"),
            "value": _as_int(data.get("value") or 0),
            "gas": _as_int(data.get("gasLimit") or DEFAULT_GAS_LIMIT),
            "gasPrice": self.w3.eth.gas_price,
            "nonce": self.w3.eth.get_transaction_count(sender),
            "chainId": self.w3.eth.chain_id,
        }
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout
        )
        logger.info("Transaction %s mined with status %s", Web3.to_hex(tx_hash), receipt["status"])
        if receipt["status"] == 0:
            raise UnsuccessfulExecution()
        return {"status": 1, "tx_hash": Web3.to_hex(tx_hash)}

    def send_transaction(self, tx: Transaction) -> Dict[str, Any]:
        result = self.send_rpc_transaction(tx.to_rpc())
        result.update(
            {"filled": list(range(len(tx.items))), "skipped": [], "refunded": 0}
        )
        return result
