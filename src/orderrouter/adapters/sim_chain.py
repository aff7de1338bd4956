"""Deterministic simulated chain.

Rules:
  - Holds balances, allowances, NFT holdings, maker nonces and order fills.
  - Every transaction is atomic: a revert restores the pre-transaction state.
  - Direct fills and `revert_if_incomplete` transactions revert when any
    item is unfillable; other batches skip the item and carry on.
  - Native value is escrowed at the transaction target; whatever is left
    after settlement goes back to the refund address.
  - The router, the escrow and every module end a transaction holding
    exactly what they held before it, in any currency or NFT; otherwise
    the transaction is rolled back and AssertionError is raised.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Set, Tuple

from eth_utils import keccak, to_hex

from orderrouter.adapters.base import OrderStatus
from orderrouter.adapters.registry import AdapterRegistry
from orderrouter.models.execution import Settlement, Transaction
from orderrouter.models.order import ZERO_ADDRESS
from orderrouter.util.errors import Unfillable, UnsuccessfulExecution

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP = 1_700_000_000


class SimChain:
    """In-memory ChainState plus a transaction executor for tests and demos."""

    def __init__(self, registry: AdapterRegistry, now: int = DEFAULT_TIMESTAMP) -> None:
        self.registry = registry
        self.now = now
        self._balances: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._nfts: Dict[Tuple[str, int, str], int] = {}
        self._operators: Set[Tuple[str, str, str]] = set()
        self._nonces: Dict[Tuple[str, str], int] = {}
        self._orders: Dict[Tuple[str, str], OrderStatus] = {}
        self._tx_count = 0

    # ── ChainState ───────────────────────────────────────────────────

    def timestamp(self) -> int:
        return self.now

    def balance_of(self, currency: str, owner: str) -> int:
        return self._balances.get((currency.lower(), owner.lower()), 0)

    def allowance(self, currency: str, owner: str, spender: str) -> int:
        return self._allowances.get((currency.lower(), owner.lower(), spender.lower()), 0)

    def nft_balance(self, contract: str, owner: str, token_id: int) -> int:
        return self._nfts.get((contract.lower(), token_id, owner.lower()), 0)

    def nft_approved(self, contract: str, owner: str, operator: str) -> bool:
        return (contract.lower(), owner.lower(), operator.lower()) in self._operators

    def master_nonce(self, exchange: str, maker: str, method: str) -> int:
        return self._nonces.get((exchange.lower(), maker.lower()), 0)

    def order_status(self, exchange: str, order_hash: str) -> OrderStatus:
        status = self._orders.get((exchange.lower(), order_hash))
        return status.model_copy() if status else OrderStatus()

    # ── State setup ──────────────────────────────────────────────────

    def advance(self, seconds: int) -> None:
        self.now += seconds

    def deposit(self, currency: str, owner: str, amount: int) -> None:
        key = (currency.lower(), owner.lower())
        self._balances[key] = self._balances.get(key, 0) + amount

    def approve(self, currency: str, owner: str, spender: str, amount: int) -> None:
        self._allowances[(currency.lower(), owner.lower(), spender.lower())] = amount

    def mint(self, contract: str, owner: str, token_id: int, amount: int = 1) -> None:
        key = (contract.lower(), token_id, owner.lower())
        self._nfts[key] = self._nfts.get(key, 0) + amount

    def set_approval_for_all(
        self, contract: str, owner: str, operator: str, approved: bool = True
    ) -> None:
        key = (contract.lower(), owner.lower(), operator.lower())
        if approved:
            self._operators.add(key)
        else:
            self._operators.discard(key)

    def cancel_order(self, exchange: str, order_hash: str) -> None:
        status = self._orders.setdefault((exchange.lower(), order_hash), OrderStatus())
        status.cancelled = True

    def bump_nonce(self, exchange: str, maker: str) -> None:
        key = (exchange.lower(), maker.lower())
        self._nonces[key] = self._nonces.get(key, 0) + 1

    # ── Execution ────────────────────────────────────────────────────

    def _snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(
            {
                "balances": self._balances,
                "allowances": self._allowances,
                "nfts": self._nfts,
                "operators": self._operators,
                "nonces": self._nonces,
                "orders": self._orders,
            }
        )

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self._balances = snapshot["balances"]
        self._allowances = snapshot["allowances"]
        self._nfts = snapshot["nfts"]
        self._operators = snapshot["operators"]
        self._nonces = snapshot["nonces"]
        self._orders = snapshot["orders"]

    def _holdings(self, owner: str) -> Dict[Tuple[Any, ...], int]:
        """Every non-zero currency and NFT balance of `owner`."""
        owner = owner.lower()
        held: Dict[Tuple[Any, ...], int] = {
            (currency,): amount
            for (currency, holder), amount in self._balances.items()
            if holder == owner and amount
        }
        for (contract, token_id, holder), amount in self._nfts.items():
            if holder == owner and amount:
                held[(contract, token_id)] = amount
        return held

    def _transfer(self, currency: str, sender: str, recipient: str, amount: int) -> None:
        if amount == 0:
            return
        if self.balance_of(currency, sender) < amount:
            raise Unfillable("InsufficientBalance", f"{sender} cannot pay {amount} of {currency}")
        self._balances[(currency.lower(), sender.lower())] -= amount
        self.deposit(currency, recipient, amount)

    def _move_nft(self, settlement: Settlement) -> None:
        source = (settlement.nft_contract, settlement.token_id, settlement.nft_from)
        if self._nfts.get(source, 0) < settlement.quantity:
            raise Unfillable(
                "InsufficientBalance",
                f"{settlement.nft_from} does not hold token {settlement.token_id}",
            )
        self._nfts[source] -= settlement.quantity
        self.mint(
            settlement.nft_contract,
            settlement.nft_to,
            settlement.token_id,
            settlement.quantity,
        )

    def send_transaction(self, tx: Transaction) -> Dict[str, Any]:
        """Execute a planned transaction; reverts raise UnsuccessfulExecution."""
        snapshot = self._snapshot()
        self._tx_count += 1
        tx_hash = to_hex(keccak(text=f"sim-tx-{self._tx_count}"))

        if tx.kind == "cancel":
            for item in tx.items:
                adapter = self.registry.get(item.order.kind)
                self.cancel_order(adapter.exchange, item.order.hash)
            return {"status": 1, "tx_hash": tx_hash, "filled": [], "skipped": [], "refunded": 0}
        if tx.kind == "bulk_cancel":
            self.bump_nonce(tx.to, tx.sender)
            return {"status": 1, "tx_hash": tx_hash, "filled": [], "skipped": [], "refunded": 0}

        escrow = tx.to
        stateless = {self.registry.config.router, escrow}
        stateless.update(call.to for call in tx.calls)
        held_before = {addr: self._holdings(addr) for addr in stateless}
        escrow_before = self.balance_of(ZERO_ADDRESS, escrow)
        try:
            self._transfer(ZERO_ADDRESS, tx.sender, escrow, tx.value)
        except Unfillable as e:
            self._restore(snapshot)
            raise UnsuccessfulExecution() from e

        taker = tx.taker or tx.sender
        atomic = tx.revert_if_incomplete or tx.path == "direct"
        filled: List[int] = []
        skipped: List[Dict[str, Any]] = []
        for position, item in enumerate(tx.items):
            item_snapshot = self._snapshot()
            try:
                self._fill(item, taker, escrow)
            except Unfillable as e:
                self._restore(item_snapshot)
                if atomic:
                    self._restore(snapshot)
                    logger.info("Reverting %s: %s", tx_hash, e)
                    raise UnsuccessfulExecution() from e
                skipped.append({"position": position, "reason": e.reason})
                continue
            filled.append(position)

        if not filled:
            self._restore(snapshot)
            raise UnsuccessfulExecution()

        refunded = self.balance_of(ZERO_ADDRESS, escrow) - escrow_before
        self._transfer(ZERO_ADDRESS, escrow, tx.refund_to or taker, refunded)
        for addr, before in held_before.items():
            if self._holdings(addr) != before:
                self._restore(snapshot)
                raise AssertionError(f"{addr} kept assets after {tx_hash}")

        return {
            "status": 1,
            "tx_hash": tx_hash,
            "filled": filled,
            "skipped": skipped,
            "refunded": refunded,
        }

    def _fill(self, item: Any, taker: str, escrow: str) -> None:
        """Settle one item; raises Unfillable, possibly after partial changes."""
        adapter = self.registry.get(item.order.kind)
        request = item.order.request
        bid = request.side == "bid"
        adapter.check_fillability(
            item.order,
            self,
            item.fill_amount,
            taker=(item.taker or taker) if bid else None,
            token_id=item.token_id,
        )
        status = self.order_status(adapter.exchange, item.order.hash)
        settlement = adapter.settlement(item, item.taker or taker, status.filled)

        source = escrow if request.is_native else settlement.payer
        if self.balance_of(request.currency, source) < settlement.total:
            raise Unfillable("InsufficientBalance", f"{source} cannot cover {settlement.total}")
        for payment in settlement.payments:
            self._transfer(request.currency, source, payment.recipient, payment.amount)
        if not request.is_native and adapter.currency_approval_required:
            key = (request.currency, settlement.payer, adapter.exchange)
            if self.allowance(*key) < settlement.total:
                raise Unfillable("NotApproved", f"{settlement.payer} allowance too low")
            self._allowances[key] = self.allowance(*key) - settlement.total
        self._move_nft(settlement)

        status.filled += item.fill_amount
        self._orders[(adapter.exchange, item.order.hash)] = status
