"""Execution planner: turns fillable orders into router transactions.

Plan lifecycle:
  Validating -> Planning -> Batched | PerOrder -> Submitted
             -> Completed | PartiallyCompleted | Reverted

Items are grouped by (kind, currency, trusted channel, side, token
standard) in first-seen order. Within a group, a multi-item batch is a
sweep when the adapter accepts it (whole, unfilled listings of one
collection with nothing paid on top), and an explicit multi-fill
otherwise; a lone item is a direct fill. Adapters that
cannot batch a side get one transaction per item. Groups routed through a
trusted channel are wrapped in forwardCall and never merged with others.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from orderrouter.adapters.base import BaseAdapter, ChainState, encode_call, hexbytes
from orderrouter.adapters.registry import AdapterRegistry
from orderrouter.engine.audit import (
    build_audit_event,
    build_plan_event,
    router_config_hash,
    tx_summary,
    write_audit_event,
)
from orderrouter.engine.fees import ceil_with_slippage
from orderrouter.models.config import RouterConfig
from orderrouter.models.execution import (
    Call,
    ExecutionItem,
    ExecutionPlan,
    FillReceipt,
    PlanOptions,
    SignedOrder,
    SkippedItem,
    Transaction,
    TxPath,
)
from orderrouter.models.order import OrderKind, normalize_address
from orderrouter.util.errors import (
    InvalidArgument,
    InvalidSignature,
    NoFillableOrders,
    Unfillable,
    UnsuccessfulExecution,
)

logger = logging.getLogger(__name__)

FORWARD_CALL = "forwardCall(address,bytes)"
ROUTER_EXECUTE = "execute((address,bytes,uint256)[])"

GroupKey = Tuple[OrderKind, str, Optional[str], str, str]


class TransactionExecutor(Protocol):
    """Sends a planned transaction and reports what it filled.

    The result carries `tx_hash`, `filled` (positions within `tx.items`),
    `skipped` ({position, reason} dicts) and `refunded`.
    Reverts raise UnsuccessfulExecution.
    """

    def send_transaction(self, tx: Transaction) -> Dict[str, Any]:
        ...


class Router:
    """Plans and executes fills across every configured exchange."""

    def __init__(
        self,
        config: RouterConfig,
        chain: Optional[ChainState] = None,
        registry: Optional[AdapterRegistry] = None,
        audit_log: Optional[str | Path] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.config = config
        self.chain = chain
        self.registry = registry or AdapterRegistry(config)
        self.audit_log = Path(audit_log) if audit_log else None
        self.run_id = run_id or str(uuid.uuid4())

    # ── Planning ─────────────────────────────────────────────────────

    def plan(
        self,
        items: Sequence[ExecutionItem],
        taker: str,
        options: Optional[PlanOptions] = None,
    ) -> ExecutionPlan:
        """Validate every item against the chain and build the transactions."""
        if self.chain is None:
            raise InvalidArgument("Planning needs a chain to check fillability against")
        if not items:
            raise InvalidArgument("Nothing to fill")
        options = options or PlanOptions()
        taker = normalize_address(taker)
        plan = ExecutionPlan(
            taker=taker,
            items=list(items),
            refund_to=options.refund_to or taker,
            revert_if_incomplete=options.revert_if_incomplete,
        )

        sender = options.relayer or taker
        kept: List[int] = []
        filled_before: Dict[int, int] = {}
        failures: List[Unfillable] = []
        for index, item in enumerate(plan.items):
            adapter = self.registry.get(item.order.kind)
            try:
                adapter.check_signature(item.order)
            except InvalidSignature as e:
                if options.revert_if_incomplete:
                    raise
                logger.warning("Skipping order %s: %s", item.order.hash, e)
                plan.skipped.append(
                    SkippedItem(index=index, order_hash=item.order.hash, reason="InvalidSignature")
                )
                continue
            try:
                adapter.check_fillability(
                    item.order,
                    self.chain,
                    item.fill_amount,
                    taker=item.taker or taker,
                    token_id=item.token_id,
                    payer=sender if item.order.request.is_native else None,
                )
            except Unfillable as e:
                logger.info("Skipping order %s: %s", item.order.hash, e)
                failures.append(e)
                plan.skipped.append(
                    SkippedItem(index=index, order_hash=item.order.hash, reason=e.reason)
                )
                continue
            kept.append(index)
            filled_before[index] = self.chain.order_status(
                adapter.exchange, item.order.hash
            ).filled

        if not kept:
            reasons = ", ".join(sorted({s.reason for s in plan.skipped}))
            raise NoFillableOrders(f"None of {len(plan.items)} orders can be filled ({reasons})")
        if failures and options.revert_if_incomplete:
            raise failures[0]

        plan.advance("Planning")
        plan.transactions = self.build_transactions(
            plan.items, kept, taker, options, filled_before
        )
        batched = any(len(tx.item_indexes) > 1 for tx in plan.transactions)
        plan.advance("Batched" if batched else "PerOrder")
        logger.info(
            "Planned %d transaction(s) for %d of %d item(s), value %d",
            len(plan.transactions),
            len(kept),
            len(plan.items),
            plan.total_value,
        )

        if self.audit_log:
            write_audit_event(
                self.audit_log,
                build_plan_event(plan, options, filled_before, self.config, self.run_id),
            )
        return plan

    def build_transactions(
        self,
        items: Sequence[ExecutionItem],
        indexes: Sequence[int],
        taker: str,
        options: PlanOptions,
        filled_before: Dict[int, int],
    ) -> List[Transaction]:
        """Deterministic transaction layout for the given fillable items."""
        groups: Dict[GroupKey, List[int]] = {}
        for index in indexes:
            item = items[index]
            request = item.order.request
            key = (
                item.order.kind,
                request.currency,
                item.trusted_channel,
                request.side,
                request.token.kind,
            )
            groups.setdefault(key, []).append(index)

        sender = options.relayer or taker
        transactions: List[Transaction] = []
        for (kind, _, channel, side, _), group in groups.items():
            adapter = self.registry.get(kind)
            if adapter.uses_router_module or adapter.batchable(side):
                batches = [group]
            else:
                batches = [[index] for index in group]

            for batch in batches:
                batch_items = [items[i] for i in batch]
                value = self._native_value(adapter, batch, items, taker, filled_before, options)
                if adapter.uses_router_module:
                    tx = self._module_tx(adapter, batch, batch_items, taker, sender, options, value)
                else:
                    before = [filled_before.get(i, 0) for i in batch]
                    path = self._choose_path(adapter, batch_items, before)
                    tx = Transaction(
                        to=adapter.exchange,
                        data=adapter.encode_fill(batch_items, path, taker, options),
                        value=value,
                        sender=sender,
                        taker=taker,
                        refund_to=options.refund_to or taker,
                        revert_if_incomplete=options.revert_if_incomplete,
                        path=path,
                        item_indexes=list(batch),
                        items=batch_items,
                    )
                if channel is not None:
                    tx = self._forward(tx, channel)
                transactions.append(tx)
        return transactions

    @staticmethod
    def _choose_path(
        adapter: BaseAdapter, batch: Sequence[ExecutionItem], filled_before: Sequence[int]
    ) -> TxPath:
        if len(batch) == 1:
            return "direct"
        if adapter.can_sweep(batch, filled_before):
            return "sweep"
        return "explicit"

    def _native_value(
        self,
        adapter: BaseAdapter,
        batch: Sequence[int],
        items: Sequence[ExecutionItem],
        taker: str,
        filled_before: Dict[int, int],
        options: PlanOptions,
    ) -> int:
        """Native currency the taker attaches: listing payments plus on-top fees."""
        total = 0
        for index in batch:
            item = items[index]
            request = item.order.request
            if not request.is_native or request.side != "listing":
                continue
            settlement = adapter.settlement(item, taker, filled_before.get(index, 0))
            total += settlement.total
        if total == 0:
            return 0
        return ceil_with_slippage(total, options.slippage_bps)

    def _module_tx(
        self,
        adapter: BaseAdapter,
        batch: List[int],
        batch_items: List[ExecutionItem],
        taker: str,
        sender: str,
        options: PlanOptions,
        value: int,
    ) -> Transaction:
        calls: List[Call] = adapter.module_calls(batch_items, taker, options, value)
        data = encode_call(
            ROUTER_EXECUTE,
            [[(call.to, hexbytes(call.data), call.value) for call in calls]],
        )
        return Transaction(
            to=self.config.router,
            data=data,
            value=value,
            sender=sender,
            taker=taker,
            refund_to=options.refund_to or taker,
            revert_if_incomplete=options.revert_if_incomplete,
            path="module",
            calls=calls,
            item_indexes=list(batch),
            items=batch_items,
        )

    @staticmethod
    def _forward(tx: Transaction, channel: str) -> Transaction:
        """Route a transaction through a trusted forwarding channel."""
        return tx.model_copy(
            update={
                "to": channel,
                "data": encode_call(FORWARD_CALL, [tx.to, hexbytes(tx.data)]),
                "path": "forward",
                "calls": [Call(to=tx.to, data=tx.data, value=tx.value)] + tx.calls,
            }
        )

    # ── Execution ────────────────────────────────────────────────────

    def execute(self, plan: ExecutionPlan, executor: TransactionExecutor) -> FillReceipt:
        """Submit each planned transaction in order.

        A revert marks the plan Reverted and re-raises UnsuccessfulExecution.
        """
        if plan.state not in ("Batched", "PerOrder"):
            raise InvalidArgument(f"Cannot execute a plan in state {plan.state}")
        plan.advance("Submitted")
        receipt = FillReceipt(state="Submitted", skipped=list(plan.skipped))

        for tx in plan.transactions:
            try:
                result = executor.send_transaction(tx)
            except UnsuccessfulExecution as e:
                plan.advance("Reverted")
                receipt.state = "Reverted"
                logger.warning("Transaction to %s reverted: %s", tx.to, e.reason)
                self._audit("TX_REVERTED", {**tx_summary(tx), "reason": e.reason})
                raise

            receipt.tx_hashes.append(result["tx_hash"])
            receipt.refunded += int(result.get("refunded", 0))
            for position in result.get("filled", []):
                receipt.filled.append(tx.item_indexes[position])
            for skipped in result.get("skipped", []):
                index = tx.item_indexes[skipped["position"]]
                receipt.skipped.append(
                    SkippedItem(
                        index=index,
                        order_hash=tx.items[skipped["position"]].order.hash,
                        reason=skipped["reason"],
                    )
                )
            self._audit(
                "TX_SUBMITTED",
                {
                    **tx_summary(tx),
                    "tx_hash": result["tx_hash"],
                    "filled": [tx.item_indexes[p] for p in result.get("filled", [])],
                },
            )

        state = "PartiallyCompleted" if receipt.skipped else "Completed"
        plan.advance(state)
        receipt.state = state
        return receipt

    def _audit(self, event_type: Any, payload: Dict[str, Any]) -> None:
        if self.audit_log:
            write_audit_event(
                self.audit_log,
                build_audit_event(
                    event_type,
                    payload,
                    config_hash=router_config_hash(self.config),
                    run_id=self.run_id,
                ),
            )

    # ── Cancellation ─────────────────────────────────────────────────

    def cancel_transaction(self, order: SignedOrder) -> Transaction:
        return self.registry.get(order.kind).cancel_tx(order)

    def bulk_cancel_transaction(self, kind: OrderKind, maker: str) -> Transaction:
        return self.registry.get(kind).bulk_cancel_tx(maker)
