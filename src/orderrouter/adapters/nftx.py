"""NFTX vault adapter.

NFTX "orders" are pool quotes: the pool (maker) needs no signature, and
fills go through the router's NFTX module. Buys pay the vault's protocol
fee on top of the price; sells have it deducted from the proceeds. Each
offer is its own module call, all inside a single router transaction.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode
from eth_utils import keccak, to_hex

from orderrouter.adapters.base import BaseAdapter, FillMode, encode_call
from orderrouter.models.execution import Call, ExecutionItem, PlanOptions, SignedOrder
from orderrouter.models.fees import ComposedFees, FeeLine
from orderrouter.models.order import OrderKind, OrderRequest, Side
from orderrouter.util.errors import FeeOverflow, InvalidArgument

PROTOCOL_FEE_BPS = 50

POOL_ORDER = "(address,address,uint256[],uint256,bytes)"
FEE = "(address,uint256)"
BUY_WITH_ETH = f"buyWithETH({POOL_ORDER}[],(address,address,bool,uint256),{FEE}[])"
SELL = f"sell({POOL_ORDER}[],(address,address,bool),{FEE}[])"


class NftxAdapter(BaseAdapter):
    kind = OrderKind.NFTX
    default_fee_family = "additive"
    fees_deducted = False
    batch_sides = ("listing", "bid")
    fees_on_top_sides = ("listing", "bid")
    nft_approval_required = False
    currency_approval_required = False
    uses_router_module = True

    def deducts_fees(self, side: Side) -> bool:
        return side == "bid"

    def compose(self, request: OrderRequest) -> ComposedFees:
        fees = super().compose(request)
        amount = PROTOCOL_FEE_BPS * fees.basis // 10_000
        total_bps = fees.total_bps + PROTOCOL_FEE_BPS
        if total_bps > self.settings.max_fee_bps:
            raise FeeOverflow(total_bps, self.settings.max_fee_bps)
        line = FeeLine(
            recipient=self.exchange, bps=PROTOCOL_FEE_BPS, amount=amount, source="protocol"
        )
        return fees.model_copy(
            update={
                "lines": fees.lines + [line],
                "total_bps": total_bps,
                "total_amount": fees.total_amount + amount,
            }
        )

    def validate_request(self, request: OrderRequest, fees: ComposedFees) -> None:
        super().validate_request(request, fees)
        if not self.settings.module:
            raise InvalidArgument("NFTX fills need the router's NFTX module configured")

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        return {
            "pool": request.maker,
            "vault": self.exchange,
            "collection": request.token.contract,
            "tokenId": request.token.token_id or 0,
            "amount": request.quantity,
            "price": request.total_price,
            "currency": request.currency,
            "salt": request.salt,
        }

    def order_hash(self, order: SignedOrder) -> str:
        p = order.params
        return to_hex(
            keccak(
                encode(
                    ["string", "address", "address", "address", "uint256", "uint256", "uint256", "address", "uint256"],
                    [
                        order.request.side,
                        p["pool"],
                        p["vault"],
                        p["collection"],
                        p["tokenId"],
                        p["amount"],
                        p["price"],
                        p["currency"],
                        p["salt"],
                    ],
                )
            )
        )

    def build(
        self, request: OrderRequest, fees: Optional[ComposedFees] = None
    ) -> SignedOrder:
        """Pool quotes are authorized by the pool contract itself."""
        order = super().build(request, fees)
        return order.model_copy(update={"status": "signed"})

    def sign(self, order: SignedOrder, account: Any, now: Optional[int] = None) -> SignedOrder:
        raise InvalidArgument("NFTX pool orders are not signed")

    def check_signature(self, order: SignedOrder) -> None:
        self._require_kind(order)

    # ── Module calls ─────────────────────────────────────────────────

    def _pool_order(self, item: ExecutionItem) -> tuple:
        p = item.order.params
        return (
            p["pool"],
            p["collection"],
            [self._fill_token_id(item)] * item.fill_amount
            if item.order.request.token.kind == "erc721"
            else [self._fill_token_id(item)],
            item.order.request.unit_price * item.fill_amount,
            b"",
        )

    @staticmethod
    def _fees(items: Sequence[ExecutionItem]) -> List[tuple]:
        return [(f.recipient, f.amount) for item in items for f in item.fees_on_top]

    def encode_fill(
        self,
        items: Sequence[ExecutionItem],
        mode: FillMode,
        taker: str,
        options: PlanOptions,
        value: int = 0,
    ) -> str:
        if not items:
            raise InvalidArgument("Nothing to fill")
        for item in items:
            self._require_kind(item.order)
        taker = taker.lower()
        refund_to = options.refund_to or taker

        if items[0].order.side == "listing":
            return encode_call(
                BUY_WITH_ETH,
                [
                    [self._pool_order(item) for item in items],
                    (taker, refund_to, options.revert_if_incomplete, value),
                    self._fees(items),
                ],
            )
        if len(items) != 1:
            raise InvalidArgument("Each NFTX offer is sold through its own module call")
        return encode_call(
            SELL,
            [
                [self._pool_order(items[0])],
                (taker, refund_to, options.revert_if_incomplete),
                self._fees(items),
            ],
        )

    def module_calls(
        self,
        items: Sequence[ExecutionItem],
        taker: str,
        options: PlanOptions,
        value: int,
    ) -> List[Call]:
        """Router executions: one buy call for all listings, one sell call per offer."""
        module = self.settings.module
        if items[0].order.side == "listing":
            data = self.encode_fill(items, "module", taker, options, value)
            return [Call(to=module, data=data, value=value)]
        return [
            Call(to=module, data=self.encode_fill([item], "module", taker, options))
            for item in items
        ]

    def cancel_call(self, order: SignedOrder) -> str:
        raise InvalidArgument("NFTX pool orders cannot be cancelled")
