"""Seaport v1.5 / v1.6 adapter.

Fees are consideration items paid out of the price, so the seller bears
them. The default orderbook fee stays as its own consideration item even
when the caller adds fees (additive family). Fees on top of a listing are
appended as tips after the original consideration items.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from orderrouter.adapters.base import BaseAdapter, FillMode, encode_call, hexbytes
from orderrouter.models.execution import ExecutionItem, PlanOptions, SignedOrder
from orderrouter.models.fees import ComposedFees
from orderrouter.models.order import ZERO_ADDRESS, ZERO_HASH, OrderKind, OrderRequest
from orderrouter.util.errors import InvalidArgument
from orderrouter.util.hashing import TypedFields, merkle_proof, merkle_root

# Item types
NATIVE = 0
ERC20 = 1
ERC721 = 2
ERC1155 = 3
ERC721_WITH_CRITERIA = 4
ERC1155_WITH_CRITERIA = 5

# Order types
FULL_OPEN = 0
PARTIAL_OPEN = 1
FULL_RESTRICTED = 2
PARTIAL_RESTRICTED = 3

ORDER_TYPES: Dict[str, TypedFields] = {
    "OrderComponents": [
        {"name": "offerer", "type": "address"},
        {"name": "zone", "type": "address"},
        {"name": "offer", "type": "OfferItem[]"},
        {"name": "consideration", "type": "ConsiderationItem[]"},
        {"name": "orderType", "type": "uint8"},
        {"name": "startTime", "type": "uint256"},
        {"name": "endTime", "type": "uint256"},
        {"name": "zoneHash", "type": "bytes32"},
        {"name": "salt", "type": "uint256"},
        {"name": "conduitKey", "type": "bytes32"},
        {"name": "counter", "type": "uint256"},
    ],
    "OfferItem": [
        {"name": "itemType", "type": "uint8"},
        {"name": "token", "type": "address"},
        {"name": "identifierOrCriteria", "type": "uint256"},
        {"name": "startAmount", "type": "uint256"},
        {"name": "endAmount", "type": "uint256"},
    ],
    "ConsiderationItem": [
        {"name": "itemType", "type": "uint8"},
        {"name": "token", "type": "address"},
        {"name": "identifierOrCriteria", "type": "uint256"},
        {"name": "startAmount", "type": "uint256"},
        {"name": "endAmount", "type": "uint256"},
        {"name": "recipient", "type": "address"},
    ],
}

OFFER_ITEM = "(uint8,address,uint256,uint256,uint256)"
CONSIDERATION_ITEM = "(uint8,address,uint256,uint256,uint256,address)"
ORDER_PARAMETERS = (
    f"(address,address,{OFFER_ITEM}[],{CONSIDERATION_ITEM}[],"
    "uint8,uint256,uint256,bytes32,uint256,bytes32,uint256)"
)
ORDER_COMPONENTS = ORDER_PARAMETERS
ADVANCED_ORDER = f"({ORDER_PARAMETERS},uint120,uint120,bytes,bytes)"
CRITERIA_RESOLVER = "(uint256,uint8,uint256,uint256,bytes32[])"
FULFILLMENT_COMPONENT = "(uint256,uint256)"

FULFILL_ADVANCED_ORDER = (
    f"fulfillAdvancedOrder({ADVANCED_ORDER},{CRITERIA_RESOLVER}[],bytes32,address)"
)
FULFILL_AVAILABLE_ADVANCED_ORDERS = (
    f"fulfillAvailableAdvancedOrders({ADVANCED_ORDER}[],{CRITERIA_RESOLVER}[],"
    f"{FULFILLMENT_COMPONENT}[][],{FULFILLMENT_COMPONENT}[][],bytes32,address,uint256)"
)
CANCEL = f"cancel({ORDER_COMPONENTS}[])"
INCREMENT_COUNTER = "incrementCounter()"


def _item(item_type: int, token: str, identifier: int, amount: int) -> Dict[str, Any]:
    return {
        "itemType": item_type,
        "token": token,
        "identifierOrCriteria": identifier,
        "startAmount": amount,
        "endAmount": amount,
    }


class SeaportV15Adapter(BaseAdapter):
    kind = OrderKind.SEAPORT_V15
    version = "1.5"
    default_fee_family = "additive"
    fees_deducted = True
    batch_sides = ("listing", "bid")
    fees_on_top_sides = ("listing",)
    nonce_method = "getCounter"

    def domain(self) -> Dict[str, Any]:
        return {
            "name": "Seaport",
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.exchange,
        }

    def typed_types(self, request: OrderRequest) -> Dict[str, TypedFields]:
        return ORDER_TYPES

    def validate_request(self, request: OrderRequest, fees: ComposedFees) -> None:
        if request.option("useOffChainCancellation") and not self.settings.cosigner_zone:
            raise InvalidArgument(
                "Off-chain cancellation requires a cancellation zone to be configured"
            )

    # ── Order components ─────────────────────────────────────────────

    def _nft_item(self, request: OrderRequest) -> Dict[str, Any]:
        token = request.token
        erc721 = token.kind == "erc721"
        if token.scope == "single":
            return _item(ERC721 if erc721 else ERC1155, token.contract, token.token_id, request.quantity)
        criteria = int(merkle_root(token.token_ids), 16) if token.scope == "list" else 0
        return _item(
            ERC721_WITH_CRITERIA if erc721 else ERC1155_WITH_CRITERIA,
            token.contract,
            criteria,
            request.quantity,
        )

    def _currency_item(self, request: OrderRequest, amount: int) -> Dict[str, Any]:
        item_type = NATIVE if request.is_native else ERC20
        return _item(item_type, request.currency, 0, amount)

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        q = request.quantity
        fee_items = [
            {
                **self._currency_item(request, fees.order_total(line, q)),
                "recipient": line.recipient,
            }
            for line in fees.lines
        ]
        fee_total = sum(fees.order_total(line, q) for line in fees.lines)

        if request.side == "listing":
            offer = [self._nft_item(request)]
            proceeds = request.total_price - fee_total
            consideration = [
                {**self._currency_item(request, proceeds), "recipient": request.maker}
            ] + fee_items
        else:
            offer = [self._currency_item(request, request.total_price)]
            consideration = [
                {**self._nft_item(request), "recipient": request.maker}
            ] + fee_items

        zone = ZERO_ADDRESS
        order_type = PARTIAL_OPEN if q > 1 else FULL_OPEN
        if request.option("useOffChainCancellation"):
            zone = self.settings.cosigner_zone
            order_type += 2

        return {
            "offerer": request.maker,
            "zone": zone,
            "offer": offer,
            "consideration": consideration,
            "orderType": order_type,
            "startTime": request.listing_time,
            "endTime": request.expiration,
            "zoneHash": ZERO_HASH,
            "salt": request.salt,
            "conduitKey": self.settings.conduit_key,
            "counter": request.master_nonce,
        }

    # ── Calldata ─────────────────────────────────────────────────────

    @staticmethod
    def _offer_tuple(item: Dict[str, Any]) -> tuple:
        return (
            item["itemType"],
            item["token"],
            int(item["identifierOrCriteria"]),
            int(item["startAmount"]),
            int(item["endAmount"]),
        )

    def _consideration_tuple(self, item: Dict[str, Any]) -> tuple:
        return self._offer_tuple(item) + (item["recipient"],)

    def _parameters(
        self, params: Dict[str, Any], tips: Sequence[Dict[str, Any]] = (), counter: Optional[int] = None
    ) -> tuple:
        consideration = [self._consideration_tuple(c) for c in params["consideration"]]
        tail = (
            params["orderType"],
            int(params["startTime"]),
            int(params["endTime"]),
            hexbytes(params["zoneHash"]),
            int(params["salt"]),
            hexbytes(params["conduitKey"]),
            int(params["counter"]) if counter is not None else len(params["consideration"]),
        )
        return (
            params["offerer"],
            params["zone"],
            [self._offer_tuple(o) for o in params["offer"]],
            consideration + [self._consideration_tuple(t) for t in tips],
        ) + tail

    def _tips(self, item: ExecutionItem) -> List[Dict[str, Any]]:
        request = item.order.request
        return [
            {**self._currency_item(request, fee.amount), "recipient": fee.recipient}
            for fee in item.fees_on_top
        ]

    def _advanced_order(self, item: ExecutionItem) -> tuple:
        order = item.order
        if item.fees_on_top and not self.supports_fees_on_top(order.side):
            raise InvalidArgument("Seaport only supports fees on top of listings")
        return (
            self._parameters(order.params, self._tips(item)),
            item.fill_amount,
            order.request.quantity,
            hexbytes(order.signature),
            b"",
        )

    def _criteria_resolvers(self, items: Sequence[ExecutionItem]) -> List[tuple]:
        resolvers = []
        for index, item in enumerate(items):
            token = item.order.request.token
            if item.order.side != "bid" or token.scope == "single":
                continue
            token_id = self._fill_token_id(item)
            proof = merkle_proof(token.token_ids, token_id) if token.scope == "list" else []
            resolvers.append((index, 1, 0, token_id, [hexbytes(p) for p in proof]))
        return resolvers

    def encode_fill(
        self,
        items: Sequence[ExecutionItem],
        mode: FillMode,
        taker: str,
        options: PlanOptions,
    ) -> str:
        if not items:
            raise InvalidArgument("Nothing to fill")
        for item in items:
            self._require_kind(item.order)

        advanced = [self._advanced_order(item) for item in items]
        resolvers = self._criteria_resolvers(items)
        recipient = taker.lower()

        if mode == "direct":
            if len(items) != 1:
                raise InvalidArgument("A direct fill takes exactly one order")
            return encode_call(
                FULFILL_ADVANCED_ORDER,
                [advanced[0], resolvers, hexbytes(ZERO_HASH), recipient],
            )

        offer_fulfillments = [
            [(i, j)] for i, item in enumerate(items) for j in range(len(item.order.params["offer"]))
        ]
        consideration_fulfillments = [
            [(i, j)]
            for i, item in enumerate(items)
            for j in range(len(item.order.params["consideration"]) + len(item.fees_on_top))
        ]
        return encode_call(
            FULFILL_AVAILABLE_ADVANCED_ORDERS,
            [
                advanced,
                resolvers,
                offer_fulfillments,
                consideration_fulfillments,
                hexbytes(ZERO_HASH),
                recipient,
                len(items),
            ],
        )

    def cancel_call(self, order: SignedOrder) -> str:
        params = order.params
        return encode_call(
            CANCEL, [[self._parameters(params, counter=int(params["counter"]))]]
        )

    def bulk_cancel_call(self) -> Optional[str]:
        return encode_call(INCREMENT_COUNTER, [])


class SeaportV16Adapter(SeaportV15Adapter):
    kind = OrderKind.SEAPORT_V16
    version = "1.6"
