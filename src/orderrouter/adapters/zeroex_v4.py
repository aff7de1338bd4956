"""ZeroEx V4 NFT orders adapter.

Order fees are absolute amounts paid by the buyer on top of the price.
Contract-wide bids use token id 0 with a single property whose validator
is the zero address, and are matched with the taker's chosen token id.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from orderrouter.adapters.base import (
    BaseAdapter,
    FillMode,
    encode_call,
    hexbytes,
    struct_abi_type,
    struct_abi_value,
)
from orderrouter.models.execution import ExecutionItem, PlanOptions, SignedOrder
from orderrouter.models.fees import ComposedFees
from orderrouter.models.order import ZERO_ADDRESS, OrderKind, OrderRequest
from orderrouter.util.errors import InvalidArgument
from orderrouter.util.hashing import TypedFields, split_signature

NATIVE_TOKEN = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

SELL = 0
BUY = 1

SIGNATURE = "(uint8,uint8,bytes32,bytes32)"

FEE_FIELDS: TypedFields = [
    {"name": "recipient", "type": "address"},
    {"name": "amount", "type": "uint256"},
    {"name": "feeData", "type": "bytes"},
]
PROPERTY_FIELDS: TypedFields = [
    {"name": "propertyValidator", "type": "address"},
    {"name": "propertyData", "type": "bytes"},
]

_COMMON: TypedFields = [
    {"name": "maker", "type": "address"},
    {"name": "taker", "type": "address"},
    {"name": "expiry", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "erc20Token", "type": "address"},
    {"name": "erc20TokenAmount", "type": "uint256"},
    {"name": "fees", "type": "Fee[]"},
]

ZEROEX_TYPES: Dict[str, TypedFields] = {
    "ERC721Order": [{"name": "direction", "type": "uint8"}]
    + _COMMON
    + [
        {"name": "erc721Token", "type": "address"},
        {"name": "erc721TokenId", "type": "uint256"},
        {"name": "erc721TokenProperties", "type": "Property[]"},
    ],
    "ERC1155Order": [{"name": "direction", "type": "uint8"}]
    + _COMMON
    + [
        {"name": "erc1155Token", "type": "address"},
        {"name": "erc1155TokenId", "type": "uint256"},
        {"name": "erc1155TokenProperties", "type": "Property[]"},
        {"name": "erc1155TokenAmount", "type": "uint128"},
    ],
}


class ZeroExV4Adapter(BaseAdapter):
    kind = OrderKind.ZEROEX_V4
    default_fee_family = "additive"
    fees_deducted = False
    batch_sides = ("listing",)
    fees_on_top_sides = ()
    nonce_method: Optional[str] = None

    domain_name = "ZeroEx"
    domain_version = "1.0.0"
    eip712_signature_type = 2
    order_types = ZEROEX_TYPES
    call_skip: Sequence[str] = ()

    def domain(self) -> Dict[str, Any]:
        return {
            "name": self.domain_name,
            "version": self.domain_version,
            "chainId": self.chain_id,
            "verifyingContract": self.exchange,
        }

    def struct_name(self, request: OrderRequest) -> str:
        return "ERC721Order" if request.token.kind == "erc721" else "ERC1155Order"

    def typed_types(self, request: OrderRequest) -> Dict[str, TypedFields]:
        name = self.struct_name(request)
        fields = self.order_types[name]
        types = {name: fields, "Fee": FEE_FIELDS}
        if any(f["type"] == "Property[]" for f in fields):
            types["Property"] = PROPERTY_FIELDS
        return types

    def typed_message(self, order: SignedOrder) -> Dict[str, Any]:
        name = self.struct_name(order.request)
        return {f["name"]: order.params[f["name"]] for f in self.order_types[name]}

    # ── Params ───────────────────────────────────────────────────────

    def expiry(self, request: OrderRequest) -> int:
        return request.expiration

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        q = request.quantity
        token = request.token
        prefix = "erc721" if token.kind == "erc721" else "erc1155"
        properties: List[Dict[str, Any]] = []
        if token.scope == "contract":
            properties = [{"propertyValidator": ZERO_ADDRESS, "propertyData": "0x"}]

        params: Dict[str, Any] = {
            "direction": SELL if request.side == "listing" else BUY,
            "maker": request.maker,
            "taker": ZERO_ADDRESS,
            "expiry": self.expiry(request),
            "nonce": request.nonce,
            "erc20Token": NATIVE_TOKEN if request.is_native else request.currency,
            "erc20TokenAmount": request.total_price,
            "fees": [
                {
                    "recipient": line.recipient,
                    "amount": fees.order_total(line, q),
                    "feeData": "0x",
                }
                for line in fees.lines
            ],
            f"{prefix}Token": token.contract,
            f"{prefix}TokenId": token.token_id or 0,
            f"{prefix}TokenProperties": properties,
        }
        if token.kind == "erc1155":
            params["erc1155TokenAmount"] = q
        return params

    # ── Calldata ─────────────────────────────────────────────────────

    def order_abi(self, order: SignedOrder) -> tuple[str, Any]:
        """ABI type and value of the order struct as passed to fill calls."""
        types = self.typed_types(order.request)
        name = self.struct_name(order.request)
        message = self.typed_message(order)
        return (
            struct_abi_type(types, name, self.call_skip),
            struct_abi_value(types, name, message, self.call_skip),
        )

    def signature_tuple(self, order: SignedOrder) -> tuple:
        if not order.signature:
            raise InvalidArgument(f"Order {order.hash} is not signed")
        v, r, s = split_signature(order.signature)
        return (self.eip712_signature_type, v, hexbytes(r), hexbytes(s))

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
            if item.fees_on_top:
                raise InvalidArgument(f"{self.kind.value} does not support fees on top")
        if len({(item.order.side, item.order.request.token.kind) for item in items}) != 1:
            raise InvalidArgument("Cannot mix sides or token standards in one fill")

        taker = taker.lower()
        first = items[0].order
        if first.side == "bid":
            if len(items) != 1:
                raise InvalidArgument(f"{self.kind.value} bids are filled one at a time")
            return self.encode_accept_bid(items[0])
        if mode == "direct":
            if len(items) != 1:
                raise InvalidArgument("A direct fill takes exactly one order")
            return self.encode_buy(items[0], taker)
        return self.encode_batch_buy(items, taker, options.revert_if_incomplete)

    def encode_buy(self, item: ExecutionItem, taker: str) -> str:
        order_type, order_value = self.order_abi(item.order)
        sig = self.signature_tuple(item.order)
        if item.order.request.token.kind == "erc721":
            return encode_call(f"buyERC721({order_type},{SIGNATURE},bytes)", [order_value, sig, b""])
        return encode_call(
            f"buyERC1155({order_type},{SIGNATURE},uint128,bytes)",
            [order_value, sig, item.fill_amount, b""],
        )

    def encode_batch_buy(
        self, items: Sequence[ExecutionItem], taker: str, revert_if_incomplete: bool
    ) -> str:
        abis = [self.order_abi(item.order) for item in items]
        order_type = abis[0][0]
        orders = [value for _, value in abis]
        sigs = [self.signature_tuple(item.order) for item in items]
        callbacks = [b""] * len(items)
        if items[0].order.request.token.kind == "erc721":
            return encode_call(
                f"batchBuyERC721s({order_type}[],{SIGNATURE}[],bytes[],bool)",
                [orders, sigs, callbacks, revert_if_incomplete],
            )
        return encode_call(
            f"batchBuyERC1155s({order_type}[],{SIGNATURE}[],uint128[],bytes[],bool)",
            [orders, sigs, [item.fill_amount for item in items], callbacks, revert_if_incomplete],
        )

    def encode_accept_bid(self, item: ExecutionItem) -> str:
        order_type, order_value = self.order_abi(item.order)
        sig = self.signature_tuple(item.order)
        token_id = self._fill_token_id(item)
        if item.order.request.token.kind == "erc721":
            return encode_call(
                f"sellERC721({order_type},{SIGNATURE},uint256,bool,bytes)",
                [order_value, sig, token_id, False, b""],
            )
        return encode_call(
            f"sellERC1155({order_type},{SIGNATURE},uint256,uint128,bool,bytes)",
            [order_value, sig, token_id, item.fill_amount, False, b""],
        )

    def cancel_call(self, order: SignedOrder) -> str:
        fn = "cancelERC721Order" if order.request.token.kind == "erc721" else "cancelERC1155Order"
        return encode_call(f"{fn}(uint256)", [int(order.params["nonce"])])
