"""Rarible exchange adapter.

Fees are encoded as origin fees and deducted from the seller's proceeds;
the maker's payout takes the full remainder (payouts always sum to 10000).
V2 order data carries fee lists; V3 order data packs at most two origin
fees and the payout into single words, each laid out as:

    bits      field
    0-159     account
    160-255   value (bps)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import to_hex

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
from orderrouter.models.order import (
    ZERO_ADDRESS,
    OrderKind,
    OrderRequest,
    normalize_address,
)
from orderrouter.util.errors import InvalidArgument
from orderrouter.util.hashing import TypedFields, tag4

MASK_160 = (1 << 160) - 1
FULL_PAYOUT_BPS = 10_000

ETH = tag4("ETH")
ERC20 = tag4("ERC20")
ERC721 = tag4("ERC721")
ERC1155 = tag4("ERC1155")
COLLECTION = tag4("COLLECTION")

V2 = tag4("V2")
V3_SELL = tag4("V3_SELL")
V3_BUY = tag4("V3_BUY")

PART = "(address,uint96)"
DATA_V2 = f"({PART}[],{PART}[],bool)"
DATA_V3_SELL = "(uint256,uint256,uint256,uint256,bytes32)"
DATA_V3_BUY = "(uint256,uint256,uint256,bytes32)"

ORDER_TYPES: Dict[str, TypedFields] = {
    "AssetType": [
        {"name": "assetClass", "type": "bytes4"},
        {"name": "data", "type": "bytes"},
    ],
    "Asset": [
        {"name": "assetType", "type": "AssetType"},
        {"name": "value", "type": "uint256"},
    ],
    "Order": [
        {"name": "maker", "type": "address"},
        {"name": "makeAsset", "type": "Asset"},
        {"name": "taker", "type": "address"},
        {"name": "takeAsset", "type": "Asset"},
        {"name": "salt", "type": "uint256"},
        {"name": "start", "type": "uint256"},
        {"name": "end", "type": "uint256"},
        {"name": "dataType", "type": "bytes4"},
        {"name": "data", "type": "bytes"},
    ],
}

ORDER = struct_abi_type(ORDER_TYPES, "Order")
MATCH_ORDERS = f"matchOrders({ORDER},bytes,{ORDER},bytes)"
CANCEL = f"cancel({ORDER})"


def pack_part(account: str, value: int) -> int:
    """Pack an (account, bps) pair into one uint256."""
    if value >> 96:
        raise ValueError("part value does not fit in 96 bits")
    return (value << 160) | int(normalize_address(account), 16)


def unpack_part(word: int) -> Tuple[str, int]:
    return "0x" + format(word & MASK_160, "040x"), word >> 160


def _asset(asset_class: str, data: bytes, value: int) -> Dict[str, Any]:
    return {
        "assetType": {"assetClass": asset_class, "data": to_hex(data)},
        "value": value,
    }


class RaribleAdapter(BaseAdapter):
    kind = OrderKind.RARIBLE
    default_fee_family = "additive"
    fees_deducted = True

    def domain(self) -> Dict[str, Any]:
        return {
            "name": "Exchange",
            "version": "2",
            "chainId": self.chain_id,
            "verifyingContract": self.exchange,
        }

    def typed_types(self, request: OrderRequest) -> Dict[str, TypedFields]:
        return ORDER_TYPES

    def data_version(self, request: OrderRequest) -> str:
        version = request.option("raribleDataVersion", "V2")
        if version not in ("V2", "V3"):
            raise InvalidArgument(f"Unsupported Rarible order data version {version!r}")
        return version

    def validate_request(self, request: OrderRequest, fees: ComposedFees) -> None:
        super().validate_request(request, fees)
        if self.data_version(request) == "V3" and len(fees.lines) > 2:
            raise InvalidArgument(
                f"Rarible V3 orders carry at most 2 origin fees, got {len(fees.lines)}"
            )

    # ── Assets and order data ────────────────────────────────────────

    def _nft_asset(self, request: OrderRequest, token_id: Optional[int], value: int) -> Dict[str, Any]:
        token = request.token
        if token_id is None:
            return _asset(COLLECTION, encode(["address"], [token.contract]), value)
        asset_class = ERC721 if token.kind == "erc721" else ERC1155
        return _asset(asset_class, encode(["address", "uint256"], [token.contract, token_id]), value)

    def _currency_asset(self, request: OrderRequest, value: int) -> Dict[str, Any]:
        if request.is_native:
            return _asset(ETH, b"", value)
        return _asset(ERC20, encode(["address"], [request.currency]), value)

    def _order_data(
        self, request: OrderRequest, payout: str, fees: ComposedFees, sell: bool
    ) -> Tuple[str, str]:
        origin = [(line.recipient, line.bps) for line in fees.lines]
        if self.data_version(request) == "V2":
            data = encode(
                [DATA_V2],
                [([(payout, FULL_PAYOUT_BPS)], origin, sell)],
            )
            return V2, to_hex(data)

        first, second = (origin + [(ZERO_ADDRESS, 0)] * 2)[:2]
        packed = [pack_part(payout, FULL_PAYOUT_BPS), pack_part(*first), pack_part(*second)]
        marker = bytes(32)
        if sell:
            data = encode([DATA_V3_SELL], [(*packed, self.settings.max_fee_bps, marker)])
            return V3_SELL, to_hex(data)
        data = encode([DATA_V3_BUY], [(*packed, marker)])
        return V3_BUY, to_hex(data)

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        nft = self._nft_asset(request, request.token.token_id, request.quantity)
        currency = self._currency_asset(request, request.total_price)
        sell = request.side == "listing"
        data_type, data = self._order_data(request, request.maker, fees, sell)
        return {
            "maker": request.maker,
            "makeAsset": nft if sell else currency,
            "taker": ZERO_ADDRESS,
            "takeAsset": currency if sell else nft,
            "salt": request.salt,
            "start": request.listing_time,
            "end": request.expiration,
            "dataType": data_type,
            "data": data,
        }

    # ── Matching ─────────────────────────────────────────────────────

    def build_matching(
        self, order: SignedOrder, overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Right-hand order for matchOrders, made by the taker."""
        matching = super().build_matching(order, overrides)
        request = order.request
        taker = matching["taker"]
        amount = matching["amount"]
        nft = self._nft_asset(request, matching["tokenId"], amount)
        currency = self._currency_asset(request, request.unit_price * amount)
        sell = request.side == "listing"
        no_fees = ComposedFees(basis=0)
        data_type, data = self._order_data(request, taker, no_fees, not sell)
        matching["order"] = {
            "maker": taker,
            "makeAsset": currency if sell else nft,
            "taker": ZERO_ADDRESS,
            "takeAsset": nft if sell else currency,
            "salt": 0,
            "start": 0,
            "end": 0,
            "dataType": data_type,
            "data": data,
        }
        return matching

    def encode_fill(
        self,
        items: Sequence[ExecutionItem],
        mode: FillMode,
        taker: str,
        options: PlanOptions,
    ) -> str:
        if len(items) != 1:
            raise InvalidArgument("Rarible orders are filled one at a time")
        item = items[0]
        self._require_kind(item.order)
        if item.fees_on_top:
            raise InvalidArgument("Rarible does not support fees on top")
        if not item.order.signature:
            raise InvalidArgument(f"Order {item.order.hash} is not signed")

        right = self.build_matching(
            item.order,
            {"taker": taker, "tokenId": self._fill_token_id(item), "amount": item.fill_amount},
        )["order"]
        return encode_call(
            MATCH_ORDERS,
            [
                struct_abi_value(ORDER_TYPES, "Order", item.order.params),
                hexbytes(item.order.signature),
                struct_abi_value(ORDER_TYPES, "Order", right),
                b"",
            ],
        )

    def cancel_call(self, order: SignedOrder) -> str:
        return encode_call(CANCEL, [struct_abi_value(ORDER_TYPES, "Order", order.params)])


def origin_fees(order: SignedOrder) -> List[Tuple[str, int]]:
    """Decode the origin fees carried in a Rarible order's data field."""
    data = hexbytes(order.params["data"])
    data_type = order.params["dataType"]
    if data_type == V2:
        (decoded,) = decode([DATA_V2], data)
        return [(account.lower(), value) for account, value in decoded[1]]
    layout = DATA_V3_SELL if data_type == V3_SELL else DATA_V3_BUY
    (decoded,) = decode([layout], data)
    parts = [unpack_part(word) for word in decoded[1:3]]
    return [(account, value) for account, value in parts if value > 0]

