"""Element adapter.

Element orders follow the ZeroEx V4 layout with a maker-wide `hashNonce`
signed into every order (bumped by incrementHashNonce for bulk
cancellation) and listing time packed into the high bits of `expiry`.

Batch-signed ERC721 orders pack several scalars into their `data1` word:

    bits      field
    0-159     maker address
    160-191   listing time
    192-199   signature v
    200-255   start nonce
"""

from __future__ import annotations

from typing import Any, Dict, NamedTuple, Optional

from eth_utils import to_hex

from orderrouter.adapters.base import decode_call, encode_call, hexbytes, struct_abi_type
from orderrouter.adapters.zeroex_v4 import (
    FEE_FIELDS,
    PROPERTY_FIELDS,
    SIGNATURE,
    ZeroExV4Adapter,
    _COMMON,
)
from orderrouter.models.execution import ExecutionItem
from orderrouter.models.fees import ComposedFees
from orderrouter.models.order import OrderKind, OrderRequest, normalize_address
from orderrouter.util.hashing import TypedFields

MASK_8 = (1 << 8) - 1
MASK_32 = (1 << 32) - 1
MASK_160 = (1 << 160) - 1

_HASH_NONCE = [{"name": "hashNonce", "type": "uint256"}]

ELEMENT_TYPES: Dict[str, TypedFields] = {
    "NFTSellOrder": _COMMON
    + [
        {"name": "nft", "type": "address"},
        {"name": "nftId", "type": "uint256"},
    ]
    + _HASH_NONCE,
    "NFTBuyOrder": _COMMON
    + [
        {"name": "nft", "type": "address"},
        {"name": "nftId", "type": "uint256"},
        {"name": "nftProperties", "type": "Property[]"},
    ]
    + _HASH_NONCE,
    "ERC1155SellOrder": _COMMON
    + [
        {"name": "erc1155Token", "type": "address"},
        {"name": "erc1155TokenId", "type": "uint256"},
        {"name": "erc1155TokenAmount", "type": "uint128"},
    ]
    + _HASH_NONCE,
    "ERC1155BuyOrder": _COMMON
    + [
        {"name": "erc1155Token", "type": "address"},
        {"name": "erc1155TokenId", "type": "uint256"},
        {"name": "erc1155TokenProperties", "type": "Property[]"},
        {"name": "erc1155TokenAmount", "type": "uint128"},
    ]
    + _HASH_NONCE,
}


def _call_type(name: str) -> str:
    types = {name: ELEMENT_TYPES[name], "Fee": FEE_FIELDS, "Property": PROPERTY_FIELDS}
    return struct_abi_type(types, name, ("hashNonce",))


BATCH_SIGNED_PARAMETER = "(uint256,uint256,uint256,bytes32,bytes32)"

SELL_ERC721 = f"sellERC721({_call_type('NFTBuyOrder')},{SIGNATURE},uint256,bool,bytes)"
SELL_ERC1155 = (
    f"sellERC1155({_call_type('ERC1155BuyOrder')},{SIGNATURE},uint256,uint128,bool,bytes)"
)
BUY_ERC721_EX = f"buyERC721Ex({_call_type('NFTSellOrder')},{SIGNATURE},address,bytes)"
BUY_ERC1155_EX = (
    f"buyERC1155Ex({_call_type('ERC1155SellOrder')},{SIGNATURE},address,uint128,bytes)"
)
BATCH_BUY_ERC721S_EX = (
    f"batchBuyERC721sEx({_call_type('NFTSellOrder')}[],{SIGNATURE}[],address[],bytes[],bool)"
)
BATCH_BUY_ERC1155S_EX = (
    f"batchBuyERC1155sEx({_call_type('ERC1155SellOrder')}[],{SIGNATURE}[],address[],"
    "uint128[],bytes[],bool)"
)
FILL_BATCH_SIGNED_ERC721_ORDER = f"fillBatchSignedERC721Order({BATCH_SIGNED_PARAMETER},bytes)"
INCREMENT_HASH_NONCE = "incrementHashNonce()"


class BatchData1(NamedTuple):
    start_nonce: int
    v: int
    listing_time: int
    maker: str


def decode_batch_data1(data1: int) -> BatchData1:
    """Unpack the `data1` word of a batch-signed ERC721 order."""
    return BatchData1(
        start_nonce=data1 >> 200,
        v=(data1 >> 192) & MASK_8,
        listing_time=(data1 >> 160) & MASK_32,
        maker="0x" + format(data1 & MASK_160, "040x"),
    )


def encode_batch_data1(start_nonce: int, v: int, listing_time: int, maker: str) -> int:
    """Pack the `data1` word of a batch-signed ERC721 order."""
    if start_nonce >> 56:
        raise ValueError("start nonce does not fit in 56 bits")
    if v > MASK_8 or listing_time > MASK_32:
        raise ValueError("v must fit in 8 bits and listing time in 32 bits")
    return (
        (start_nonce << 200)
        | (v << 192)
        | (listing_time << 160)
        | int(normalize_address(maker), 16)
    )


def batch_signed_fill_call(
    data1: int, data2: int, data3: int, r: str, s: str, collections: bytes = b""
) -> str:
    return encode_call(
        FILL_BATCH_SIGNED_ERC721_ORDER,
        [(data1, data2, data3, hexbytes(r), hexbytes(s)), collections],
    )


def extract_order_signature(calldata: str) -> Dict[str, Any]:
    """Recover {signatureType, v, r, s} from Element fill calldata."""
    signature, args = decode_call(
        [SELL_ERC721, SELL_ERC1155, BUY_ERC721_EX, BUY_ERC1155_EX, FILL_BATCH_SIGNED_ERC721_ORDER],
        calldata,
    )
    if signature == FILL_BATCH_SIGNED_ERC721_ORDER:
        data1, _, _, r, s = args[0]
        return {
            "signatureType": 0,
            "v": decode_batch_data1(data1).v,
            "r": to_hex(r),
            "s": to_hex(s),
        }
    signature_type, v, r, s = args[1]
    return {"signatureType": signature_type, "v": v, "r": to_hex(r), "s": to_hex(s)}


class ElementAdapter(ZeroExV4Adapter):
    kind = OrderKind.ELEMENT
    nonce_method: Optional[str] = "getHashNonce"

    domain_name = "ElementEx"
    domain_version = "1.0.0"
    eip712_signature_type = 0
    order_types = ELEMENT_TYPES
    call_skip = ("hashNonce",)

    def struct_name(self, request: OrderRequest) -> str:
        side = "Sell" if request.side == "listing" else "Buy"
        return f"NFT{side}Order" if request.token.kind == "erc721" else f"ERC1155{side}Order"

    def expiry(self, request: OrderRequest) -> int:
        return (request.listing_time << 32) | request.expiration

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        params = super().encode_params(request, fees)
        params.pop("direction")
        if request.token.kind == "erc721":
            params["nft"] = params.pop("erc721Token")
            params["nftId"] = params.pop("erc721TokenId")
            params["nftProperties"] = params.pop("erc721TokenProperties")
        if request.side == "listing":
            params.pop("nftProperties", None)
            params.pop("erc1155TokenProperties", None)
        params["hashNonce"] = request.master_nonce
        return params

    def encode_buy(self, item: ExecutionItem, taker: str) -> str:
        _, order_value = self.order_abi(item.order)
        sig = self.signature_tuple(item.order)
        if item.order.request.token.kind == "erc721":
            return encode_call(BUY_ERC721_EX, [order_value, sig, taker, b""])
        return encode_call(BUY_ERC1155_EX, [order_value, sig, taker, item.fill_amount, b""])

    def encode_batch_buy(self, items, taker: str, revert_if_incomplete: bool) -> str:
        orders = [self.order_abi(item.order)[1] for item in items]
        sigs = [self.signature_tuple(item.order) for item in items]
        takers = [taker] * len(items)
        extra = [b""] * len(items)
        if items[0].order.request.token.kind == "erc721":
            return encode_call(
                BATCH_BUY_ERC721S_EX, [orders, sigs, takers, extra, revert_if_incomplete]
            )
        return encode_call(
            BATCH_BUY_ERC1155S_EX,
            [orders, sigs, takers, [item.fill_amount for item in items], extra, revert_if_incomplete],
        )

    def encode_accept_bid(self, item: ExecutionItem) -> str:
        _, order_value = self.order_abi(item.order)
        sig = self.signature_tuple(item.order)
        token_id = self._fill_token_id(item)
        if item.order.request.token.kind == "erc721":
            return encode_call(SELL_ERC721, [order_value, sig, token_id, False, b""])
        return encode_call(
            SELL_ERC1155, [order_value, sig, token_id, item.fill_amount, False, b""]
        )

    def bulk_cancel_call(self) -> Optional[str]:
        return encode_call(INCREMENT_HASH_NONCE, [])
