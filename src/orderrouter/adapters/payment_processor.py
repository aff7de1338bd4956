"""PaymentProcessor v2 / v2.1 adapter.

PaymentProcessor orders carry a single marketplace fee slot
(marketplace + marketplaceFeeNumerator), so explicit caller fees replace
the default orderbook fee instead of adding to it. Royalties go to the
fallback royalty recipient bounded by maxRoyaltyFeeNumerator.

Orders created with `useOffChainCancellation` must name a cosigner, whose
signature over the maker's signature authorizes one specific taker.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

from orderrouter.adapters.base import BaseAdapter, FillMode, encode_call, hexbytes
from orderrouter.models.execution import ExecutionItem, PlanOptions, SignedOrder
from orderrouter.models.fees import ComposedFees
from orderrouter.models.order import ZERO_ADDRESS, ZERO_HASH, OrderKind, OrderRequest
from orderrouter.util.errors import InvalidArgument, InvalidSignature, SignatureError
from orderrouter.util.hashing import (
    TypedFields,
    merkle_proof,
    merkle_root,
    recover_typed,
    sign_typed,
    split_signature,
)

ERC721_FILL_OR_KILL = 0
ERC1155_FILL_OR_KILL = 1
ERC1155_FILL_PARTIAL = 2

OFFER_TYPE_COLLECTION = 0
OFFER_TYPE_ITEM = 1
OFFER_TYPE_TOKEN_SET = 2

ORDER = (
    "(uint8,address,address,address,address,address,address,uint256,uint248,"
    "uint256,uint256,uint256,uint256,uint256,uint248,uint248)"
)
SIGNATURE = "(uint256,bytes32,bytes32)"
COSIGNATURE = "(address,address,uint256,uint256,bytes32,bytes32)"
FEE_ON_TOP = "(address,uint256)"
TOKEN_SET_PROOF = "(bytes32,bytes32[])"
SWEEP_ORDER = "(uint8,address,address,address)"
SWEEP_ITEM = "(address,address,address,uint256,uint248,uint256,uint256,uint256,uint256,uint256)"

BUY_LISTING = f"buyListing({ORDER},{SIGNATURE},{COSIGNATURE},{FEE_ON_TOP})"
ACCEPT_OFFER = (
    f"acceptOffer(uint256,{ORDER},{SIGNATURE},{TOKEN_SET_PROOF},{COSIGNATURE},{FEE_ON_TOP})"
)
BULK_BUY_LISTINGS = (
    f"bulkBuyListings({ORDER}[],{SIGNATURE}[],{COSIGNATURE}[],{FEE_ON_TOP}[])"
)
BULK_ACCEPT_OFFERS = (
    f"bulkAcceptOffers(uint256[],{ORDER}[],{SIGNATURE}[],{TOKEN_SET_PROOF}[],"
    f"{COSIGNATURE}[],{FEE_ON_TOP}[])"
)
SWEEP_COLLECTION = (
    f"sweepCollection({FEE_ON_TOP},{SWEEP_ORDER},{SWEEP_ITEM}[],{SIGNATURE}[],{COSIGNATURE}[])"
)
REVOKE_SINGLE_NONCE = "revokeSingleNonce(uint256)"
REVOKE_MASTER_NONCE = "revokeMasterNonce()"

COSIGNATURE_TYPES: Dict[str, TypedFields] = {
    "Cosignature": [
        {"name": "v", "type": "uint8"},
        {"name": "r", "type": "bytes32"},
        {"name": "s", "type": "bytes32"},
        {"name": "expiration", "type": "uint256"},
        {"name": "taker", "type": "address"},
    ]
}

_HEAD = [
    {"name": "protocol", "type": "uint8"},
    {"name": "cosigner", "type": "address"},
]
_PRICING = [
    {"name": "itemPrice", "type": "uint256"},
    {"name": "expiration", "type": "uint256"},
    {"name": "marketplaceFeeNumerator", "type": "uint256"},
]


def _fields(*names_and_types: str) -> TypedFields:
    return [
        {"name": n, "type": t}
        for n, t in (pair.split(":") for pair in names_and_types)
    ]


class PaymentProcessorV2Adapter(BaseAdapter):
    kind = OrderKind.PAYMENT_PROCESSOR_V2
    version = "2"
    default_fee_family = "replace"
    fees_deducted = True
    supports_sweep = True
    batch_sides = ("listing", "bid")
    fees_on_top_sides = ("listing", "bid")
    nonce_method = "masterNonces"
    supports_token_lists = False

    def domain(self) -> Dict[str, Any]:
        return {
            "name": "PaymentProcessor",
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.exchange,
        }

    def _fee_version_fields(self) -> TypedFields:
        return []

    def _primary_name(self, request: OrderRequest) -> str:
        if request.side == "listing":
            return "SaleApproval"
        return {
            "single": "ItemOfferApproval",
            "contract": "CollectionOfferApproval",
            "list": "TokenSetOfferApproval",
        }[request.token.scope]

    def typed_types(self, request: OrderRequest) -> Dict[str, TypedFields]:
        name = self._primary_name(request)
        nonces = _fields("nonce:uint256", "masterNonce:uint256")
        if name == "SaleApproval":
            fields = (
                _HEAD
                + _fields(
                    "seller:address",
                    "marketplace:address",
                    "fallbackRoyaltyRecipient:address",
                    "paymentMethod:address",
                    "tokenAddress:address",
                    "tokenId:uint256",
                    "amount:uint256",
                )
                + _PRICING
                + _fields("maxRoyaltyFeeNumerator:uint256")
                + nonces
            )
        else:
            fields = _HEAD + _fields(
                "buyer:address",
                "beneficiary:address",
                "marketplace:address",
                "fallbackRoyaltyRecipient:address",
                "paymentMethod:address",
                "tokenAddress:address",
            )
            if name == "ItemOfferApproval":
                fields += _fields("tokenId:uint256")
            fields += _fields("amount:uint256") + _PRICING + nonces
        fields = fields + self._fee_version_fields()
        if name == "TokenSetOfferApproval":
            fields = fields + _fields("tokenSetMerkleRoot:bytes32")
        return {name: fields}

    def typed_message(self, order: SignedOrder) -> Dict[str, Any]:
        types = self.typed_types(order.request)
        (fields,) = types.values()
        return {f["name"]: order.params[f["name"]] for f in fields}

    # ── Fee slots ────────────────────────────────────────────────────

    def validate_request(self, request: OrderRequest, fees: ComposedFees) -> None:
        if request.token.scope == "list" and not self.supports_token_lists:
            raise InvalidArgument(f"{self.kind.value} does not support token-list offers")
        if request.option("useOffChainCancellation") and request.cosigner is None:
            raise InvalidArgument("Off-chain cancellation requires a cosigner")
        if len(fees.by_source("royalty")) > 1:
            raise InvalidArgument("PaymentProcessor supports a single fallback royalty recipient")
        marketplace = [line for line in fees.lines if line.source != "royalty"]
        if len(marketplace) > 1:
            raise InvalidArgument(
                "PaymentProcessor orders have a single marketplace fee slot, "
                f"got {len(marketplace)} fees"
            )

    def _protocol(self, request: OrderRequest) -> int:
        if request.token.kind == "erc721":
            return ERC721_FILL_OR_KILL
        return ERC1155_FILL_PARTIAL if request.quantity > 1 else ERC1155_FILL_OR_KILL

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        marketplace = [line for line in fees.lines if line.source != "royalty"]
        royalties = fees.by_source("royalty")

        params: Dict[str, Any] = {
            "protocol": self._protocol(request),
            "cosigner": request.cosigner or ZERO_ADDRESS,
            "marketplace": marketplace[0].recipient if marketplace else ZERO_ADDRESS,
            "marketplaceFeeNumerator": marketplace[0].bps if marketplace else 0,
            "fallbackRoyaltyRecipient": royalties[0].recipient if royalties else ZERO_ADDRESS,
            "maxRoyaltyFeeNumerator": royalties[0].bps if royalties else 0,
            "paymentMethod": request.currency,
            "tokenAddress": request.token.contract,
            "tokenId": request.token.token_id or 0,
            "amount": request.quantity,
            "itemPrice": request.total_price,
            "expiration": request.expiration,
            "nonce": request.nonce,
            "masterNonce": request.master_nonce,
        }
        if request.side == "listing":
            params["seller"] = request.maker
        else:
            params["buyer"] = request.maker
            params["beneficiary"] = request.maker
        if request.token.scope == "list":
            params["tokenSetMerkleRoot"] = merkle_root(request.token.token_ids)
        return params

    # ── Cosigning ────────────────────────────────────────────────────

    def cosign(
        self,
        order: SignedOrder,
        account: Any,
        taker: str,
        expiration: Optional[int] = None,
    ) -> SignedOrder:
        """Authorize `taker` to fill a cosigned order."""
        self._require_kind(order)
        cosigner = order.request.cosigner
        if cosigner is None or account.address.lower() != cosigner:
            raise SignatureError(
                f"Account {account.address.lower()} is not the order's cosigner"
            )
        if not order.signature:
            raise InvalidArgument("The maker must sign before the order is cosigned")

        v, r, s = split_signature(order.signature)
        message = {
            "v": v,
            "r": r,
            "s": s,
            "expiration": expiration if expiration is not None else int(time.time()) + 300,
            "taker": taker.lower(),
        }
        signed = sign_typed(account, self.domain(), COSIGNATURE_TYPES, message)
        cosignature = {
            "signer": cosigner,
            **message,
            "signature": signed["signature"],
        }
        return order.model_copy(update={"cosignature": cosignature, "status": "cosigned"})

    def check_signature(self, order: SignedOrder) -> None:
        super().check_signature(order)
        if order.request.cosigner is None or order.cosignature is None:
            return
        cos = order.cosignature
        message = {k: cos[k] for k in ("v", "r", "s", "expiration", "taker")}
        signer = recover_typed(self.domain(), COSIGNATURE_TYPES, message, cos["signature"])
        if signer != order.request.cosigner:
            raise InvalidSignature(
                f"Cosignature signed by {signer}, expected {order.request.cosigner}"
            )

    # ── Calldata ─────────────────────────────────────────────────────

    def _order_tuple(self, item: ExecutionItem, taker: str) -> tuple:
        p = item.order.params
        listing = item.order.side == "listing"
        token_id = p["tokenId"] if item.order.request.token.scope == "single" else self._fill_token_id(item)
        return (
            p["protocol"],
            p["seller"] if listing else p["buyer"],
            taker if listing else p["beneficiary"],
            p["marketplace"],
            p["fallbackRoyaltyRecipient"],
            p["paymentMethod"],
            p["tokenAddress"],
            int(token_id),
            int(p["amount"]),
            int(p["itemPrice"]),
            int(p["nonce"]),
            int(p["expiration"]),
            int(p["marketplaceFeeNumerator"]),
            int(p["maxRoyaltyFeeNumerator"]),
            item.fill_amount,
            item.fill_amount,
        )

    @staticmethod
    def _signature_tuple(order: SignedOrder) -> tuple:
        if not order.signature:
            raise InvalidArgument(f"Order {order.hash} is not signed")
        v, r, s = split_signature(order.signature)
        return (v, hexbytes(r), hexbytes(s))

    @staticmethod
    def _cosignature_tuple(order: SignedOrder) -> tuple:
        cos = order.cosignature
        if cos is None:
            return (ZERO_ADDRESS, ZERO_ADDRESS, 0, 0, hexbytes(ZERO_HASH), hexbytes(ZERO_HASH))
        return (
            cos["signer"],
            cos["taker"],
            int(cos["expiration"]),
            int(cos["v"]),
            hexbytes(cos["r"]),
            hexbytes(cos["s"]),
        )

    @staticmethod
    def _fee_on_top_tuple(item: ExecutionItem) -> tuple:
        if len(item.fees_on_top) > 1:
            raise InvalidArgument("PaymentProcessor supports one fee on top per order")
        if not item.fees_on_top:
            return (ZERO_ADDRESS, 0)
        fee = item.fees_on_top[0]
        return (fee.recipient, fee.amount)

    def _offer_type(self, order: SignedOrder) -> int:
        return {
            "single": OFFER_TYPE_ITEM,
            "contract": OFFER_TYPE_COLLECTION,
            "list": OFFER_TYPE_TOKEN_SET,
        }[order.request.token.scope]

    def _token_set_proof(self, item: ExecutionItem) -> tuple:
        token = item.order.request.token
        if token.scope != "list":
            return (hexbytes(ZERO_HASH), [])
        token_id = self._fill_token_id(item)
        return (
            hexbytes(item.order.params["tokenSetMerkleRoot"]),
            [hexbytes(p) for p in merkle_proof(token.token_ids, token_id)],
        )

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
        sides = {item.order.side for item in items}
        if len(sides) != 1:
            raise InvalidArgument("Cannot mix listings and offers in one fill")
        taker = taker.lower()

        if mode == "sweep":
            return self._encode_sweep(items, taker)

        orders = [self._order_tuple(item, taker) for item in items]
        signatures = [self._signature_tuple(item.order) for item in items]
        cosignatures = [self._cosignature_tuple(item.order) for item in items]
        fees = [self._fee_on_top_tuple(item) for item in items]

        if sides == {"listing"}:
            if mode == "direct":
                return encode_call(
                    BUY_LISTING, [orders[0], signatures[0], cosignatures[0], fees[0]]
                )
            return encode_call(BULK_BUY_LISTINGS, [orders, signatures, cosignatures, fees])

        offer_types = [self._offer_type(item.order) for item in items]
        proofs = [self._token_set_proof(item) for item in items]
        if mode == "direct":
            return encode_call(
                ACCEPT_OFFER,
                [offer_types[0], orders[0], signatures[0], proofs[0], cosignatures[0], fees[0]],
            )
        return encode_call(
            BULK_ACCEPT_OFFERS,
            [offer_types, orders, signatures, proofs, cosignatures, fees],
        )

    def can_sweep(
        self, items: Sequence[ExecutionItem], filled_before: Sequence[int]
    ) -> bool:
        # One sweep order carries a single fill protocol for every item.
        protocols = {item.order.params["protocol"] for item in items}
        return len(protocols) == 1 and super().can_sweep(items, filled_before)

    def _encode_sweep(self, items: Sequence[ExecutionItem], taker: str) -> str:
        first = items[0].order.params
        if any(item.fees_on_top for item in items):
            raise InvalidArgument("Sweeps cannot carry fees on top")
        if any(item.fill_amount != item.order.request.quantity for item in items):
            raise InvalidArgument("Sweeps fill whole orders only")
        if any(item.order.params["protocol"] != first["protocol"] for item in items):
            raise InvalidArgument("A sweep cannot mix fill protocols")
        if any(
            item.order.params["tokenAddress"] != first["tokenAddress"]
            or item.order.params["paymentMethod"] != first["paymentMethod"]
            for item in items
        ):
            raise InvalidArgument("A sweep must target one collection and one currency")

        sweep_order = (first["protocol"], first["tokenAddress"], first["paymentMethod"], taker)
        sweep_items: List[tuple] = [
            (
                p["seller"],
                p["marketplace"],
                p["fallbackRoyaltyRecipient"],
                int(p["tokenId"]),
                int(p["amount"]),
                int(p["itemPrice"]),
                int(p["nonce"]),
                int(p["expiration"]),
                int(p["marketplaceFeeNumerator"]),
                int(p["maxRoyaltyFeeNumerator"]),
            )
            for p in (item.order.params for item in items)
        ]
        return encode_call(
            SWEEP_COLLECTION,
            [
                (ZERO_ADDRESS, 0),
                sweep_order,
                sweep_items,
                [self._signature_tuple(item.order) for item in items],
                [self._cosignature_tuple(item.order) for item in items],
            ],
        )

    def cancel_call(self, order: SignedOrder) -> str:
        return encode_call(REVOKE_SINGLE_NONCE, [int(order.params["nonce"])])

    def bulk_cancel_call(self) -> Optional[str]:
        return encode_call(REVOKE_MASTER_NONCE, [])


class PaymentProcessorV21Adapter(PaymentProcessorV2Adapter):
    """PaymentProcessor v2.1: adds protocol fee versioning and token-set offers."""

    kind = OrderKind.PAYMENT_PROCESSOR_V21
    version = "2.1"
    supports_token_lists = True

    def _fee_version_fields(self) -> TypedFields:
        return _fields("protocolFeeVersion:uint256")

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        params = super().encode_params(request, fees)
        params["protocolFeeVersion"] = int(request.option("protocolFeeVersion", 1))
        return params
