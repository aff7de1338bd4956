"""Order adapter protocol and the logic shared by every exchange adapter.

An adapter translates between the canonical OrderRequest and one
exchange's order format: typed-data signing, fee injection, fill
calldata, cancellation and the payment convention used on fill.
"""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_bytes, to_hex
from pydantic import BaseModel, ConfigDict, Field

from orderrouter.engine.fees import compose_fees, fee_shares
from orderrouter.models.config import AdapterSettings, FeeFamily, FeePolicyDefaults
from orderrouter.models.execution import (
    Call,
    ExecutionItem,
    Payment,
    PlanOptions,
    Settlement,
    SignedOrder,
    Transaction,
    TxPath,
)
from orderrouter.models.fees import ComposedFees
from orderrouter.models.order import ZERO_ADDRESS, OrderKind, OrderRequest, Side
from orderrouter.util.errors import (
    InvalidArgument,
    InvalidSignature,
    SignatureError,
    Unfillable,
)
from orderrouter.util.hashing import (
    TypedFields,
    merkle_proof,
    normalize_typed_value,
    recover_typed,
    sign_typed,
    typed_data_hash,
)

logger = logging.getLogger(__name__)

FillMode = TxPath


class OrderStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cancelled: bool = False
    filled: int = Field(default=0, ge=0)


@runtime_checkable
class ChainState(Protocol):
    """Read-only view of the chain used by fillability checks."""

    def timestamp(self) -> int:
        ...

    def balance_of(self, currency: str, owner: str) -> int:
        """ERC20 balance, or the native balance for the zero address."""
        ...

    def allowance(self, currency: str, owner: str, spender: str) -> int:
        ...

    def nft_balance(self, contract: str, owner: str, token_id: int) -> int:
        ...

    def nft_approved(self, contract: str, owner: str, operator: str) -> bool:
        ...

    def master_nonce(self, exchange: str, maker: str, method: str) -> int:
        ...

    def order_status(self, exchange: str, order_hash: str) -> OrderStatus:
        ...


@runtime_checkable
class OrderAdapter(Protocol):
    kind: OrderKind
    exchange: str
    fees_deducted: bool
    supports_sweep: bool

    @property
    def fee_family(self) -> FeeFamily:
        ...

    def batchable(self, side: Side) -> bool:
        ...

    def supports_fees_on_top(self, side: Side) -> bool:
        ...

    def can_sweep(
        self, items: Sequence[ExecutionItem], filled_before: Sequence[int]
    ) -> bool:
        ...

    def compose(self, request: OrderRequest) -> ComposedFees:
        ...

    def build(
        self, request: OrderRequest, fees: Optional[ComposedFees] = None
    ) -> SignedOrder:
        ...

    def sign(
        self, order: SignedOrder, account: Any, now: Optional[int] = None
    ) -> SignedOrder:
        ...

    def cosign(
        self,
        order: SignedOrder,
        account: Any,
        taker: str,
        expiration: Optional[int] = None,
    ) -> SignedOrder:
        ...

    def check_signature(self, order: SignedOrder) -> None:
        ...

    def check_fillability(
        self,
        order: SignedOrder,
        chain: ChainState,
        fill_amount: int = 1,
        taker: Optional[str] = None,
        token_id: Optional[int] = None,
        payer: Optional[str] = None,
    ) -> None:
        ...

    def build_matching(
        self, order: SignedOrder, overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        ...

    def encode_fill(
        self,
        items: Sequence[ExecutionItem],
        mode: FillMode,
        taker: str,
        options: PlanOptions,
    ) -> str:
        ...

    def cancel_tx(self, order: SignedOrder) -> Transaction:
        ...

    def bulk_cancel_tx(self, maker: str) -> Transaction:
        ...

    def settlement(
        self, item: ExecutionItem, taker: str, filled_before: int = 0
    ) -> Settlement:
        ...


# ── ABI helpers ───────────────────────────────────────────────────────


def split_types(signature: str) -> Tuple[str, List[str]]:
    """Split `name(t1,(t2,t3)[],t4)` into its name and top-level argument types."""
    name, _, rest = signature.partition("(")
    body = rest[:-1]
    types: List[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        current += ch
    if current:
        types.append(current)
    return name, types


def selector(signature: str) -> str:
    return to_hex(function_signature_to_4byte_selector(signature))


def encode_call(signature: str, args: Sequence[Any]) -> str:
    """ABI-encode a contract call: 4-byte selector followed by the arguments."""
    _, types = split_types(signature)
    return to_hex(
        function_signature_to_4byte_selector(signature) + encode(types, list(args))
    )


def decode_call(signatures: Sequence[str], calldata: str) -> Tuple[str, Tuple[Any, ...]]:
    """Find which of `signatures` the calldata targets and decode its arguments."""
    raw = to_bytes(hexstr=calldata)
    for signature in signatures:
        if raw[:4] == function_signature_to_4byte_selector(signature):
            _, types = split_types(signature)
            return signature, decode(types, raw[4:])
    raise InvalidArgument(f"Unsupported call with selector {to_hex(raw[:4])}")


def hexbytes(value: Optional[str]) -> bytes:
    if not value or value == "0x":
        return b""
    return to_bytes(hexstr=value)


def struct_abi_type(
    types: Dict[str, TypedFields], type_name: str, skip: Sequence[str] = ()
) -> str:
    """ABI tuple type of an EIP-712 struct, leaving out fields named in `skip`."""
    if type_name.endswith("]"):
        inner = type_name[: type_name.rindex("[")]
        return struct_abi_type(types, inner, skip) + type_name[type_name.rindex("["):]
    if type_name not in types:
        return type_name
    inner = ",".join(
        struct_abi_type(types, f["type"], skip)
        for f in types[type_name]
        if f["name"] not in skip
    )
    return f"({inner})"


def struct_abi_value(
    types: Dict[str, TypedFields],
    type_name: str,
    value: Any,
    skip: Sequence[str] = (),
) -> Any:
    """ABI value of an EIP-712 struct (nested tuples), matching struct_abi_type."""
    if type_name.endswith("]"):
        inner = type_name[: type_name.rindex("[")]
        return [struct_abi_value(types, inner, v, skip) for v in value]
    if type_name in types:
        return tuple(
            struct_abi_value(types, f["type"], value[f["name"]], skip)
            for f in types[type_name]
            if f["name"] not in skip
        )
    return normalize_typed_value(types, type_name, value)


# ── Shared adapter logic ──────────────────────────────────────────────


class BaseAdapter:
    """Behaviour common to all exchanges; subclasses supply the order format."""

    kind: OrderKind
    default_fee_family: FeeFamily = "additive"
    fees_deducted: bool = True
    supports_sweep: bool = False
    batch_sides: Tuple[Side, ...] = ()
    fees_on_top_sides: Tuple[Side, ...] = ()
    nonce_method: Optional[str] = None
    nft_approval_required: bool = True
    currency_approval_required: bool = True
    uses_router_module: bool = False

    def __init__(
        self,
        settings: AdapterSettings,
        chain_id: int,
        defaults: Optional[FeePolicyDefaults] = None,
    ) -> None:
        self.settings = settings
        self.chain_id = chain_id
        self.defaults = defaults or FeePolicyDefaults()
        self.exchange = settings.exchange

    @property
    def fee_family(self) -> FeeFamily:
        return self.settings.fee_family or self.default_fee_family

    def batchable(self, side: Side) -> bool:
        return side in self.batch_sides

    def deducts_fees(self, side: Side) -> bool:
        """Whether order fees come out of the seller's proceeds."""
        return self.fees_deducted

    def supports_fees_on_top(self, side: Side) -> bool:
        return side in self.fees_on_top_sides

    def can_sweep(
        self, items: Sequence[ExecutionItem], filled_before: Sequence[int]
    ) -> bool:
        """Sweeps take whole, unfilled listings of one collection with no fees on top."""
        if not self.supports_sweep or items[0].order.side != "listing":
            return False
        if len({item.order.request.token.contract for item in items}) != 1:
            return False
        return all(
            not item.fees_on_top
            and before == 0
            and item.fill_amount == item.order.request.quantity
            for item, before in zip(items, filled_before)
        )

    # ── Order format (override in subclasses) ────────────────────────

    def domain(self) -> Dict[str, Any]:
        raise NotImplementedError

    def typed_types(self, request: OrderRequest) -> Dict[str, TypedFields]:
        raise NotImplementedError

    def typed_message(self, order: SignedOrder) -> Dict[str, Any]:
        return order.params

    def encode_params(
        self, request: OrderRequest, fees: ComposedFees
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def validate_request(self, request: OrderRequest, fees: ComposedFees) -> None:
        if request.token.scope == "list":
            raise InvalidArgument(f"{self.kind.value} does not support token-list orders")

    def encode_fill(
        self,
        items: Sequence[ExecutionItem],
        mode: FillMode,
        taker: str,
        options: PlanOptions,
    ) -> str:
        raise NotImplementedError

    def cancel_call(self, order: SignedOrder) -> str:
        raise NotImplementedError

    def bulk_cancel_call(self) -> Optional[str]:
        return None

    def module_calls(
        self,
        items: Sequence[ExecutionItem],
        taker: str,
        options: PlanOptions,
        value: int,
    ) -> List[Call]:
        raise InvalidArgument(f"{self.kind.value} is not filled through a router module")

    # ── Building and signing ─────────────────────────────────────────

    def compose(self, request: OrderRequest) -> ComposedFees:
        return compose_fees(
            request, self.fee_family, self.defaults, self.settings.max_fee_bps
        )

    def build(
        self, request: OrderRequest, fees: Optional[ComposedFees] = None
    ) -> SignedOrder:
        """Build the unsigned exchange order for `request`."""
        if request.order_kind != self.kind:
            raise InvalidArgument(
                f"{self.kind.value} adapter cannot build a {request.order_kind.value} order"
            )
        if fees is None:
            fees = self.compose(request)
        self.validate_request(request, fees)
        params = self.encode_params(request, fees)
        order = SignedOrder(
            kind=self.kind, request=request, fees=fees, params=params, hash="0x"
        )
        order.hash = self.order_hash(order)
        logger.debug("Built %s %s order %s", self.kind.value, request.side, order.hash)
        return order

    def order_hash(self, order: SignedOrder) -> str:
        return typed_data_hash(
            self.domain(), self.typed_types(order.request), self.typed_message(order)
        )

    def sign(
        self, order: SignedOrder, account: Any, now: Optional[int] = None
    ) -> SignedOrder:
        """Sign as the maker under the exchange's EIP-712 domain."""
        self._require_kind(order)
        if account.address.lower() != order.maker:
            raise SignatureError(
                f"Signer {account.address.lower()} is not the maker {order.maker}"
            )
        now = int(time.time()) if now is None else now
        if order.request.expiration <= now:
            raise InvalidArgument(
                f"Order expired at {order.request.expiration}, cannot sign at {now}"
            )
        signed = sign_typed(
            account, self.domain(), self.typed_types(order.request), self.typed_message(order)
        )
        logger.debug("Signed %s order %s", self.kind.value, order.hash)
        return order.model_copy(
            update={"signature": signed["signature"], "status": "signed"}
        )

    def cosign(
        self,
        order: SignedOrder,
        account: Any,
        taker: str,
        expiration: Optional[int] = None,
    ) -> SignedOrder:
        raise InvalidArgument(f"{self.kind.value} orders are not cosigned")

    def check_signature(self, order: SignedOrder) -> None:
        self._require_kind(order)
        if not order.signature:
            raise InvalidSignature(f"Order {order.hash} is not signed")
        signer = recover_typed(
            self.domain(),
            self.typed_types(order.request),
            self.typed_message(order),
            order.signature,
        )
        if signer != order.maker:
            raise InvalidSignature(
                f"Recovered signer {signer} does not match maker {order.maker}"
            )

    # ── Fillability ──────────────────────────────────────────────────

    def check_fillability(
        self,
        order: SignedOrder,
        chain: ChainState,
        fill_amount: int = 1,
        taker: Optional[str] = None,
        token_id: Optional[int] = None,
        payer: Optional[str] = None,
    ) -> None:
        """Read-only checks; raises Unfillable with a reason code.

        `payer` funds a listing fill when it is not the taker, e.g. a relayer
        attaching the native value; the NFT side is always checked on `taker`.
        """
        req = order.request
        if req.expiration <= chain.timestamp():
            raise Unfillable("Expired", f"order {order.hash} expired at {req.expiration}")

        status = chain.order_status(self.exchange, order.hash)
        if status.cancelled:
            raise Unfillable("Cancelled", f"order {order.hash} was cancelled")
        remaining = req.quantity - status.filled
        if fill_amount > remaining:
            raise Unfillable(
                "Filled", f"{remaining} of {req.quantity} units remain on {order.hash}"
            )

        if self.nonce_method is not None:
            current = chain.master_nonce(self.exchange, req.maker, self.nonce_method)
            if current != req.master_nonce:
                raise Unfillable(
                    "NonceInvalid",
                    f"maker nonce is {current}, order signed with {req.master_nonce}",
                )

        item = ExecutionItem(
            order=order, fill_amount=fill_amount, taker=taker, token_id=token_id
        )
        if req.side == "listing":
            self._check_nft_holder(chain, req, req.maker, req.token.token_id, fill_amount)
            if taker is not None:
                owed = self._payer_amount(item, status.filled)
                self._check_currency(chain, req.currency, payer or taker, owed)
        else:
            owed = self._payer_amount(item, status.filled)
            self._check_currency(chain, req.currency, req.maker, owed)
            if taker is not None:
                self._check_nft_holder(
                    chain, req, taker, self._fill_token_id(item), fill_amount
                )

    def _check_nft_holder(
        self,
        chain: ChainState,
        req: OrderRequest,
        owner: str,
        token_id: Optional[int],
        amount: int,
    ) -> None:
        if token_id is None:
            raise InvalidArgument("A token id is required to check NFT ownership")
        if chain.nft_balance(req.token.contract, owner, token_id) < amount:
            raise Unfillable(
                "InsufficientBalance", f"{owner} does not hold token {token_id}"
            )
        if self.nft_approval_required and not chain.nft_approved(
            req.token.contract, owner, self.exchange
        ):
            raise Unfillable("NotApproved", f"{owner} has not approved {self.exchange}")

    def _check_currency(
        self, chain: ChainState, currency: str, owner: str, amount: int
    ) -> None:
        if chain.balance_of(currency, owner) < amount:
            raise Unfillable(
                "InsufficientBalance", f"{owner} cannot pay {amount} of {currency}"
            )
        if (
            currency != ZERO_ADDRESS
            and self.currency_approval_required
            and chain.allowance(currency, owner, self.exchange) < amount
        ):
            raise Unfillable("NotApproved", f"{owner} has not approved {amount} of {currency}")

    # ── Matching and settlement ──────────────────────────────────────

    def build_matching(
        self, order: SignedOrder, overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Counter-order data for the direct-fill path; no taker signature needed."""
        overrides = overrides or {}
        token = order.request.token
        token_id = overrides.get("tokenId", token.token_id)
        if token_id is None:
            raise InvalidArgument(
                "tokenId is required to match a contract-wide or token-list order"
            )
        token_id = int(token_id)
        matching: Dict[str, Any] = {
            "taker": overrides.get("taker", ZERO_ADDRESS).lower(),
            "tokenId": token_id,
            "amount": int(overrides.get("amount", 1)),
        }
        if token.scope == "list":
            if token_id not in token.token_ids:
                raise InvalidArgument(f"Token {token_id} is not part of the order's token set")
            matching["proof"] = merkle_proof(token.token_ids, token_id)
        return matching

    def _fill_token_id(self, item: ExecutionItem) -> int:
        token_id = item.fill_token_id
        if token_id is None:
            raise InvalidArgument(
                f"A token id is required to fill contract-wide order {item.order.hash}"
            )
        token = item.order.request.token
        if token.scope == "list" and token_id not in token.token_ids:
            raise InvalidArgument(f"Token {token_id} is not part of the order's token set")
        return token_id

    def settlement(
        self, item: ExecutionItem, taker: str, filled_before: int = 0
    ) -> Settlement:
        """Payments of one fill under this exchange's fee convention."""
        order = item.order
        req = order.request
        price = req.unit_price * item.fill_amount

        fee_payments = [
            Payment(recipient=line.recipient, amount=amount, source=line.source)
            for line, amount in fee_shares(
                order.fees, filled_before, item.fill_amount, req.quantity
            )
        ]
        fee_total = sum(p.amount for p in fee_payments)
        on_top = [
            Payment(recipient=f.recipient, amount=f.amount, source="on_top")
            for f in item.fees_on_top
        ]
        if on_top and not self.supports_fees_on_top(req.side):
            raise InvalidArgument(
                f"{self.kind.value} does not support fees on top for {req.side}s"
            )

        seller_amount = price - fee_total if self.deducts_fees(req.side) else price
        if req.side == "listing":
            payer, seller, nft_from, nft_to = taker, req.maker, req.maker, taker
        else:
            payer, seller, nft_from, nft_to = req.maker, taker, taker, req.maker
            seller_amount -= sum(p.amount for p in on_top)
        if seller_amount < 0:
            raise InvalidArgument(f"Fees exceed the proceeds of order {order.hash}")

        return Settlement(
            currency=req.currency,
            payer=payer,
            payments=[Payment(recipient=seller, amount=seller_amount, source="seller")]
            + fee_payments
            + on_top,
            nft_contract=req.token.contract,
            token_kind=req.token.kind,
            token_id=self._fill_token_id(item),
            quantity=item.fill_amount,
            nft_from=nft_from,
            nft_to=nft_to,
        )

    def _payer_amount(self, item: ExecutionItem, filled_before: int) -> int:
        """What the paying side spends on a fill, without resolving the NFT side."""
        req = item.order.request
        price = req.unit_price * item.fill_amount
        on_top = sum(f.amount for f in item.fees_on_top)
        if self.deducts_fees(req.side):
            fees = 0
        else:
            fees = sum(
                amount
                for _, amount in fee_shares(
                    item.order.fees, filled_before, item.fill_amount, req.quantity
                )
            )
        if req.side == "listing":
            return price + fees + on_top
        return price + fees

    # ── Cancellation ─────────────────────────────────────────────────

    def cancel_tx(self, order: SignedOrder) -> Transaction:
        self._require_kind(order)
        return Transaction(
            to=self.exchange,
            data=self.cancel_call(order),
            sender=order.maker,
            path="cancel",
            kind="cancel",
            items=[ExecutionItem(order=order)],
        )

    def bulk_cancel_tx(self, maker: str) -> Transaction:
        data = self.bulk_cancel_call()
        if data is None:
            raise InvalidArgument(f"{self.kind.value} has no maker-wide nonce to bump")
        return Transaction(
            to=self.exchange,
            data=data,
            sender=maker.lower(),
            path="cancel",
            kind="bulk_cancel",
        )

    def _require_kind(self, order: SignedOrder) -> None:
        if order.kind != self.kind:
            raise InvalidArgument(
                f"{self.kind.value} adapter cannot handle a {order.kind.value} order"
            )
