from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderrouter.models.fees import ComposedFees
from orderrouter.models.order import (
    FeeAmount,
    OrderKind,
    OrderRequest,
    TokenKind,
    normalize_address,
)

OrderState = Literal["unsigned", "signed", "cosigned"]
TxPath = Literal["direct", "sweep", "explicit", "forward", "module", "cancel"]
TxKind = Literal["fill", "cancel", "bulk_cancel"]
PlanState = Literal[
    "Validating",
    "Planning",
    "Batched",
    "PerOrder",
    "Submitted",
    "Completed",
    "PartiallyCompleted",
    "Reverted",
]
PaymentSource = Literal[
    "seller", "orderbook", "royalty", "custom", "protocol", "on_top"
]


class SignedOrder(BaseModel):
    """An order in one exchange's native format, plus its signatures.

    `params` holds the exchange-encoded fields (ints and 0x-hex strings).
    `hash` is the EIP-712 digest, which doubles as the order id.
    """

    model_config = ConfigDict(extra="forbid")

    kind: OrderKind
    request: OrderRequest
    fees: ComposedFees
    params: Dict[str, Any]
    hash: str
    signature: Optional[str] = None
    cosignature: Optional[Dict[str, Any]] = None
    status: OrderState = "unsigned"

    @property
    def maker(self) -> str:
        return self.request.maker

    @property
    def side(self) -> str:
        return self.request.side


class ExecutionItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    order: SignedOrder
    fill_amount: int = Field(default=1, ge=1)
    taker: Optional[str] = None
    token_id: Optional[int] = Field(default=None, ge=0)
    fees_on_top: List[FeeAmount] = Field(default_factory=list)
    trusted_channel: Optional[str] = None

    @field_validator("taker", "trusted_channel")
    @classmethod
    def addresses(cls, v: Optional[str]) -> Optional[str]:
        return normalize_address(v) if v is not None else None

    @property
    def fill_token_id(self) -> Optional[int]:
        """Token actually exchanged: the order's own, or the one chosen by the taker."""
        if self.order.request.token.token_id is not None:
            return self.order.request.token.token_id
        return self.token_id


class Call(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str
    data: str
    value: int = Field(default=0, ge=0)


class Transaction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str
    data: str
    value: int = Field(default=0, ge=0)
    sender: str
    taker: Optional[str] = None
    refund_to: Optional[str] = None
    revert_if_incomplete: bool = True
    path: TxPath
    kind: TxKind = "fill"
    calls: List[Call] = Field(default_factory=list)
    item_indexes: List[int] = Field(default_factory=list)
    items: List[ExecutionItem] = Field(default_factory=list)

    def to_rpc(self) -> Dict[str, Any]:
        return {
            "from": self.sender,
            "to": self.to,
            "data": self.data,
            "value": self.value,
        }


class SkippedItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int
    order_hash: str
    reason: str


class PlanOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    revert_if_incomplete: bool = False
    refund_to: Optional[str] = None
    relayer: Optional[str] = None
    slippage_bps: int = Field(default=0, ge=0, le=10_000)

    @field_validator("refund_to", "relayer")
    @classmethod
    def addresses(cls, v: Optional[str]) -> Optional[str]:
        return normalize_address(v) if v is not None else None


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    taker: str
    items: List[ExecutionItem] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    state: PlanState = "Validating"
    history: List[PlanState] = Field(default_factory=lambda: ["Validating"])
    refund_to: str
    revert_if_incomplete: bool = False
    skipped: List[SkippedItem] = Field(default_factory=list)

    def advance(self, state: PlanState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def total_value(self) -> int:
        return sum(tx.value for tx in self.transactions)


class Payment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    recipient: str
    amount: int = Field(..., ge=0)
    source: PaymentSource


class Settlement(BaseModel):
    """Value movements of one fill, as the exchange contract would perform them."""

    model_config = ConfigDict(extra="forbid")

    currency: str
    payer: str
    payments: List[Payment] = Field(default_factory=list)
    nft_contract: str
    token_kind: TokenKind
    token_id: int
    quantity: int = Field(..., ge=1)
    nft_from: str
    nft_to: str

    @property
    def total(self) -> int:
        return sum(p.amount for p in self.payments)

    def paid_to(self, recipient: str) -> int:
        return sum(p.amount for p in self.payments if p.recipient == recipient)


class FillReceipt(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state: PlanState
    tx_hashes: List[str] = Field(default_factory=list)
    filled: List[int] = Field(default_factory=list)
    skipped: List[SkippedItem] = Field(default_factory=list)
    refunded: int = 0
