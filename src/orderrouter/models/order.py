from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from eth_utils import is_address
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "00" * 32

Side = Literal["bid", "listing"]
TokenKind = Literal["erc721", "erc1155"]


class OrderKind(str, Enum):
    SEAPORT_V15 = "seaport-v1.5"
    SEAPORT_V16 = "seaport-v1.6"
    PAYMENT_PROCESSOR_V2 = "payment-processor-v2"
    PAYMENT_PROCESSOR_V21 = "payment-processor-v2.0.1"
    ELEMENT = "element"
    RARIBLE = "rarible"
    ZEROEX_V4 = "zeroex-v4"
    NFTX = "nftx"


def normalize_address(v: str) -> str:
    if not isinstance(v, str) or not is_address(v):
        raise ValueError(f"Invalid address: {v!r}")
    return v.lower()


class TokenRef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    contract: str
    kind: TokenKind = "erc721"
    token_id: Optional[int] = Field(default=None, ge=0)
    token_ids: Optional[List[int]] = None

    @field_validator("contract")
    @classmethod
    def contract_is_address(cls, v: str) -> str:
        return normalize_address(v)

    @model_validator(mode="after")
    def single_or_list(self) -> "TokenRef":
        if self.token_id is not None and self.token_ids is not None:
            raise ValueError("token_id and token_ids are mutually exclusive")
        if self.token_ids is not None and not self.token_ids:
            raise ValueError("token_ids must not be empty")
        return self

    @property
    def scope(self) -> Literal["single", "list", "contract"]:
        if self.token_id is not None:
            return "single"
        if self.token_ids is not None:
            return "list"
        return "contract"

    @classmethod
    def parse(cls, raw: str, kind: TokenKind = "erc721") -> "TokenRef":
        """Parse the indexer's `contract:tokenId` (or bare `contract`) form."""
        contract, _, token_id = raw.partition(":")
        return cls(
            contract=contract,
            kind=kind,
            token_id=int(token_id) if token_id else None,
        )


class FeePolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    recipient: str
    bps: int = Field(..., ge=0, le=10_000)

    @field_validator("recipient")
    @classmethod
    def recipient_is_address(cls, v: str) -> str:
        return normalize_address(v)

    @classmethod
    def parse(cls, raw: str) -> "FeePolicy":
        """Parse the indexer's `recipient:bps` form."""
        recipient, sep, bps = raw.rpartition(":")
        if not sep:
            raise ValueError(f"Fee must look like 'recipient:bps', got {raw!r}")
        return cls(recipient=recipient, bps=int(bps))


class FeeAmount(BaseModel):
    """An absolute fee paid on top of a fill (router `fees` argument)."""

    model_config = ConfigDict(extra="forbid")

    recipient: str
    amount: int = Field(..., ge=0)

    @field_validator("recipient")
    @classmethod
    def recipient_is_address(cls, v: str) -> str:
        return normalize_address(v)


class OrderRequest(BaseModel):
    """Adapter-agnostic intent to buy (bid) or sell (listing) tokens."""

    model_config = ConfigDict(extra="forbid")

    order_kind: OrderKind
    side: Side
    maker: str
    token: TokenRef
    quantity: int = Field(default=1, ge=1)
    currency: str = ZERO_ADDRESS
    unit_price: int = Field(..., gt=0)
    expiration: int = Field(..., gt=0)
    fee_policies: List[FeePolicy] = Field(default_factory=list)
    royalties: List[FeePolicy] = Field(default_factory=list)
    orderbook: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    cosigner: Optional[str] = None
    nonce: int = Field(default=0, ge=0)
    master_nonce: int = Field(default=0, ge=0)
    salt: int = Field(default=0, ge=0)
    listing_time: int = Field(default=0, ge=0)

    @field_validator("maker", "currency")
    @classmethod
    def must_be_address(cls, v: str) -> str:
        return normalize_address(v)

    @field_validator("cosigner")
    @classmethod
    def cosigner_is_address(cls, v: Optional[str]) -> Optional[str]:
        return normalize_address(v) if v is not None else None

    @model_validator(mode="after")
    def check_shape(self) -> "OrderRequest":
        if self.side == "bid" and self.currency == ZERO_ADDRESS:
            raise ValueError("bids must be denominated in an ERC20 currency")
        if (
            self.token.kind == "erc721"
            and self.token.scope == "single"
            and self.quantity != 1
        ):
            raise ValueError("single-token erc721 orders must have quantity 1")
        if self.side == "listing" and self.token.scope != "single":
            raise ValueError("listings must target a single token")
        return self

    @property
    def is_native(self) -> bool:
        return self.currency == ZERO_ADDRESS

    @property
    def total_price(self) -> int:
        return self.unit_price * self.quantity

    def option(self, name: str, default: Any = None) -> Any:
        """Look up an adapter flag, either flat or namespaced by order kind."""
        scoped = self.options.get(self.order_kind.value)
        if isinstance(scoped, dict) and name in scoped:
            return scoped[name]
        return self.options.get(name, default)
