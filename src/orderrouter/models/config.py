from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderrouter.models.order import OrderKind, ZERO_ADDRESS, ZERO_HASH, normalize_address

FeeFamily = Literal["replace", "additive"]

DEFAULT_ORDERBOOK_FEE_RECIPIENT = "0xf3d63166f0ca56c3c1a3508fce03ff0cf3fb691e"
DEFAULT_ORDERBOOK_FEE_BPS = 50


class FeePolicyDefaults(BaseModel):
    """The protocol's own orderbook fee, injected into the fee composer."""

    model_config = ConfigDict(extra="forbid")

    recipient: str = Field(default=DEFAULT_ORDERBOOK_FEE_RECIPIENT)
    bps: int = Field(default=DEFAULT_ORDERBOOK_FEE_BPS, ge=0, le=10_000)
    orderbook: str = Field(default="reservoir")

    @field_validator("recipient")
    @classmethod
    def recipient_is_address(cls, v: str) -> str:
        return normalize_address(v)


class AdapterSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exchange: str
    module: Optional[str] = None
    max_fee_bps: int = Field(default=10_000, ge=0, le=10_000)
    fee_family: Optional[FeeFamily] = None
    cosigner_zone: Optional[str] = None
    conduit_key: str = Field(default=ZERO_HASH)

    @field_validator("exchange", "module", "cosigner_zone")
    @classmethod
    def addresses(cls, v: Optional[str]) -> Optional[str]:
        return normalize_address(v) if v is not None else None


class RouterConfig(BaseModel):
    """Router configuration v0.1: chain, router address, fee defaults, adapters."""

    model_config = ConfigDict(extra="forbid")

    version: Literal["0.1"] = Field(default="0.1")
    chain_id: int = Field(..., ge=1)
    router: str = Field(default=ZERO_ADDRESS)
    fee_defaults: FeePolicyDefaults = Field(default_factory=FeePolicyDefaults)
    adapters: Dict[OrderKind, AdapterSettings] = Field(default_factory=dict)

    @field_validator("router")
    @classmethod
    def router_is_address(cls, v: str) -> str:
        return normalize_address(v)
