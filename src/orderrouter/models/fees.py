from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

FeeSource = Literal["orderbook", "royalty", "custom", "protocol"]


class FeeLine(BaseModel):
    model_config = ConfigDict(extra="forbid")

    recipient: str
    bps: int = Field(..., ge=0, le=10_000)
    amount: int = Field(..., ge=0)
    source: FeeSource


class ComposedFees(BaseModel):
    """Ordered fee lines for one order.

    `amount` on each line is computed against `basis`: the whole order
    price for bids, the price of a single unit for listings (`per_unit`).
    """

    model_config = ConfigDict(extra="forbid")

    lines: List[FeeLine] = Field(default_factory=list)
    basis: int = Field(..., ge=0)
    per_unit: bool = False
    total_bps: int = Field(default=0, ge=0)
    total_amount: int = Field(default=0, ge=0)

    def recipients(self) -> List[str]:
        return [line.recipient for line in self.lines]

    def by_source(self, source: FeeSource) -> List[FeeLine]:
        return [line for line in self.lines if line.source == source]

    def order_total(self, line: FeeLine, quantity: int) -> int:
        """Amount a line is worth over the full order quantity."""
        return line.amount * quantity if self.per_unit else line.amount
