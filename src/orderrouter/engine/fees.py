"""Fee composition: orderbook fee, royalties and caller fees into fee lines.

Two fee families exist and are kept distinct per exchange:
  - replace:  explicit caller fees drop the default orderbook fee.
  - additive: the default orderbook fee stays as the first line.
Orders routed to a foreign orderbook never carry the default fee.
"""

from __future__ import annotations

from typing import List, Tuple

from orderrouter.models.config import FeeFamily, FeePolicyDefaults
from orderrouter.models.fees import ComposedFees, FeeLine, FeeSource
from orderrouter.models.order import FeePolicy, OrderRequest
from orderrouter.util.errors import FeeOverflow

BPS_DENOMINATOR = 10_000


def fee_basis(request: OrderRequest) -> int:
    """Bids pay fees on the whole order; listings on each unit."""
    if request.side == "bid":
        return request.unit_price * request.quantity
    return request.unit_price


def is_own_orderbook(request: OrderRequest, defaults: FeePolicyDefaults) -> bool:
    return request.orderbook is None or request.orderbook == defaults.orderbook


def fee_policies(
    request: OrderRequest, family: FeeFamily, defaults: FeePolicyDefaults
) -> List[Tuple[FeePolicy, FeeSource]]:
    """Ordered (policy, source) pairs before amounts are applied."""
    policies: List[Tuple[FeePolicy, FeeSource]] = []

    if is_own_orderbook(request, defaults) and defaults.bps > 0:
        if family == "additive" or not request.fee_policies:
            policies.append(
                (FeePolicy(recipient=defaults.recipient, bps=defaults.bps), "orderbook")
            )

    policies.extend((p, "royalty") for p in request.royalties)
    policies.extend((p, "custom") for p in request.fee_policies)
    return policies


def compose_fees(
    request: OrderRequest,
    family: FeeFamily,
    defaults: FeePolicyDefaults,
    max_fee_bps: int = BPS_DENOMINATOR,
) -> ComposedFees:
    """Compute the final ordered fee lines of an order.

    Each amount is floor(bps * basis / 10000), in policy order.
    Raises FeeOverflow when the summed bps exceed `max_fee_bps`.
    """
    basis = fee_basis(request)
    policies = fee_policies(request, family, defaults)

    total_bps = sum(p.bps for p, _ in policies)
    if total_bps > max_fee_bps:
        raise FeeOverflow(total_bps, max_fee_bps)

    lines = [
        FeeLine(
            recipient=p.recipient,
            bps=p.bps,
            amount=p.bps * basis // BPS_DENOMINATOR,
            source=source,
        )
        for p, source in policies
    ]
    return ComposedFees(
        lines=lines,
        basis=basis,
        per_unit=request.side == "listing",
        total_bps=total_bps,
        total_amount=sum(line.amount for line in lines),
    )


def prorate(total: int, filled_before: int, fill_amount: int, quantity: int) -> int:
    """Floor-rounded share of `total` owed for filling `fill_amount` more units.

    Shares are taken from the cumulative fill, so any sequence of partial
    fills adds up to exactly `total` once the order is complete.
    """
    if fill_amount < 1 or filled_before < 0:
        raise ValueError("fill_amount must be >= 1 and filled_before >= 0")
    if filled_before + fill_amount > quantity:
        raise ValueError(
            f"Cannot fill {fill_amount} of {quantity}: {filled_before} already filled"
        )
    filled_after = filled_before + fill_amount
    return total * filled_after // quantity - total * filled_before // quantity


def fee_shares(
    fees: ComposedFees, filled_before: int, fill_amount: int, quantity: int
) -> List[Tuple[FeeLine, int]]:
    """Amount each fee line receives for one (possibly partial) fill."""
    shares = []
    for line in fees.lines:
        if fees.per_unit:
            amount = line.amount * fill_amount
        else:
            amount = prorate(line.amount, filled_before, fill_amount, quantity)
        shares.append((line, amount))
    return shares


def ceil_with_slippage(amount: int, slippage_bps: int) -> int:
    """Round `amount` up after adding a slippage allowance."""
    scaled = amount * (BPS_DENOMINATOR + slippage_bps)
    return -(-scaled // BPS_DENOMINATOR)
