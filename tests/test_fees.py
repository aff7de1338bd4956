"""Fee composition: families, orderbooks, royalties, overflow and proration."""

from __future__ import annotations

import pytest

from orderrouter.engine.fees import (
    ceil_with_slippage,
    compose_fees,
    fee_shares,
    prorate,
)
from orderrouter.models.config import FeePolicyDefaults
from orderrouter.models.order import FeePolicy, OrderRequest, TokenRef
from orderrouter.util.errors import FeeOverflow

MAKER = "0x00000000000000000000000000000000000000a1"
COLLECTION = "0x00000000000000000000000000000000000000c1"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
DEFAULT_RECIPIENT = "0xf3d63166f0ca56c3c1a3508fce03ff0cf3fb691e"
CUSTOM = "0x00000000000000000000000000000000000000f1"
ROYALTY = "0x00000000000000000000000000000000000000f2"


def _make_request(**overrides) -> OrderRequest:
    fields = dict(
        order_kind="payment-processor-v2",
        side="listing",
        maker=MAKER,
        token={"contract": COLLECTION, "token_id": 1},
        unit_price=10**18,
        expiration=2_000_000_000,
    )
    fields.update(overrides)
    return OrderRequest.model_validate(fields)


DEFAULTS = FeePolicyDefaults()


# ── Default fee rule ──────────────────────────────────────────────────


def test_default_fee_applies_without_explicit_fees():
    fees = compose_fees(_make_request(), "replace", DEFAULTS)
    assert len(fees.lines) == 1
    line = fees.lines[0]
    assert line.recipient == DEFAULT_RECIPIENT
    assert line.bps == 50
    assert line.amount == 5 * 10**15
    assert line.source == "orderbook"


def test_replace_family_drops_default_when_fees_given():
    req = _make_request(fee_policies=[{"recipient": CUSTOM, "bps": 100}])
    fees = compose_fees(req, "replace", DEFAULTS)
    assert fees.recipients() == [CUSTOM]
    assert fees.total_bps == 100


def test_additive_family_keeps_default_first():
    req = _make_request(fee_policies=[{"recipient": CUSTOM, "bps": 100}])
    fees = compose_fees(req, "additive", DEFAULTS)
    assert fees.recipients() == [DEFAULT_RECIPIENT, CUSTOM]
    assert fees.total_bps == 150


def test_foreign_orderbook_never_gets_default_fee():
    req = _make_request(orderbook="opensea")
    assert compose_fees(req, "additive", DEFAULTS).lines == []
    assert compose_fees(req, "replace", DEFAULTS).lines == []


def test_explicit_own_orderbook_name_counts_as_own():
    req = _make_request(orderbook="reservoir")
    fees = compose_fees(req, "replace", DEFAULTS)
    assert fees.recipients() == [DEFAULT_RECIPIENT]


def test_royalties_follow_orderbook_fee_then_custom():
    req = _make_request(
        royalties=[{"recipient": ROYALTY, "bps": 250}],
        fee_policies=[{"recipient": CUSTOM, "bps": 100}],
    )
    fees = compose_fees(req, "additive", DEFAULTS)
    assert [line.source for line in fees.lines] == ["orderbook", "royalty", "custom"]
    assert fees.recipients() == [DEFAULT_RECIPIENT, ROYALTY, CUSTOM]


def test_zero_bps_default_is_omitted():
    defaults = FeePolicyDefaults(bps=0)
    assert compose_fees(_make_request(), "additive", defaults).lines == []


# ── Basis and rounding ───────────────────────────────────────────────


def test_bid_basis_is_whole_order():
    req = _make_request(
        side="bid",
        currency=WETH,
        token={"contract": COLLECTION, "kind": "erc1155", "token_id": 7},
        quantity=3,
        unit_price=1000,
    )
    fees = compose_fees(req, "replace", DEFAULTS)
    assert fees.basis == 3000
    assert not fees.per_unit
    assert fees.lines[0].amount == 15


def test_listing_basis_is_per_unit():
    req = _make_request(
        token={"contract": COLLECTION, "kind": "erc1155", "token_id": 7},
        quantity=3,
        unit_price=1000,
    )
    fees = compose_fees(req, "replace", DEFAULTS)
    assert fees.basis == 1000
    assert fees.per_unit
    assert fees.lines[0].amount == 5
    assert fees.order_total(fees.lines[0], 3) == 15


def test_amounts_are_floored():
    req = _make_request(unit_price=999, fee_policies=[{"recipient": CUSTOM, "bps": 33}])
    fees = compose_fees(req, "replace", DEFAULTS)
    assert fees.lines[0].amount == 999 * 33 // 10_000 == 3


# ── Overflow ──────────────────────────────────────────────────────────


def test_overflow_raises_with_totals():
    req = _make_request(
        fee_policies=[{"recipient": CUSTOM, "bps": 600}],
        royalties=[{"recipient": ROYALTY, "bps": 500}],
    )
    with pytest.raises(FeeOverflow) as exc:
        compose_fees(req, "additive", DEFAULTS, max_fee_bps=1000)
    assert exc.value.total_bps == 1150
    assert exc.value.max_bps == 1000


def test_fees_at_the_maximum_are_accepted():
    req = _make_request(fee_policies=[{"recipient": CUSTOM, "bps": 950}])
    fees = compose_fees(req, "additive", DEFAULTS, max_fee_bps=1000)
    assert fees.total_bps == 1000


# ── Proration ─────────────────────────────────────────────────────────


def test_prorate_partial_fills_sum_to_total():
    total = 100
    parts = [prorate(total, 0, 1, 3), prorate(total, 1, 1, 3), prorate(total, 2, 1, 3)]
    assert parts == [33, 33, 34]
    assert sum(parts) == total


def test_prorate_full_fill_is_total():
    assert prorate(15, 0, 3, 3) == 15


@pytest.mark.parametrize("filled_before,fill_amount", [(0, 0), (-1, 1), (2, 2)])
def test_prorate_rejects_invalid_fills(filled_before, fill_amount):
    with pytest.raises(ValueError):
        prorate(100, filled_before, fill_amount, 3)


def test_fee_shares_per_unit_and_whole_order():
    listing = _make_request(
        token={"contract": COLLECTION, "kind": "erc1155", "token_id": 7},
        quantity=4,
        unit_price=10_000,
    )
    fees = compose_fees(listing, "replace", DEFAULTS)
    ((_, amount),) = fee_shares(fees, 1, 2, 4)
    assert amount == 50 * 2

    bid = _make_request(
        side="bid",
        currency=WETH,
        token={"contract": COLLECTION, "kind": "erc1155", "token_id": 7},
        quantity=3,
        unit_price=1000,
    )
    fees = compose_fees(bid, "replace", DEFAULTS)
    shares = [fee_shares(fees, i, 1, 3)[0][1] for i in range(3)]
    assert sum(shares) == fees.lines[0].amount


def test_ceil_with_slippage_rounds_up():
    assert ceil_with_slippage(1000, 0) == 1000
    assert ceil_with_slippage(1001, 50) == 1007
    assert ceil_with_slippage(10**18, 100) == 101 * 10**16


def test_fee_policy_parse():
    fee = FeePolicy.parse(f"{CUSTOM}:100")
    assert fee.recipient == CUSTOM
    assert fee.bps == 100
    with pytest.raises(ValueError):
        FeePolicy.parse(CUSTOM)


def test_token_ref_parse():
    token = TokenRef.parse(f"{COLLECTION.upper().replace('0X', '0x')}:12")
    assert (token.contract, token.token_id, token.scope) == (COLLECTION, 12, "single")

    collection = TokenRef.parse(COLLECTION, kind="erc1155")
    assert collection.kind == "erc1155"
    assert collection.scope == "contract"
