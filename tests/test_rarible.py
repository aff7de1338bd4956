"""Rarible adapter: origin fees, V2/V3 order data and matchOrders."""

from __future__ import annotations

import pytest
from eth_abi import decode

from orderrouter.adapters.base import decode_call, hexbytes
from orderrouter.adapters.rarible import (
    COLLECTION as COLLECTION_CLASS,
    DATA_V2,
    ERC20,
    ERC721,
    ETH,
    MATCH_ORDERS,
    V2,
    V3_BUY,
    V3_SELL,
    origin_fees,
    pack_part,
    unpack_part,
)
from orderrouter.models.execution import ExecutionItem, PlanOptions
from orderrouter.util.errors import FeeOverflow, InvalidArgument

COLLECTION = "0x00000000000000000000000000000000000000c1"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
DEFAULT_RECIPIENT = "0xf3d63166f0ca56c3c1a3508fce03ff0cf3fb691e"
CUSTOM = "0x00000000000000000000000000000000000000f1"
ROYALTY = "0x00000000000000000000000000000000000000f2"


def test_listing_assets(make_order, alice):
    order = make_order("rarible", alice, sign=False)
    p = order.params
    assert p["makeAsset"]["assetType"]["assetClass"] == ERC721
    assert p["makeAsset"]["value"] == 1
    assert p["takeAsset"]["assetType"] == {"assetClass": ETH, "data": "0x"}
    assert p["takeAsset"]["value"] == 10**18
    assert p["dataType"] == V2


def test_collection_bid_uses_collection_asset(make_order, bob):
    order = make_order(
        "rarible", bob, sign=False, side="bid", currency=WETH, token={"contract": COLLECTION}
    )
    p = order.params
    assert p["makeAsset"]["assetType"]["assetClass"] == ERC20
    assert p["takeAsset"]["assetType"]["assetClass"] == COLLECTION_CLASS


def test_v2_data_carries_payout_and_origin_fees(make_order, alice):
    order = make_order(
        "rarible", alice, sign=False, fee_policies=[{"recipient": CUSTOM, "bps": 100}]
    )
    (data,) = decode([DATA_V2], hexbytes(order.params["data"]))
    payouts, origins, is_make_fill = data
    assert [(a.lower(), v) for a, v in payouts] == [(alice.address.lower(), 10_000)]
    assert is_make_fill is True
    assert origin_fees(order) == [(DEFAULT_RECIPIENT, 50), (CUSTOM, 100)]


def test_v3_packs_two_origin_fees(make_order, alice, bob):
    listing = make_order(
        "rarible",
        alice,
        sign=False,
        options={"raribleDataVersion": "V3"},
        royalties=[{"recipient": ROYALTY, "bps": 250}],
    )
    assert listing.params["dataType"] == V3_SELL
    assert origin_fees(listing) == [(DEFAULT_RECIPIENT, 50), (ROYALTY, 250)]

    bid = make_order(
        "rarible",
        bob,
        sign=False,
        side="bid",
        currency=WETH,
        options={"raribleDataVersion": "V3"},
    )
    assert bid.params["dataType"] == V3_BUY
    assert origin_fees(bid) == [(DEFAULT_RECIPIENT, 50)]


def test_v3_rejects_third_origin_fee(make_order, alice):
    with pytest.raises(InvalidArgument, match="at most 2"):
        make_order(
            "rarible",
            alice,
            sign=False,
            options={"raribleDataVersion": "V3"},
            royalties=[{"recipient": ROYALTY, "bps": 100}],
            fee_policies=[{"recipient": CUSTOM, "bps": 100}],
        )


def test_unknown_data_version_rejected(make_order, alice):
    with pytest.raises(InvalidArgument, match="data version"):
        make_order("rarible", alice, sign=False, options={"raribleDataVersion": "V1"})


def test_max_fee_is_enforced(make_order, alice):
    with pytest.raises(FeeOverflow) as exc:
        make_order(
            "rarible", alice, sign=False, fee_policies=[{"recipient": CUSTOM, "bps": 1000}]
        )
    assert exc.value.max_bps == 1000


def test_pack_part_round_trip():
    word = pack_part(CUSTOM, 250)
    assert unpack_part(word) == (CUSTOM, 250)
    with pytest.raises(ValueError):
        pack_part(CUSTOM, 1 << 96)


def test_match_orders_builds_right_order(registry, make_order, alice, bob):
    order = make_order("rarible", alice)
    adapter = registry.get(order.kind)
    data = adapter.encode_fill([ExecutionItem(order=order)], "direct", bob.address, PlanOptions())

    _, (left, signature, right, right_signature) = decode_call([MATCH_ORDERS], data)
    assert left[0].lower() == alice.address.lower()
    assert "0x" + signature.hex() == order.signature
    assert right[0].lower() == bob.address.lower()
    # The taker gives the currency and receives the NFT.
    assert right[1][1] == 10**18
    assert right[3][1] == 1
    assert right_signature == b""


def test_batches_and_fees_on_top_rejected(registry, make_order, alice, bob):
    order = make_order("rarible", alice)
    adapter = registry.get(order.kind)
    assert not adapter.batchable("listing")
    with pytest.raises(InvalidArgument, match="one at a time"):
        adapter.encode_fill(
            [ExecutionItem(order=order), ExecutionItem(order=order)],
            "explicit",
            bob.address,
            PlanOptions(),
        )
    with pytest.raises(InvalidArgument, match="fees on top"):
        adapter.encode_fill(
            [ExecutionItem(order=order, fees_on_top=[{"recipient": CUSTOM, "amount": 1}])],
            "direct",
            bob.address,
            PlanOptions(),
        )


def test_seller_bears_origin_fees(registry, make_order, alice, bob):
    order = make_order("rarible", alice)
    settlement = registry.get(order.kind).settlement(ExecutionItem(order=order), bob.address.lower())
    assert settlement.total == 10**18
    assert settlement.paid_to(alice.address.lower()) == 10**18 - 5 * 10**15
