"""Seaport adapter: order components, signatures, fill and cancel calldata."""

from __future__ import annotations

import pytest

from orderrouter.adapters.base import decode_call, selector
from orderrouter.adapters.seaport import (
    CANCEL,
    ERC20,
    ERC721,
    ERC721_WITH_CRITERIA,
    ERC1155,
    FULFILL_ADVANCED_ORDER,
    FULFILL_AVAILABLE_ADVANCED_ORDERS,
    FULL_OPEN,
    FULL_RESTRICTED,
    INCREMENT_COUNTER,
    NATIVE,
    PARTIAL_OPEN,
)
from orderrouter.models.execution import ExecutionItem, PlanOptions
from orderrouter.util.errors import InvalidArgument, InvalidSignature, SignatureError
from orderrouter.util.hashing import merkle_root, verify_merkle_proof

NOW = 1_700_000_000
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
DEFAULT_RECIPIENT = "0xf3d63166f0ca56c3c1a3508fce03ff0cf3fb691e"
ZONE = "0x20000000000000000000000000000000000000ff"
TIP = "0x00000000000000000000000000000000000000f9"


# ── Order components ──────────────────────────────────────────────────


def test_listing_components_deduct_fees_from_proceeds(make_order, alice):
    order = make_order("seaport-v1.5", alice, sign=False)
    p = order.params
    assert p["offerer"] == alice.address.lower()
    assert p["orderType"] == FULL_OPEN
    assert p["offer"][0]["itemType"] == ERC721
    assert p["offer"][0]["identifierOrCriteria"] == 1

    proceeds, fee = p["consideration"]
    assert proceeds["itemType"] == NATIVE
    assert proceeds["recipient"] == alice.address.lower()
    assert proceeds["startAmount"] == 10**18 - 5 * 10**15
    assert fee["recipient"] == DEFAULT_RECIPIENT
    assert fee["startAmount"] == 5 * 10**15


def test_multi_quantity_listing_is_partially_fillable(make_order, alice):
    order = make_order(
        "seaport-v1.6",
        alice,
        sign=False,
        token={"contract": "0x00000000000000000000000000000000000000c1", "kind": "erc1155", "token_id": 9},
        quantity=4,
        unit_price=1000,
    )
    p = order.params
    assert p["orderType"] == PARTIAL_OPEN
    assert p["offer"][0]["itemType"] == ERC1155
    assert p["offer"][0]["startAmount"] == 4
    # The per-unit fee line is multiplied out over the whole order.
    assert p["consideration"][1]["startAmount"] == 5 * 4
    assert p["consideration"][0]["startAmount"] == 4000 - 20


def test_token_list_bid_uses_criteria_root(make_order, bob):
    token_ids = [3, 5, 8]
    order = make_order(
        "seaport-v1.5",
        bob,
        sign=False,
        side="bid",
        currency=WETH,
        token={"contract": "0x00000000000000000000000000000000000000c1", "token_ids": token_ids},
    )
    p = order.params
    assert p["offer"][0]["itemType"] == ERC20
    nft = p["consideration"][0]
    assert nft["itemType"] == ERC721_WITH_CRITERIA
    assert nft["identifierOrCriteria"] == int(merkle_root(token_ids), 16)
    assert nft["recipient"] == bob.address.lower()


def test_matching_token_list_bid(registry, make_order, alice, bob):
    token_ids = [3, 5, 8]
    order = make_order(
        "seaport-v1.5",
        bob,
        side="bid",
        currency=WETH,
        token={"contract": "0x00000000000000000000000000000000000000c1", "token_ids": token_ids},
    )
    adapter = registry.get("seaport-v1.5")

    matching = adapter.build_matching(order, {"taker": alice.address, "tokenId": 5})
    assert matching["taker"] == alice.address.lower()
    assert (matching["tokenId"], matching["amount"]) == (5, 1)
    assert verify_merkle_proof(merkle_root(token_ids), 5, matching["proof"])

    with pytest.raises(InvalidArgument, match="not part of the order's token set"):
        adapter.build_matching(order, {"tokenId": 4})
    with pytest.raises(InvalidArgument, match="tokenId is required"):
        adapter.build_matching(order)


def test_off_chain_cancellation_uses_zone(make_order, alice):
    order = make_order(
        "seaport-v1.5", alice, sign=False, options={"useOffChainCancellation": True}
    )
    assert order.params["zone"] == ZONE
    assert order.params["orderType"] == FULL_RESTRICTED


def test_off_chain_cancellation_requires_zone(make_order, alice):
    with pytest.raises(InvalidArgument, match="cancellation zone"):
        make_order(
            "seaport-v1.6", alice, sign=False, options={"useOffChainCancellation": True}
        )


def test_versions_hash_differently(make_order, alice):
    v15 = make_order("seaport-v1.5", alice, sign=False)
    v16 = make_order("seaport-v1.6", alice, sign=False)
    assert v15.params["consideration"] == v16.params["consideration"]
    assert v15.hash != v16.hash


# ── Signatures ────────────────────────────────────────────────────────


def test_sign_and_verify(registry, make_order, alice):
    order = make_order("seaport-v1.5", alice)
    assert order.status == "signed"
    registry.get(order.kind).check_signature(order)


def test_tampered_order_fails_verification(registry, make_order, alice):
    order = make_order("seaport-v1.5", alice)
    params = dict(order.params, salt=1)
    tampered = order.model_copy(update={"params": params})
    with pytest.raises(InvalidSignature):
        registry.get(order.kind).check_signature(tampered)


def test_only_maker_can_sign(registry, make_order, alice, bob):
    order = make_order("seaport-v1.5", alice, sign=False)
    with pytest.raises(SignatureError):
        registry.get(order.kind).sign(order, bob, now=NOW)


def test_expired_order_cannot_be_signed(registry, make_order, alice):
    order = make_order("seaport-v1.5", alice, sign=False)
    with pytest.raises(InvalidArgument, match="expired"):
        registry.get(order.kind).sign(order, alice, now=order.request.expiration)


def test_unsigned_order_fails_verification(registry, make_order, alice):
    order = make_order("seaport-v1.5", alice, sign=False)
    with pytest.raises(InvalidSignature):
        registry.get(order.kind).check_signature(order)


# ── Fill calldata ─────────────────────────────────────────────────────


def test_direct_fill_targets_taker(registry, make_order, alice, bob):
    order = make_order("seaport-v1.5", alice)
    adapter = registry.get(order.kind)
    data = adapter.encode_fill([ExecutionItem(order=order)], "direct", bob.address, PlanOptions())

    signature, args = decode_call([FULFILL_ADVANCED_ORDER], data)
    advanced, resolvers, _, recipient = args
    assert recipient.lower() == bob.address.lower()
    assert resolvers == ()
    # numerator / denominator
    assert advanced[1:3] == (1, 1)


def test_explicit_fill_appends_tips(registry, make_order, alice, bob):
    first = make_order("seaport-v1.5", alice)
    second = make_order("seaport-v1.5", alice, salt=7)
    adapter = registry.get(first.kind)
    items = [
        ExecutionItem(order=first, fees_on_top=[{"recipient": TIP, "amount": 123}]),
        ExecutionItem(order=second),
    ]
    data = adapter.encode_fill(items, "explicit", bob.address, PlanOptions())

    _, args = decode_call([FULFILL_AVAILABLE_ADVANCED_ORDERS], data)
    advanced, _, offer_fulfillments, consideration_fulfillments, _, _, maximum = args
    assert maximum == 2
    first_consideration = advanced[0][0][3]
    assert len(first_consideration) == 3
    assert first_consideration[-1][3] == 123
    assert first_consideration[-1][5].lower() == TIP
    assert len(offer_fulfillments) == 2
    assert len(consideration_fulfillments) == 3 + 2


def test_bid_fill_resolves_taker_token(registry, make_order, alice, bob):
    order = make_order(
        "seaport-v1.5",
        bob,
        side="bid",
        currency=WETH,
        token={"contract": "0x00000000000000000000000000000000000000c1"},
    )
    adapter = registry.get(order.kind)
    data = adapter.encode_fill(
        [ExecutionItem(order=order, token_id=42)], "direct", alice.address, PlanOptions()
    )
    _, args = decode_call([FULFILL_ADVANCED_ORDER], data)
    ((index, side, _, identifier, proof),) = args[1]
    assert (index, side, identifier) == (0, 1, 42)
    assert proof == ()


def test_fees_on_top_of_bids_rejected(registry, make_order, bob, alice):
    order = make_order("seaport-v1.5", bob, side="bid", currency=WETH)
    adapter = registry.get(order.kind)
    item = ExecutionItem(order=order, fees_on_top=[{"recipient": TIP, "amount": 1}])
    with pytest.raises(InvalidArgument):
        adapter.encode_fill([item], "direct", alice.address, PlanOptions())


def test_direct_fill_takes_one_order(registry, make_order, alice, bob):
    order = make_order("seaport-v1.5", alice)
    adapter = registry.get(order.kind)
    items = [ExecutionItem(order=order), ExecutionItem(order=order)]
    with pytest.raises(InvalidArgument):
        adapter.encode_fill(items, "direct", bob.address, PlanOptions())


# ── Cancellation ──────────────────────────────────────────────────────


def test_cancel_and_bulk_cancel(registry, make_order, alice):
    order = make_order("seaport-v1.5", alice)
    adapter = registry.get(order.kind)

    tx = adapter.cancel_tx(order)
    assert tx.to == adapter.exchange
    assert tx.sender == alice.address.lower()
    assert tx.data.startswith(selector(CANCEL))
    _, args = decode_call([CANCEL], tx.data)
    assert args[0][0][-1] == order.params["counter"]

    bulk = adapter.bulk_cancel_tx(alice.address)
    assert bulk.kind == "bulk_cancel"
    assert bulk.data == selector(INCREMENT_COUNTER)
