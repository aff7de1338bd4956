"""Tests for router config YAML validation and the adapter registry."""

from pathlib import Path

import pytest

from orderrouter.adapters.base import OrderAdapter
from orderrouter.adapters.registry import AdapterRegistry
from orderrouter.models.order import OrderKind, OrderRequest
from orderrouter.util.errors import ConfigLoadError
from orderrouter.util.io import load_config_yaml

FIXTURES = Path(__file__).parent / "fixtures"
MAKER = "0x00000000000000000000000000000000000000a1"
CUSTOM = "0x00000000000000000000000000000000000000f1"

MINIMAL = """
chain_id: 1
adapters:
  payment-processor-v2:
    exchange: "0x3000000000000000000000000000000000000002"
"""


def _write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_fixture_config_parses():
    config = load_config_yaml(FIXTURES / "config.yaml")
    assert config.version == "0.1"
    assert config.fee_defaults.bps == 50
    assert config.fee_defaults.orderbook == "reservoir"
    assert config.adapters[OrderKind.RARIBLE].max_fee_bps == 1000
    assert set(config.adapters) == set(OrderKind)


def test_defaults_fill_in(tmp_path):
    config = load_config_yaml(_write(tmp_path, MINIMAL))
    assert config.router == "0x0000000000000000000000000000000000000000"
    assert config.fee_defaults.bps == 50
    settings = config.adapters[OrderKind.PAYMENT_PROCESSOR_V2]
    assert settings.max_fee_bps == 10_000
    assert settings.fee_family is None


def test_extra_fields_rejected(tmp_path):
    path = _write(tmp_path, MINIMAL + "unknown_key: true\n")
    with pytest.raises(ConfigLoadError, match="Config validation failed"):
        load_config_yaml(path)


def test_unknown_order_kind_rejected(tmp_path):
    path = _write(tmp_path, MINIMAL + "  blur:\n    exchange: \"0x3000000000000000000000000000000000000003\"\n")
    with pytest.raises(ConfigLoadError):
        load_config_yaml(path)


def test_bad_address_rejected(tmp_path):
    path = _write(tmp_path, 'chain_id: 1\nrouter: "0x1234"\n')
    with pytest.raises(ConfigLoadError):
        load_config_yaml(path)


def test_non_mapping_rejected(tmp_path):
    with pytest.raises(ConfigLoadError, match="mapping"):
        load_config_yaml(_write(tmp_path, "- a\n- b\n"))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigLoadError, match="Cannot read config"):
        load_config_yaml(tmp_path / "missing.yaml")


# ── Registry ──────────────────────────────────────────────────────────


def test_every_adapter_satisfies_protocol(registry):
    for kind in registry.kinds():
        adapter = registry.get(kind)
        assert isinstance(adapter, OrderAdapter)
        assert adapter.kind == kind


def test_lookup_by_exchange(registry):
    adapter = registry.by_exchange("0x2000000000000000000000000000000000000015")
    assert adapter.kind == OrderKind.SEAPORT_V15
    with pytest.raises(KeyError):
        registry.by_exchange("0x00000000000000000000000000000000000000dd")


def test_unconfigured_kind(tmp_path):
    registry = AdapterRegistry(load_config_yaml(_write(tmp_path, MINIMAL)))
    assert registry.kinds() == [OrderKind.PAYMENT_PROCESSOR_V2]
    with pytest.raises(KeyError, match="nftx"):
        registry.get("nftx")


def test_fee_family_override(tmp_path):
    request = OrderRequest(
        order_kind="payment-processor-v2",
        side="listing",
        maker=MAKER,
        token={"contract": "0x00000000000000000000000000000000000000c1", "token_id": 1},
        unit_price=10**18,
        expiration=2_000_000_000,
        fee_policies=[{"recipient": CUSTOM, "bps": 100}],
    )
    replace = AdapterRegistry(load_config_yaml(_write(tmp_path, MINIMAL)))
    assert [line.source for line in replace.get("payment-processor-v2").compose(request).lines] == [
        "custom"
    ]

    additive = AdapterRegistry(
        load_config_yaml(_write(tmp_path, MINIMAL + "    fee_family: additive\n"))
    )
    lines = additive.get("payment-processor-v2").compose(request).lines
    assert [line.source for line in lines] == ["orderbook", "custom"]
