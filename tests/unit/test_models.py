"""Unit tests for argotunnel.models.resources and argotunnel.tunnel.options."""

from __future__ import annotations

import dataclasses
from datetime import timedelta

import pytest

from argotunnel.models.resources import Resource, TunnelRoute, TunnelRule
from argotunnel.tunnel.options import DEFAULT_TUNNEL_OPTIONS, TunnelOptions, collect_tunnel_options


def _rule(**overrides: object) -> TunnelRule:
    fields: dict[str, object] = {
        "service": Resource(namespace="unit", name="svc-a"),
        "secret": Resource(namespace="unit", name="sec-a"),
        "host": "a.unit.com",
        "port": 8080,
    }
    fields.update(overrides)
    return TunnelRule(**fields)  # type: ignore[arg-type]


class TestResource:
    def test_key(self) -> None:
        assert Resource(namespace="unit", name="sec-a").key == "unit/sec-a"

    def test_from_key_round_trip(self) -> None:
        assert Resource.from_key("unit/sec-a") == Resource(namespace="unit", name="sec-a")

    @pytest.mark.parametrize("key", ["no-separator", "a/b/c"])
    def test_from_key_rejects_bad_format(self, key: str) -> None:
        with pytest.raises(ValueError, match="namespace/name"):
            Resource.from_key(key)


class TestTunnelRule:
    def test_equal_rules_hash_equal(self) -> None:
        assert _rule() == _rule()
        assert len({_rule(), _rule()}) == 1

    @pytest.mark.parametrize(
        "override",
        [
            {"service": Resource(namespace="unit", name="svc-b")},
            {"secret": Resource(namespace="unit", name="sec-b")},
            {"host": "b.unit.com"},
            {"port": 8081},
        ],
    )
    def test_any_field_change_breaks_equality(self, override: dict[str, object]) -> None:
        assert _rule(**override) != _rule()

    def test_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            _rule().port = 1  # type: ignore[misc]


class TestTunnelRoute:
    def test_defaults(self) -> None:
        route = TunnelRoute(name="unit", namespace="prod")
        assert route.key == "prod/unit"
        assert route.links == {}
        assert route.options == DEFAULT_TUNNEL_OPTIONS

    def test_rules_in_insertion_order(self) -> None:
        first, second = _rule(host="b.unit.com"), _rule(host="a.unit.com")
        route = TunnelRoute(name="unit", namespace="unit", links={first: None, second: None})
        assert route.rules() == [first, second]

    def test_cert_bytes_hidden_from_repr(self) -> None:
        route = TunnelRoute(name="unit", namespace="unit", certs={_rule(): b"secret-bytes"})
        assert "secret-bytes" not in repr(route)


class TestTunnelOptions:
    def test_baseline(self) -> None:
        opts = TunnelOptions()
        assert opts.ha_connections == 4
        assert opts.heartbeat_interval == timedelta(seconds=5)
        assert opts.grace_period == timedelta(seconds=30)

    def test_collect_without_overrides_returns_base(self) -> None:
        assert collect_tunnel_options() is DEFAULT_TUNNEL_OPTIONS
        assert collect_tunnel_options({}) is DEFAULT_TUNNEL_OPTIONS

    def test_collect_merges_known_fields(self) -> None:
        opts = collect_tunnel_options({"retries": 9, "lb_pool": "pool-a", "bogus": 1})
        assert opts.retries == 9
        assert opts.lb_pool == "pool-a"
        assert opts.ha_connections == DEFAULT_TUNNEL_OPTIONS.ha_connections

    def test_collect_over_custom_base(self) -> None:
        base = TunnelOptions(ha_connections=2)
        assert collect_tunnel_options({"retries": 1}, base=base) == TunnelOptions(ha_connections=2, retries=1)

    def test_value_equality(self) -> None:
        assert TunnelOptions(retries=3) == TunnelOptions(retries=3)
        assert TunnelOptions(retries=3) != TunnelOptions(retries=4)
