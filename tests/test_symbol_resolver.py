"""
Tests for tradebridge/data/symbol_resolver.py

Covers variant ordering, per-account caching, eviction of symbols that stop
quoting, and how gateway failures are told apart from failed variants.
"""

from unittest.mock import MagicMock

import pytest

from tradebridge.data.symbol_resolver import SymbolResolver, has_quote
from tradebridge.errors import GatewayUnavailableError, SymbolResolutionError, ValidationError
from tradebridge.utils.config import DEFAULT_SYMBOL_VARIANTS

from .conftest import probes


# ---------------------------------------------------------------------------
# Variant probing
# ---------------------------------------------------------------------------


class TestVariantOrder:
    """Variants are tried strictly in declared order."""

    def test_resolves_first_quoting_variant(self, gateway, resolver):
        """XAUUSD resolves to GOLD when only GOLD quotes."""
        assert resolver.resolve(None, "XAUUSD") == "GOLD"
        assert probes(gateway) == ["XAUUSD", "GOLD"]

    def test_later_quoting_variants_are_never_probed(self, gateway, resolver):
        gateway.add_symbol("XAUUSDm", bid=2001.0, ask=2001.2)

        assert resolver.resolve(None, "XAUUSD") == "GOLD"
        assert "XAUUSDm" not in probes(gateway)

    def test_canonical_symbol_is_upper_cased(self, resolver):
        assert resolver.resolve(None, "  xauusd ") == "GOLD"
        assert resolver.get_cached(None, "XAUUSD") == "GOLD"

    def test_unknown_symbol_only_tries_itself(self, gateway, resolver):
        assert resolver.resolve(None, "eurusd") == "EURUSD"
        assert probes(gateway) == ["EURUSD"]

    def test_exhaustion_lists_every_variant_tried(self, resolver):
        with pytest.raises(SymbolResolutionError) as exc_info:
            resolver.resolve(None, "XAGUSD")

        assert exc_info.value.tried == DEFAULT_SYMBOL_VARIANTS["XAGUSD"]
        assert exc_info.value.details["symbol"] == "XAGUSD"

    def test_unknown_symbol_exhaustion(self, resolver):
        with pytest.raises(SymbolResolutionError) as exc_info:
            resolver.resolve(None, "FOOBAR")

        assert exc_info.value.tried == ["FOOBAR"]

    def test_variant_without_bid_or_ask_is_skipped(self, gateway, resolver):
        gateway.add_symbol("XAUUSD", bid=None, ask=None)

        assert resolver.resolve(None, "XAUUSD") == "GOLD"

    def test_custom_variants(self, gateway, client):
        gateway.add_symbol("GOLD.pro", bid=2000.0, ask=2000.5)
        custom = SymbolResolver(client, variants={"xauusd": ["GOLD.pro", "GOLD"]})

        assert custom.resolve(None, "XAUUSD") == "GOLD.pro"
        assert custom.variants_for("XAUUSD") == ["GOLD.pro", "GOLD"]

    def test_empty_symbol_is_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.resolve(None, "  ")


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestResolutionCache:
    """Cached resolutions cost exactly one probe."""

    def test_second_resolve_probes_only_cached_symbol(self, gateway, resolver):
        resolver.resolve(None, "XAUUSD")
        gateway.reset_calls()

        assert resolver.resolve(None, "XAUUSD") == "GOLD"
        assert probes(gateway) == ["GOLD"]

    def test_resolve_with_quote_returns_probe_quote(self, resolver):
        resolution = resolver.resolve_with_quote(None, "XAUUSD")

        assert resolution.broker_symbol == "GOLD"
        assert resolution.quote["bid"] == 2000.00
        assert resolution.quote["ask"] == 2000.30

    def test_cached_symbol_that_stops_quoting_is_re_resolved(self, gateway, resolver):
        resolver.resolve(None, "XAUUSD")
        gateway.set_price("GOLD", None, None)
        gateway.add_symbol("XAUUSDm", bid=2001.0, ask=2001.2)
        gateway.reset_calls()

        assert resolver.resolve(None, "XAUUSD") == "XAUUSDm"
        # GOLD is not probed a second time in the variant loop
        assert probes(gateway) == ["GOLD", "XAUUSD", "XAUUSDm"]
        assert resolver.get_cached(None, "XAUUSD") == "XAUUSDm"

    def test_clear_drops_resolutions(self, gateway, resolver):
        resolver.resolve(None, "XAUUSD")
        resolver.clear()
        gateway.reset_calls()

        resolver.resolve(None, "XAUUSD")
        assert probes(gateway) == ["XAUUSD", "GOLD"]

    def test_stats(self, resolver):
        resolver.resolve(None, "XAUUSD")
        resolver.resolve(None, "EURUSD")

        stats = resolver.stats()
        assert stats["resolved_symbols"] == 2
        assert stats["account_id"] == "acc-1"
        assert stats["generation"] == 0


class TestAccountIsolation:
    """A resolution cached under one account is never returned for another."""

    def test_switch_invalidates_cached_resolution(self, gateway, resolver):
        assert resolver.resolve("acc-1", "XAUUSD") == "GOLD"

        gateway.remove_symbol("GOLD")
        gateway.add_symbol("XAUUSD", bid=2000.0, ask=2000.2)
        gateway.reset_calls()

        assert resolver.resolve("acc-2", "XAUUSD") == "XAUUSD"
        assert probes(gateway) == ["XAUUSD"]
        assert resolver.account_id == "acc-2"

    def test_switching_back_does_not_revive_old_entries(self, gateway, resolver):
        resolver.resolve("acc-1", "XAUUSD")
        resolver.switch_account("acc-2")
        resolver.switch_account("acc-1")
        gateway.reset_calls()

        resolver.resolve("acc-1", "XAUUSD")
        assert probes(gateway) == ["XAUUSD", "GOLD"]

    def test_get_cached_for_other_account_is_none(self, resolver):
        resolver.resolve(None, "XAUUSD")

        assert resolver.get_cached("acc-2", "XAUUSD") is None
        assert resolver.get_cached("acc-1", "XAUUSD") == "GOLD"

    def test_switch_to_same_account_is_a_no_op(self, resolver):
        resolver.resolve(None, "XAUUSD")

        assert resolver.switch_account("acc-1") is False
        assert resolver.get_cached(None, "XAUUSD") == "GOLD"

    def test_resolution_straddling_a_switch_is_not_cached(self):
        """A result that arrives after the account moved on belongs to the old account."""
        client = MagicMock()
        resolver = SymbolResolver(client, account_id="acc-1")

        def switch_mid_lookup(method, symbol, timeout=None):
            resolver.switch_account("acc-2")
            return {"symbol": symbol, "bid": 1.0, "ask": 1.1}

        client.call.side_effect = switch_mid_lookup

        assert resolver.resolve(None, "EURUSD") == "EURUSD"
        assert resolver.stats()["resolved_symbols"] == 0


# ---------------------------------------------------------------------------
# Gateway failures
# ---------------------------------------------------------------------------


class TestGatewayFailures:

    def test_disconnected_gateway_propagates(self, gateway, resolver):
        gateway.disconnect()

        with pytest.raises(GatewayUnavailableError):
            resolver.resolve(None, "XAUUSD")

    def test_probe_errors_count_as_failed_variants(self, gateway, resolver):
        gateway.set_error("get_symbol_price", RuntimeError("symbol not found"))

        with pytest.raises(SymbolResolutionError) as exc_info:
            resolver.resolve(None, "XAUUSD")

        assert exc_info.value.tried == DEFAULT_SYMBOL_VARIANTS["XAUUSD"]

    def test_timed_out_probe_counts_as_failed_variant(self, gateway, client):
        resolver = SymbolResolver(client, variants={"EURUSD": ["EURUSD"]}, probe_timeout=0.05)
        gateway.set_latency("get_symbol_price", 0.5)

        with pytest.raises(SymbolResolutionError):
            resolver.resolve(None, "EURUSD")


class TestHasQuote:

    @pytest.mark.parametrize("price, expected", [
        ({"bid": 1.0, "ask": None}, True),
        ({"bid": None, "ask": 1.0}, True),
        ({"bid": None, "ask": None}, False),
        ({}, False),
        (None, False),
    ])
    def test_has_quote(self, price, expected):
        assert has_quote(price) is expected
