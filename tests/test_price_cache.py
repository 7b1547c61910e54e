"""
Tests for tradebridge/data/price_cache.py

Covers TTL hits, the stale-quote fallback, account scoping of quotes and
push subscriptions with per-subscriber delivery.
"""

import threading

import pytest

from tradebridge.data.price_cache import FetchResult, PriceCache, quote_from_payload
from tradebridge.errors import SymbolResolutionError

from .conftest import probes


@pytest.fixture
def cache(client, resolver, clock):
    c = PriceCache(client, resolver, ttl=1.0, clock=clock, queue_size=10)
    yield c
    c.unsubscribe_all()


# ---------------------------------------------------------------------------
# Pull queries
# ---------------------------------------------------------------------------


class TestGetCurrentPrice:

    def test_fresh_quote(self, cache):
        quote = cache.get_current_price("xauusd")

        assert quote.canonical_symbol == "XAUUSD"
        assert quote.broker_symbol == "GOLD"
        assert quote.bid == 2000.00
        assert quote.ask == 2000.30
        assert quote.spread == pytest.approx(0.30)
        assert quote.observed_at.tzinfo is not None

    def test_resolution_probe_doubles_as_the_live_fetch(self, gateway, cache):
        cache.get_current_price("XAUUSD")

        assert probes(gateway) == ["XAUUSD", "GOLD"]

    def test_hit_within_ttl_makes_no_gateway_call(self, gateway, cache, clock):
        first = cache.get_current_price("XAUUSD")
        gateway.reset_calls()
        clock.advance(0.5)

        assert cache.get_current_price("XAUUSD") is first
        assert gateway.call_count("get_symbol_price") == 0

    def test_expired_entry_makes_exactly_one_call(self, gateway, cache, clock):
        cache.get_current_price("XAUUSD")
        gateway.set_price("GOLD", 2010.00, 2010.40)
        gateway.reset_calls()
        clock.advance(1.1)

        quote = cache.get_current_price("XAUUSD")

        assert quote.bid == 2010.00
        assert probes(gateway) == ["GOLD"]

    def test_failing_fetch_serves_stale_quote(self, gateway, cache, clock):
        """Fetch fails after a success 500ms ago: cached within TTL, one call after."""
        first = cache.get_current_price("XAUUSD")
        gateway.set_error("get_symbol_price", RuntimeError("connection reset"))
        gateway.reset_calls()

        clock.advance(0.5)
        assert cache.get_current_price("XAUUSD") is first
        assert gateway.call_count("get_symbol_price") == 0

        clock.advance(0.6)
        assert cache.get_current_price("XAUUSD") is first
        assert gateway.call_count("get_symbol_price") == 1

    def test_failure_without_cached_quote_raises(self, cache):
        with pytest.raises(SymbolResolutionError):
            cache.get_current_price("XAGUSD")

    def test_account_switch_hides_quotes(self, gateway, cache, resolver):
        cache.get_current_price("XAUUSD")
        resolver.switch_account("acc-2")
        gateway.set_error("get_symbol_price", RuntimeError("down"))

        assert cache.peek("XAUUSD") is None
        with pytest.raises(SymbolResolutionError):
            cache.get_current_price("XAUUSD")

    def test_refresh_straddling_a_switch_is_not_cached(self, monkeypatch, gateway, cache, resolver, clock):
        """A quote fetched for the old account is returned but never served after the switch."""
        cache.get_current_price("XAUUSD")
        clock.advance(1.5)
        original = gateway.connection.get_symbol_price

        def switch_mid_fetch(symbol):
            resolver.switch_account("acc-2")
            return original(symbol)

        monkeypatch.setattr(gateway.connection, "get_symbol_price", switch_mid_fetch)

        result = cache.fetch_live("XAUUSD")

        assert result.ok
        assert result.quote.broker_symbol == "GOLD"
        assert cache.peek("XAUUSD") is None
        assert cache.stats()["cached_prices"] == 0

    def test_resolution_straddling_a_switch_is_not_cached(self, monkeypatch, gateway, cache, resolver):
        original = gateway.connection.get_symbol_price

        def switch_mid_lookup(symbol):
            if symbol == "GOLD":
                resolver.switch_account("acc-2")
            return original(symbol)

        monkeypatch.setattr(gateway.connection, "get_symbol_price", switch_mid_lookup)

        quote = cache.get_current_price("XAUUSD")

        assert quote.bid == 2000.00
        assert cache.peek("XAUUSD") is None
        assert resolver.stats()["resolved_symbols"] == 0

    def test_store_with_previous_generation(self, cache, resolver):
        generation = resolver.generation
        resolver.switch_account("acc-2")

        quote = cache.store("XAUUSD", "GOLD", {"bid": 1.0, "ask": 1.1}, generation)

        assert quote.bid == 1.0
        assert cache.peek("XAUUSD") is None

    def test_fetch_live_reports_errors_explicitly(self, gateway, cache):
        gateway.set_error("get_symbol_price", RuntimeError("down"))

        result = cache.fetch_live("XAUUSD")

        assert isinstance(result, FetchResult)
        assert not result.ok
        assert isinstance(result.error, SymbolResolutionError)

    def test_clear_and_stats(self, cache):
        cache.get_current_price("XAUUSD")
        cache.get_current_price("EURUSD")
        assert cache.stats() == {"cached_prices": 2, "active_subscriptions": 0}

        cache.clear()
        assert cache.stats()["cached_prices"] == 0


class TestQuoteFromPayload:

    def test_spread_is_zero_when_a_side_is_missing(self):
        quote = quote_from_payload("XAUUSD", "GOLD", {"bid": 2000.0, "ask": None})

        assert quote.spread == 0.0
        assert quote.mid == 2000.0

    def test_epoch_millisecond_time(self):
        quote = quote_from_payload("XAUUSD", "GOLD", {"bid": 1.0, "ask": 2.0, "time": 1700000000000})

        assert quote.observed_at.year == 2023
        assert quote.mid == 1.5


# ---------------------------------------------------------------------------
# Push subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptions:

    def test_subscription_ids_are_unique(self, cache):
        a = cache.subscribe("XAUUSD")
        b = cache.subscribe("XAUUSD")

        assert a != b
        assert a.startswith("price-XAUUSD-")

    def test_subscribe_registers_listener_for_broker_symbol(self, gateway, cache):
        cache.subscribe("XAUUSD")

        assert gateway.market_data_subscriptions == {"GOLD"}
        assert len(gateway.listeners) == 1

    def test_price_events_update_cache_and_reach_callback(self, gateway, cache):
        received = []
        delivered = threading.Event()

        def on_price(quote):
            received.append(quote)
            delivered.set()

        cache.subscribe("XAUUSD", on_price)
        gateway.push_price("GOLD", 2005.00, 2005.20)

        assert delivered.wait(2.0)
        assert received[0].bid == 2005.00
        assert received[0].canonical_symbol == "XAUUSD"
        assert cache.peek("XAUUSD").bid == 2005.00

    def test_events_for_other_symbols_are_ignored(self, gateway, cache):
        cache.subscribe("XAUUSD")
        gateway.push_price("EURUSD", 1.09, 1.0901)

        assert cache.peek("XAUUSD") is None

    def test_failing_callback_does_not_block_other_subscribers(self, gateway, cache):
        delivered = threading.Event()

        def broken(quote):
            raise ValueError("subscriber bug")

        cache.subscribe("XAUUSD", broken)
        cache.subscribe("XAUUSD", lambda quote: delivered.set())
        gateway.push_price("GOLD", 2005.00, 2005.20)

        assert delivered.wait(2.0)

    def test_slow_subscriber_does_not_block_price_updates(self, gateway, cache):
        release = threading.Event()
        cache.subscribe("XAUUSD", lambda quote: release.wait(2.0))

        for i in range(50):
            gateway.push_price("GOLD", 2000.0 + i, 2000.5 + i)

        # The push path returned and the cache holds the last update
        assert cache.peek("XAUUSD").bid == 2049.0
        release.set()

    def test_unsubscribe(self, gateway, cache):
        subscription_id = cache.subscribe("XAUUSD")

        assert cache.unsubscribe(subscription_id) is True
        assert gateway.listeners == {}
        assert cache.stats()["active_subscriptions"] == 0

    def test_unsubscribe_unknown_id_is_ignored(self, cache):
        assert cache.unsubscribe("price-XAUUSD-999") is False

    def test_unsubscribe_all(self, gateway, cache):
        for _ in range(3):
            cache.subscribe("XAUUSD")

        cache.unsubscribe_all()

        assert cache.subscription_ids == []
        assert gateway.listeners == {}

    def test_unsubscribe_all_while_subscribing(self, cache):
        errors = []

        def subscribe_many():
            try:
                for _ in range(20):
                    cache.subscribe("EURUSD")
            except Exception as e:
                errors.append(e)

        worker = threading.Thread(target=subscribe_many)
        worker.start()
        while worker.is_alive():
            cache.unsubscribe_all()
        worker.join()
        cache.unsubscribe_all()

        assert errors == []
        assert cache.subscription_ids == []

    def test_events_after_account_switch_are_not_cached(self, gateway, cache, resolver):
        received = []
        delivered = threading.Event()

        def on_price(quote):
            received.append(quote)
            delivered.set()

        cache.subscribe("XAUUSD", on_price)
        resolver.switch_account("acc-2")
        gateway.push_price("GOLD", 2005.00, 2005.20)

        assert delivered.wait(2.0)
        assert received[0].bid == 2005.00
        assert cache.peek("XAUUSD") is None
