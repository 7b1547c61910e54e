"""
Tests for tradebridge/risk/risk_calculator.py
"""

import pytest

from tradebridge.errors import InvalidRiskSpecError, ValidationError
from tradebridge.live.broker_interface import RiskKind, StopSpec, SymbolSpec
from tradebridge.risk.risk_calculator import (
    calculate_pnl,
    check_min_distance,
    derive_stop,
    derive_target,
    format_price,
    position_size,
    required_margin,
    risk_reward_ratio,
    validate_trade_params,
)

GOLD = SymbolSpec(point=0.01, digits=2)


class TestDeriveStopTarget:

    def test_points_buy_stop_example(self):
        assert derive_stop(2000, {"kind": "points", "value": 50}, "BUY", GOLD) == 1999.5

    def test_points_sell(self):
        assert derive_stop(2000, {"type": "points", "value": 50}, "SELL", GOLD) == 2000.5
        assert derive_target(2000, {"type": "points", "value": 100}, "SELL", GOLD) == 1999.0

    @pytest.mark.parametrize("value", [1, 50, 1234])
    @pytest.mark.parametrize("kind", ["points", "percentage"])
    def test_stop_and_target_bracket_the_base(self, kind, value):
        spec = StopSpec(RiskKind.parse(kind), value)
        symbol = SymbolSpec(point=0.00001, digits=5)
        base = 1.2345

        assert derive_stop(base, spec, "BUY", symbol) < base < derive_target(base, spec, "BUY", symbol)
        assert derive_target(base, spec, "SELL", symbol) < base < derive_stop(base, spec, "SELL", symbol)

    def test_percentage(self):
        assert derive_stop(2000, {"type": "percentage", "value": 1}, "BUY", GOLD) == 1980.0
        assert derive_target(2000, {"type": "percentage", "value": 2}, "BUY", GOLD) == 2040.0

    @pytest.mark.parametrize("kind", ["fixed_price", "fixedPrice", "price"])
    def test_fixed_price_passes_through(self, kind):
        assert derive_stop(2000, {"type": kind, "value": 1985.25}, "BUY", GOLD) == 1985.25
        assert derive_target(2000, {"type": kind, "value": 2050}, "SELL", GOLD) == 2050.0

    def test_rounded_to_symbol_digits(self):
        spec = SymbolSpec(point=0.001, digits=3)

        assert derive_stop(23.5, {"type": "percentage", "value": 1.337}, "BUY", spec) == 23.186

    @pytest.mark.parametrize("spec", [None, {"type": "points", "value": 0}])
    def test_absent_spec_derives_nothing(self, spec):
        assert derive_stop(2000, spec, "BUY", GOLD) is None
        assert derive_target(2000, spec, "BUY", GOLD) is None

    def test_default_symbol_spec(self):
        assert derive_stop(1.1, {"type": "points", "value": 50}, "BUY") == 1.095

    def test_unknown_kind(self):
        with pytest.raises(InvalidRiskSpecError):
            derive_stop(2000, {"type": "atr", "value": 2}, "BUY", GOLD)

    def test_invalid_side(self):
        with pytest.raises(ValidationError):
            derive_stop(2000, {"type": "points", "value": 50}, "HOLD", GOLD)


class TestMinDistance:

    def test_too_close(self):
        with pytest.raises(ValidationError) as exc_info:
            check_min_distance(2000.0, 1999.95, 10, GOLD, "Stop loss")

        assert exc_info.value.details["min_points"] == 10

    def test_exactly_at_minimum(self):
        check_min_distance(2000.0, 1999.9, 10, GOLD)

    def test_none_price_is_ignored(self):
        check_min_distance(2000.0, None, 10, GOLD)


class TestHelpers:

    def test_pnl_buy(self):
        result = calculate_pnl(2000.0, 2010.0, 0.1, "BUY")

        assert result == {"pnl": 100.0, "pnl_percent": 0.5, "pnl_points": 10.0}

    def test_pnl_sell_loss(self):
        assert calculate_pnl(2000.0, 2010.0, 0.1, "SELL")["pnl"] == -100.0

    def test_pnl_undefined(self):
        assert calculate_pnl(0, 2010.0, 0.1, "BUY")["pnl"] == 0.0

    def test_risk_reward(self):
        assert risk_reward_ratio(2000.0, 1999.5, 2001.0, "BUY") == 2.0
        assert risk_reward_ratio(2000.0, 2000.0, 2001.0, "BUY") == 0.0

    def test_position_size(self):
        assert position_size(10000, 1, 2000.0, 1990.0) == 10.0
        assert position_size(10000, 1, 2000.0, 2000.0) == 0.0
        assert position_size(10000, 0, 2000.0, 1990.0) == 0.0

    def test_required_margin(self):
        assert required_margin(0.1, 2000.0) == 200.0
        assert required_margin(1.0, 1.085, leverage=500, contract_size=100000) == 217.0
        assert required_margin(0.1, 2000.0, leverage=0) == 0.0

    def test_format_price(self):
        assert format_price(1.0851, 5) == "1.08510"
        assert format_price(0.0, 2) == "0.00"
        assert format_price(None) == "N/A"


class TestValidateTradeParams:

    def test_valid_buy(self):
        validate_trade_params("BUY", 0.1, 2000.0, 1990.0, 2020.0, {"free_margin": 1000, "leverage": 100})

    def test_inverted_buy_levels(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_trade_params("BUY", 0.1, 2000.0, 2010.0, 1990.0)

        assert exc_info.value.details["errors"] == [
            "Stop must be below entry price for BUY orders",
            "Target must be above entry price for BUY orders",
        ]

    def test_inverted_sell_levels(self):
        with pytest.raises(ValidationError, match="Stop must be above"):
            validate_trade_params("sell", 0.1, 2000.0, 1990.0, 1980.0)

    def test_levels_ignored_unless_both_given(self):
        validate_trade_params("BUY", 0.1, 2000.0, stop_price=2010.0)

    def test_zero_volume(self):
        with pytest.raises(ValidationError, match="Volume must be greater than 0"):
            validate_trade_params("BUY", 0, 2000.0)

    def test_insufficient_margin(self):
        with pytest.raises(ValidationError, match="Insufficient margin. Required: 200.0, Available: 150"):
            validate_trade_params("BUY", 0.1, 2000.0, account={"free_margin": 150, "leverage": 100})

    def test_margin_skipped_without_free_margin(self):
        validate_trade_params("BUY", 10, 2000.0, account={"free_margin": 0})

    def test_invalid_side(self):
        with pytest.raises(ValidationError):
            validate_trade_params("HOLD", 0.1, 2000.0)
