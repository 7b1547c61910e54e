"""
Tests for tradebridge/utils/helpers.py
"""

from datetime import datetime, timezone

import pytest

from tradebridge.utils.helpers import normalize_symbol, round_to_step, safe_float, to_utc_datetime


class TestRoundToStep:

    @pytest.mark.parametrize("value, expected", [
        (0.025, 0.03),
        (0.015, 0.02),
        (0.035, 0.04),
        (0.123, 0.12),
        (0.125, 0.13),
        (1.0, 1.0),
    ])
    def test_ties_round_up(self, value, expected):
        assert round_to_step(value, 0.01) == expected

    def test_coarse_step(self):
        assert round_to_step(0.25, 0.5) == 0.5
        assert round_to_step(0.74, 0.5) == 0.5

    def test_small_step(self):
        assert round_to_step(1.234565, 0.00001) == 1.23457

    @pytest.mark.parametrize("step", [0, None, -0.01])
    def test_no_step_returns_value(self, step):
        assert round_to_step(0.123, step) == 0.123


class TestConversions:

    def test_normalize_symbol(self):
        assert normalize_symbol(" xauusd ") == "XAUUSD"

    def test_safe_float(self):
        assert safe_float("1.5") == 1.5
        assert safe_float("abc", 0.0) == 0.0
        assert safe_float(None) is None

    def test_epoch_seconds_and_iso_agree(self):
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

        assert to_utc_datetime(1_700_000_000) == expected
        assert to_utc_datetime(1_700_000_000_000) == expected
        assert to_utc_datetime("2023-11-14T22:13:20Z") == expected
        assert to_utc_datetime(None) is None
