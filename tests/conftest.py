"""
Shared test fixtures for TradeBridge tests.

Provides reusable fixtures for:
- A controllable monotonic clock
- A simulated account gateway with broker-specific symbol naming
- Gateway client, resolver and settings wired the way the engine wires them
"""

import pytest

from tradebridge.data.symbol_resolver import SymbolResolver
from tradebridge.live.execution_engine import ExecutionEngine
from tradebridge.live.gateway_client import GatewayClient
from tradebridge.live.simulated_broker import SimulatedGateway
from tradebridge.utils.config import ExecutionSettings


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    """Paper account where gold trades as GOLD, not XAUUSD."""
    gw = SimulatedGateway(account_id="acc-1", seed=7)
    gw.add_symbol("GOLD", bid=2000.00, ask=2000.30, point=0.01, digits=2)
    gw.add_symbol("EURUSD", bid=1.08500, ask=1.08510, point=0.00001, digits=5, contract_size=100000)
    return gw


@pytest.fixture
def client(gateway):
    c = GatewayClient(gateway, default_timeout=2.0, max_workers=8)
    yield c
    c.shutdown()


@pytest.fixture
def resolver(client):
    return SymbolResolver(client, account_id="acc-1")


@pytest.fixture
def settings():
    return ExecutionSettings(account_id="acc-1", max_workers=4, read_timeout_ms=2000, execution_timeout_ms=2000)


@pytest.fixture
def engine(gateway, settings, clock):
    eng = ExecutionEngine(gateway, settings, clock=clock)
    yield eng
    eng.close()


def probes(gateway):
    """Broker symbols passed to get_symbol_price, in call order."""
    return [args[0] for name, args in gateway.calls if name == "get_symbol_price"]
