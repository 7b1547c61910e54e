"""Command line entry point for the execution layer.

Usage:
    # Current price (paper gateway)
    tradebridge price XAUUSD

    # Last 20 H4 candles
    tradebridge candles XAUUSD --timeframe H4 --count 20

    # RSI(14) over H1 closes
    tradebridge indicator XAUUSD RSI --period 14

    # Market buy with 50 point stop / 100 point target
    tradebridge trade XAUUSD BUY 0.1 --sl-points 50 --tp-points 100

    # Batch of intents from a YAML/JSON list
    tradebridge batch orders.yaml

    # Against a live MT5 terminal (Windows, credentials in .env)
    tradebridge --mt5 price XAUUSD
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger

from .live.broker_interface import AccountGateway, StopSpec, TradeIntent
from .live.execution_engine import ExecutionEngine
from .live.simulated_broker import SimulatedGateway
from .utils.config import ExecutionSettings, get_config
from .utils.logger import setup_logger

# Paper catalog: broker naming differs from canonical symbols on purpose
PAPER_SYMBOLS = {
    "GOLD": {"bid": 2000.00, "ask": 2000.30, "point": 0.01, "digits": 2, "contract_size": 100},
    "SILVER": {"bid": 23.500, "ask": 23.530, "point": 0.001, "digits": 3, "contract_size": 5000},
    "BTCUSDm": {"bid": 43000.0, "ask": 43015.0, "point": 0.01, "digits": 2, "contract_size": 1},
    "ETHUSD": {"bid": 2300.00, "ask": 2301.20, "point": 0.01, "digits": 2, "contract_size": 1},
    "EURUSD": {"bid": 1.08500, "ask": 1.08507, "point": 0.00001, "digits": 5, "contract_size": 100000},
}


def paper_gateway(account_id: Optional[str] = None, slippage_points: float = 0.0) -> SimulatedGateway:
    """Simulated account preloaded with the paper catalog"""
    gateway = SimulatedGateway(account_id=account_id or "paper", slippage_points=slippage_points)
    for symbol, spec in PAPER_SYMBOLS.items():
        gateway.add_symbol(symbol, **spec)
    return gateway


def build_gateway(args, settings: ExecutionSettings) -> AccountGateway:
    if args.mt5:
        # Windows only: the MetaTrader5 package is imported on demand
        from .data.mt5_gateway import MT5Gateway

        gateway = MT5Gateway(poll_interval=settings.poll_interval_ms / 1000.0)
    else:
        gateway = paper_gateway(args.account)
    gateway.connect()
    return gateway


def cmd_price(engine: ExecutionEngine, args):
    quote = engine.get_current_price(args.symbol)
    print(f"\n{quote.canonical_symbol} ({quote.broker_symbol})")
    print(f"  Bid:    {quote.bid}")
    print(f"  Ask:    {quote.ask}")
    print(f"  Spread: {quote.spread:.5f}")
    print(f"  Time:   {quote.observed_at.isoformat()}")


def cmd_candles(engine: ExecutionEngine, args):
    candles = engine.get_candles(args.symbol, args.timeframe, args.count)
    print(f"\n{args.symbol.upper()} {args.timeframe.upper()} - {len(candles)} candles")
    print(f"{'Time (UTC)':<20} {'Open':>12} {'High':>12} {'Low':>12} {'Close':>12} {'Volume':>8}")
    print("-" * 80)
    for c in candles:
        print(
            f"{c.open_time:%Y-%m-%d %H:%M}    {c.open:>12.5f} {c.high:>12.5f} "
            f"{c.low:>12.5f} {c.close:>12.5f} {c.volume:>8.0f}"
        )


def cmd_indicator(engine: ExecutionEngine, args):
    params = {"period": args.period} if args.period else {}
    result = engine.calculate_indicator(args.symbol, args.name, params, timeframe=args.timeframe, count=args.count)

    print(f"\n{args.name.upper()} on {args.symbol.upper()} {args.timeframe.upper()}")
    if isinstance(result, dict):
        for key, values in result.items():
            print(f"  {key:<10} last: {values.iloc[-1]:.5f} ({len(values)} values)")
    else:
        print(f"  last: {result.iloc[-1]:.5f} ({len(result)} values)")


def _print_outcome(index, outcome):
    label = f"[{index}] " if index is not None else ""
    if outcome.success:
        print(
            f"  {label}{outcome.status.value}: {outcome.side} {outcome.volume} {outcome.symbol} "
            f"({outcome.broker_symbol}) @ {outcome.filled_price} SL={outcome.stop_price} "
            f"TP={outcome.target_price} id={outcome.broker_order_id} ({outcome.execution_time_ms}ms)"
        )
    else:
        print(f"  {label}FAILED: {outcome.symbol} - {outcome.error_type}: {outcome.error}")


def cmd_trade(engine: ExecutionEngine, args):
    intent = TradeIntent(
        symbol=args.symbol,
        side=args.side,
        volume=args.volume,
        order_kind="limit" if args.limit else "market",
        entry_price=args.limit,
        stop=StopSpec.from_value({"type": "points", "value": args.sl_points}) if args.sl_points is not None else None,
        target=StopSpec.from_value({"type": "points", "value": args.tp_points}) if args.tp_points is not None else None,
        comment=args.comment,
    )
    print("\nOrder result:")
    _print_outcome(None, engine.place_trade(intent))


def cmd_batch(engine: ExecutionEngine, args):
    path = Path(args.file)
    with open(path, "r") as f:
        intents = yaml.safe_load(f) or []
    if not isinstance(intents, list):
        raise ValueError(f"{path} must contain a list of trade intents")

    outcomes = engine.place_batch_trades(intents)
    print(f"\nBatch results ({sum(o.success for o in outcomes)}/{len(outcomes)} successful):")
    for i, outcome in enumerate(outcomes):
        _print_outcome(i, outcome)


def cmd_status(engine: ExecutionEngine, args):
    status = engine.get_status()
    print("\nEngine Status:")
    for k, v in status.items():
        print(f"  {k}: {v}")
    print(f"  healthy: {engine.health_check()}")


COMMANDS = {
    "price": cmd_price,
    "candles": cmd_candles,
    "indicator": cmd_indicator,
    "trade": cmd_trade,
    "batch": cmd_batch,
    "status": cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradebridge", description="TradeBridge execution layer")
    parser.add_argument("--mt5", action="store_true", help="Use the MT5 terminal instead of the paper gateway")
    parser.add_argument("--account", type=str, default=None, help="Account ID the caches are scoped to")
    parser.add_argument("--log-level", type=str, default=None, help="Log level (default: from config)")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("price", help="Current bid/ask of a symbol")
    p.add_argument("symbol")

    p = sub.add_parser("candles", help="Recent OHLCV candles")
    p.add_argument("symbol")
    p.add_argument("--timeframe", default="H1")
    p.add_argument("--count", type=int, default=20)

    p = sub.add_parser("indicator", help="Indicator over recent closes")
    p.add_argument("symbol")
    p.add_argument("name", help="SMA, EMA, RSI, MACD or BB")
    p.add_argument("--period", type=int, default=None)
    p.add_argument("--timeframe", default="H1")
    p.add_argument("--count", type=int, default=100)

    p = sub.add_parser("trade", help="Place one order")
    p.add_argument("symbol")
    p.add_argument("side", type=str.upper, choices=["BUY", "SELL"])
    p.add_argument("volume", type=float)
    p.add_argument("--limit", type=float, default=None, help="Entry price for a limit order")
    p.add_argument("--sl-points", type=float, default=None)
    p.add_argument("--tp-points", type=float, default=None)
    p.add_argument("--comment", default=None)

    p = sub.add_parser("batch", help="Place a list of orders in parallel")
    p.add_argument("file", help="YAML or JSON list of trade intents")

    sub.add_parser("status", help="Connection and cache status")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger(args.log_level)

    config = get_config()
    settings = ExecutionSettings.from_config(config)
    if args.account:
        settings.account_id = args.account

    gateway = build_gateway(args, settings)
    try:
        with ExecutionEngine(gateway, settings) as engine:
            COMMANDS[args.command](engine, args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        gateway.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
