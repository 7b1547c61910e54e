"""Order executor: turns trade intents into gateway orders.

Per intent: Validating -> SymbolResolving -> PriceFetching -> RiskDeriving
-> Submitting -> FILLED | PENDING | FAILED.

Trade operations never raise; every failure becomes an outcome object so a
batch can be processed uniformly. No retries happen here.
"""
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from loguru import logger

from ..data.price_cache import PriceCache
from ..data.symbol_resolver import SymbolResolver
from ..errors import GatewayTimeoutError, GatewayUnavailableError, ValidationError
from ..risk.risk_calculator import check_min_distance, derive_stop, derive_target
from ..utils.config import ExecutionSettings
from ..utils.helpers import elapsed_ms, round_to_step, safe_float, utc_now
from .broker_interface import (
    CloseOutcome,
    HistoricalTrade,
    ModifyOutcome,
    OpenPosition,
    StopSpec,
    SymbolSpec,
    TradeIntent,
    TradeOutcome,
    TradeStatus,
)
from .gateway_client import GatewayClient
from .result_adapter import classify_order_result, ensure_accepted


class ExecutionStage(str, Enum):
    VALIDATING = "Validating"
    SYMBOL_RESOLVING = "SymbolResolving"
    PRICE_FETCHING = "PriceFetching"
    RISK_DERIVING = "RiskDeriving"
    SUBMITTING = "Submitting"


class OrderExecutor:
    """Validates, prices and submits orders through an account gateway."""

    def __init__(
        self,
        client: GatewayClient,
        resolver: SymbolResolver,
        price_cache: PriceCache,
        settings: Optional[ExecutionSettings] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.client = client
        self.resolver = resolver
        self.price_cache = price_cache
        self.settings = settings or ExecutionSettings()
        self.executor = executor

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def place_trade(self, intent: Union[TradeIntent, Dict]) -> TradeOutcome:
        """Place one order. Always returns an outcome, never raises."""
        started = time.perf_counter()
        stage = ExecutionStage.VALIDATING
        order = None

        try:
            order = self._validate(intent)

            stage = self._enter(ExecutionStage.SYMBOL_RESOLVING, order)
            resolution = self.resolver.resolve_with_quote(None, order.symbol)
            broker_symbol = resolution.broker_symbol
            logger.info(
                f"[TRADE] Placing {order.side} {order.order_kind} order for {order.symbol} "
                f"(broker symbol: {broker_symbol})"
            )

            stage = self._enter(ExecutionStage.PRICE_FETCHING, order)
            quote = self.price_cache.store(order.symbol, broker_symbol, resolution.quote, resolution.generation)
            current_price = quote.ask if order.side == "BUY" else quote.bid
            if current_price is None:
                quote = self.price_cache.get_current_price(order.symbol)
                current_price = quote.ask if order.side == "BUY" else quote.bid
            if current_price is None:
                raise ValidationError(f"No {'ask' if order.side == 'BUY' else 'bid'} price for {order.symbol}")

            stage = self._enter(ExecutionStage.RISK_DERIVING, order)
            spec = self.get_symbol_spec(broker_symbol)
            volume = self._normalize_volume(order.volume, spec)
            base_price = order.entry_price or current_price

            stop_price = derive_stop(base_price, order.stop, order.side, spec)
            target_price = derive_target(base_price, order.target, order.side, spec)
            check_min_distance(base_price, stop_price, self.settings.min_sl_distance_points, spec, "Stop loss")
            check_min_distance(base_price, target_price, self.settings.min_tp_distance_points, spec, "Take profit")
            logger.debug(f"[TRADE] Volume: {volume}, SL: {stop_price}, TP: {target_price}, base: {base_price}")

            stage = self._enter(ExecutionStage.SUBMITTING, order)
            raw = self._submit(order, broker_symbol, volume, stop_price, target_price)
            ack = classify_order_result(raw)

            outcome = TradeOutcome(
                success=True,
                status=ack.status,
                symbol=order.symbol,
                side=order.side,
                volume=volume,
                broker_symbol=broker_symbol,
                broker_order_id=ack.order_id,
                filled_price=ack.fill_price or base_price,
                stop_price=stop_price,
                target_price=target_price,
                execution_time_ms=elapsed_ms(started),
                broker_response=raw,
            )
            logger.info(
                f"[TRADE] Order placed ({outcome.execution_time_ms}ms) - ID: {ack.order_id}, "
                f"status: {ack.status.value}"
            )
            return outcome

        except Exception as e:
            return self._failed(intent, order, e, started, stage)

    def place_batch_trades(self, intents: Sequence[Union[TradeIntent, Dict]]) -> List[TradeOutcome]:
        """
        Place all intents in parallel.

        Returns one outcome per intent, in input order. A failing intent
        never affects the others.
        """
        intents = list(intents or [])
        if not intents:
            return []

        logger.info(f"[BATCH] Placing {len(intents)} orders in batch mode")
        started = time.perf_counter()

        pool = self.executor or ThreadPoolExecutor(
            max_workers=min(len(intents), self.settings.max_workers), thread_name_prefix="batch"
        )
        try:
            futures = [pool.submit(self.place_trade, intent) for intent in intents]
            outcomes = []
            for intent, future in zip(intents, futures):
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    outcomes.append(self._failed(intent, None, e, started, ExecutionStage.VALIDATING))
        finally:
            if self.executor is None:
                pool.shutdown(wait=False)

        success_count = sum(1 for o in outcomes if o.success)
        logger.info(
            f"[BATCH] Batch complete ({elapsed_ms(started)}ms): "
            f"{success_count} successful, {len(outcomes) - success_count} failed"
        )
        return outcomes

    # ------------------------------------------------------------------
    # Position management
    # ------------------------------------------------------------------

    def close_trade(self, order_id: Union[str, int]) -> CloseOutcome:
        """Close a position. Missing local position data is not an error."""
        started = time.perf_counter()
        order_id = str(order_id)

        try:
            logger.info(f"[TRADE] Closing position: {order_id}")
            position = self._find_position(order_id)

            raw = self.client.call("close_position", order_id, timeout=self.settings.execution_timeout)
            ensure_accepted(raw)
            raw_fields = raw if isinstance(raw, dict) else {}

            open_price = safe_float(position.get("open_price")) if position else None
            close_price = (
                (safe_float(position.get("current_price")) if position else None)
                or safe_float(raw_fields.get("close_price"))
                or safe_float(raw_fields.get("price"))
                or 0.0
            )
            profit = (
                (safe_float(position.get("profit")) if position else None)
                or safe_float(raw_fields.get("profit"))
                or 0.0
            )
            percent = round((close_price - open_price) / open_price * 100, 2) if open_price and close_price else 0.0

            outcome = CloseOutcome(
                success=True,
                order_id=order_id,
                close_price=close_price,
                profit=profit,
                profit_percent=percent,
                closed_at=utc_now(),
                execution_time_ms=elapsed_ms(started),
                broker_response=raw,
            )
            logger.info(f"[TRADE] Position closed ({outcome.execution_time_ms}ms) - ID: {order_id}")
            return outcome

        except Exception as e:
            logger.error(f"[TRADE] Failed to close order {order_id}: {e}")
            return CloseOutcome(
                success=False,
                order_id=order_id,
                execution_time_ms=elapsed_ms(started),
                error=str(e),
                error_type=type(e).__name__,
            )

    def modify_trade(
        self,
        order_id: Union[str, int],
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> ModifyOutcome:
        """Change SL/TP (absolute prices) of a position. Not retried."""
        started = time.perf_counter()
        order_id = str(order_id)

        try:
            if stop_loss is None and take_profit is None:
                raise ValidationError("Nothing to modify: stop_loss and take_profit are both empty")

            logger.info(f"[TRADE] Modifying order: {order_id} (SL: {stop_loss}, TP: {take_profit})")
            raw = self.client.call(
                "modify_order",
                order_id,
                stop_loss,
                take_profit,
                self.settings.execution_timeout,
                timeout=self.settings.execution_timeout,
            )
            ensure_accepted(raw)

            outcome = ModifyOutcome(
                success=True,
                order_id=order_id,
                stop_loss=stop_loss,
                take_profit=take_profit,
                modified_at=utc_now(),
                execution_time_ms=elapsed_ms(started),
            )
            logger.info(f"[TRADE] Order modified ({outcome.execution_time_ms}ms) - ID: {order_id}")
            return outcome

        except Exception as e:
            logger.error(f"[TRADE] Failed to modify order {order_id}: {e}")
            return ModifyOutcome(
                success=False,
                order_id=order_id,
                stop_loss=stop_loss,
                take_profit=take_profit,
                execution_time_ms=elapsed_ms(started),
                error=str(e),
                error_type=type(e).__name__,
            )

    def get_open_orders(self) -> List[OpenPosition]:
        try:
            positions = self.client.call("get_positions", timeout=self.settings.read_timeout)
        except Exception as e:
            logger.error(f"[TRADE] Failed to get open orders: {e}")
            raise
        return [OpenPosition.from_payload(p) for p in positions or []]

    def get_trade_history(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[HistoricalTrade]:
        try:
            history = self.client.call(
                "get_history_orders_by_ticket", start, end, limit or 100, timeout=self.settings.read_timeout
            )
        except Exception as e:
            logger.error(f"[TRADE] Failed to get trade history: {e}")
            raise
        return [HistoricalTrade.from_payload(h) for h in history or []]

    def get_symbol_spec(self, broker_symbol: str) -> SymbolSpec:
        """Symbol spec from the gateway, safe defaults when unavailable"""
        try:
            payload = self.client.call(
                "get_symbol_specification", broker_symbol, timeout=self.settings.read_timeout
            )
        except Exception as e:
            logger.warning(f"[TRADE] Could not get symbol specs for {broker_symbol}: {e}")
            return SymbolSpec.default()

        if not isinstance(payload, dict):
            logger.warning(f"[TRADE] Empty symbol specs for {broker_symbol}, using defaults")
            return SymbolSpec.default()
        return SymbolSpec.from_payload(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, intent: Union[TradeIntent, Dict]) -> TradeIntent:
        if isinstance(intent, dict):
            intent = TradeIntent.from_dict(intent)
        if not isinstance(intent, TradeIntent):
            raise ValidationError(f"Unsupported trade intent: {intent!r}")

        symbol = (intent.symbol or "").strip().upper()
        if not symbol:
            raise ValidationError("Symbol is required")

        side = str(intent.side or "").strip().upper()
        if side not in ("BUY", "SELL"):
            raise ValidationError(f"Invalid order side: {intent.side}")

        volume = safe_float(intent.volume)
        if volume is None or volume <= 0:
            raise ValidationError(f"Invalid volume: {intent.volume}")
        if volume > self.settings.max_lot_size:
            raise ValidationError(f"Volume {volume} exceeds maximum lot size {self.settings.max_lot_size}")

        order_kind = str(intent.order_kind or "market").strip().lower()
        if order_kind not in ("market", "limit"):
            raise ValidationError(f"Invalid order kind: {intent.order_kind}")

        entry_price = safe_float(intent.entry_price)
        if order_kind == "limit" and not entry_price:
            raise ValidationError("Limit orders require an entry price")

        stop = intent.stop if intent.stop is not None else self.settings.default_stop
        target = intent.target if intent.target is not None else self.settings.default_target

        return replace(
            intent,
            symbol=symbol,
            side=side,
            volume=volume,
            order_kind=order_kind,
            entry_price=entry_price,
            stop=StopSpec.from_value(stop),
            target=StopSpec.from_value(target),
            comment=intent.comment or "AUTO",
        )

    def _normalize_volume(self, volume: float, spec: SymbolSpec) -> float:
        min_lot = max(self.settings.min_lot_size, spec.min_lot or 0)
        max_lot = min(self.settings.max_lot_size, spec.max_lot or self.settings.max_lot_size)

        if volume < min_lot:
            logger.debug(f"[TRADE] Volume {volume} clamped up to minimum lot {min_lot}")
            volume = min_lot
        volume = max(round_to_step(volume, spec.lot_step), min_lot)

        if volume > max_lot:
            raise ValidationError(f"Volume {volume} exceeds maximum lot size {max_lot}")
        return volume

    def _submit(
        self,
        order: TradeIntent,
        broker_symbol: str,
        volume: float,
        stop_price: Optional[float],
        target_price: Optional[float],
    ) -> Dict:
        options = {
            "comment": f"{self.settings.order_comment}-{order.comment}",
            "client_id": self._client_order_id(),
            "magic": self.settings.magic_number,
            "slippage": self.settings.slippage_points,
        }
        side = order.side.lower()
        timeout = self.settings.execution_timeout

        if order.order_kind == "limit":
            return self.client.call(
                f"create_limit_{side}_order",
                broker_symbol,
                volume,
                order.entry_price,
                stop_price,
                target_price,
                options,
                timeout=timeout,
            )
        return self.client.call(
            f"create_market_{side}_order",
            broker_symbol,
            volume,
            stop_price,
            target_price,
            options,
            timeout=timeout,
        )

    def _find_position(self, order_id: str) -> Optional[Dict]:
        try:
            positions = self.client.call("get_positions", timeout=self.settings.read_timeout)
        except GatewayTimeoutError as e:
            logger.warning(f"[TRADE] Position lookup for {order_id} timed out: {e}")
            return None
        except GatewayUnavailableError:
            raise
        except Exception as e:
            logger.warning(f"[TRADE] Position lookup for {order_id} failed: {e}")
            return None

        position = next((p for p in positions or [] if str(p.get("id")) == order_id), None)
        if position is None:
            logger.debug(f"[TRADE] Position {order_id} not found locally, using broker close response")
        return position

    @staticmethod
    def _client_order_id() -> str:
        return f"TB-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"

    @staticmethod
    def _enter(stage: ExecutionStage, order: TradeIntent) -> ExecutionStage:
        logger.debug(f"[TRADE] {order.symbol} {order.side}: {stage.value}")
        return stage

    def _failed(
        self,
        intent: Any,
        order: Optional[TradeIntent],
        error: Exception,
        started: float,
        stage: ExecutionStage,
    ) -> TradeOutcome:
        execution_time = elapsed_ms(started)
        source = order or intent
        if isinstance(source, dict):
            symbol, side, volume = source.get("symbol"), source.get("side", source.get("type")), source.get("volume")
        else:
            symbol = getattr(source, "symbol", None)
            side = getattr(source, "side", None)
            volume = getattr(source, "volume", None)

        details = dict(getattr(error, "details", None) or {})
        details["stage"] = stage.value

        logger.error(f"[TRADE] Order placement failed ({execution_time}ms) at {stage.value}: {error}")
        return TradeOutcome(
            success=False,
            status=TradeStatus.FAILED,
            symbol=symbol,
            side=side,
            volume=safe_float(volume),
            execution_time_ms=execution_time,
            error=str(error),
            error_type=type(error).__name__,
            error_details=details,
        )
