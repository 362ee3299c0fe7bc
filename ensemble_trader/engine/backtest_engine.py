"""单次回测引擎（BacktestEngine）。

目标是“一眼能看懂”：配置 → K 线 → 策略 → 风控定量 → 模拟撮合 → 权益曲线/指标。
撮合完全复用 DemoBroker，回测与模拟盘的成交/手续费/滑点逻辑不会漂移。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, NamedTuple, Sequence

from ensemble_trader.algo.risk.manager import RiskManager
from ensemble_trader.algo.strategy.base import StrategyContext
from ensemble_trader.algo.strategy.registry import build_strategy
from ensemble_trader.analysis.metrics import compute_equity_metrics, compute_trade_metrics
from ensemble_trader.broker.demo_broker import DemoBroker
from ensemble_trader.engine.base_engine import BaseEngine, EngineResult
from ensemble_trader.shared.config.schema import AppConfig
from ensemble_trader.shared.models.models import (
    AccountSnapshot,
    Order,
    OrderStatus,
    Position,
    PriceBar,
    Side,
    Signal,
    SignalAction,
)
from ensemble_trader.shared.utils.logging import setup_logger

StrategyFn = Callable[[PriceBar, StrategyContext], Sequence[Signal]]


class EquityPoint(NamedTuple):
    timestamp: datetime
    equity: float
    drawdown_pct: float


@dataclass(frozen=True)
class BacktestResult(EngineResult):
    """回测结果。`summary` 与 `performance` 是同一份指标。"""

    trades: tuple[Order, ...] = ()
    equity_curve: tuple[EquityPoint, ...] = ()
    positions: tuple[Position, ...] = ()
    account: AccountSnapshot | None = None

    @property
    def performance(self) -> dict:
        return self.summary


def build_performance(
    *,
    initial_cash: float,
    equity_curve: Sequence[EquityPoint],
    orders: Sequence[Order],
) -> dict:
    """汇总回测绩效。

    收益/回撤/胜率均为百分比；胜率按平仓（SELL 成交）已实现盈亏 > 0 计。
    """
    final_equity = equity_curve[-1].equity if equity_curve else initial_cash
    total_return = final_equity - initial_cash
    filled = [o for o in orders if o.status is OrderStatus.FILLED]
    closing = [o.realized_pnl for o in filled if o.side is Side.SELL]

    eq = compute_equity_metrics([(p.timestamp, p.equity) for p in equity_curve])
    tm = compute_trade_metrics(closing)
    return {
        "initial_cash": initial_cash,
        "final_equity": final_equity,
        "total_return": total_return,
        "total_return_pct": total_return / initial_cash * 100 if initial_cash else 0.0,
        "max_drawdown_pct": max((p.drawdown_pct for p in equity_curve), default=0.0),
        "win_rate": tm["win_rate"] * 100,
        "total_trades": len(filled),
        "closed_trades": tm["total_trades"],
        "winning_trades": tm["winning_trades"],
        "losing_trades": tm["losing_trades"],
        "rejected_orders": sum(1 for o in orders if o.status is OrderStatus.REJECTED),
        "avg_win": tm["avg_win"],
        "avg_loss": tm["avg_loss"],
        "largest_win": tm["largest_win"],
        "largest_loss": tm["largest_loss"],
        "profit_factor": tm["profit_factor"],
        "sharpe": eq["sharpe"],
    }


class BacktestEngine(BaseEngine):
    """K 线驱动的回测引擎。

    Parameters
    ----------
    config:
        应用配置（风控参数、撮合参数、回测参数）。
    strategy:
        任意 `(bar, context) -> [Signal]` 可调用对象；缺省按 `config.backtest.strategy` 构建。
    risk_manager:
        覆盖按 `config.risk` 构建的风控。
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        strategy: StrategyFn | None = None,
        risk_manager: RiskManager | None = None,
    ):
        self.config = config or AppConfig()
        self.bt_cfg = self.config.backtest
        self.strategy = strategy or build_strategy(self.bt_cfg.strategy, self.config)
        self.risk = risk_manager or RiskManager(self.config.risk)
        self.logger = setup_logger("backtest")
        self.broker: DemoBroker | None = None

    @property
    def initial_cash(self) -> float:
        if self.bt_cfg.initial_cash is not None:
            return float(self.bt_cfg.initial_cash)
        return float(self.config.execution.initial_cash)

    def _build_broker(self) -> DemoBroker:
        ex = self.config.execution
        return DemoBroker(
            initial_cash=self.initial_cash,
            risk_manager=self.risk,
            slippage_rate=ex.slippage_rate,
            fee_schedule=ex.fee_schedule,
            auto_fill=True,
        )

    def _buy_quantity(self, broker: DemoBroker, signal: Signal, symbol: str, price: float) -> int:
        """BUY 定量：信号数量 / 默认数量，再受风险仓位、持仓上限与可用现金（含手续费）约束。"""
        entry = price * (1 + self.config.execution.slippage_rate)
        held = broker.get_position(symbol)
        held_value = held.quantity * entry if held else 0.0

        if signal.quantity > 0:
            qty = float(signal.quantity)
        elif self.bt_cfg.size_by_risk:
            qty = math.inf
        else:
            qty = float(self.bt_cfg.default_quantity)

        if self.bt_cfg.size_by_risk:
            qty = min(qty, broker.position_size(entry, self.risk.stop_loss_price(entry)))
        capacity = math.floor(max(0.0, self.risk.params.max_position_size - held_value) / entry)
        affordable = math.floor(broker.balance / entry)
        qty = int(max(0, min(qty, capacity, affordable)))
        # 手续费也要从现金里出
        while qty > 0 and broker.quote(Side.BUY, qty, price).required_cash > broker.balance:
            qty -= 1
        return qty

    def _execute(self, broker: DemoBroker, signal: Signal, symbol: str, bar: PriceBar) -> Order | None:
        action = SignalAction(signal.action)
        if action is SignalAction.HOLD:
            return None
        if action is SignalAction.BUY:
            qty: float = self._buy_quantity(broker, signal, symbol, bar.close)
            side = Side.BUY
        else:
            held = broker.get_position(symbol)
            if held is None:
                return None
            qty = min(signal.quantity, held.quantity) if signal.quantity > 0 else held.quantity
            side = Side.SELL
        if qty <= 0:
            self.logger.debug("Skip %s at %s: sized to zero", action.value, bar.timestamp)
            return None
        return broker.place_order(symbol, side, qty, bar.close, ts=bar.timestamp)

    def run(self, bars: Sequence[PriceBar], symbol: str | None = None) -> BacktestResult:
        symbol = symbol or self.bt_cfg.symbol
        bars = self.require_ordered(bars)

        broker = self._build_broker()
        self.broker = broker
        history: list[PriceBar] = []
        equity_curve: list[EquityPoint] = []
        peak = broker.total_assets
        current_day: date | None = None

        for bar in bars:
            history.append(bar)
            day = bar.timestamp.date()
            if current_day is not None and day != current_day:
                broker.start_new_day()
            current_day = day

            broker.update_price(symbol, bar.close)
            ctx = StrategyContext(
                symbol=symbol,
                history=history,
                position=broker.get_position(symbol),
                cash=broker.balance,
            )
            for signal in self.strategy(bar, ctx) or ():
                self._execute(broker, signal, symbol, bar)
            broker.update_price(symbol, bar.close)

            equity = broker.total_assets
            peak = max(peak, equity)
            drawdown = (peak - equity) / peak * 100 if peak > 0 else 0.0
            equity_curve.append(EquityPoint(bar.timestamp, equity, drawdown))

        orders = list(reversed(broker.get_orders()))
        performance = build_performance(
            initial_cash=self.initial_cash,
            equity_curve=equity_curve,
            orders=orders,
        )
        self.logger.info(f"Backtest summary: {performance}")
        return BacktestResult(
            summary=performance,
            artifacts={"symbol": symbol, "bars": len(bars)},
            trades=tuple(orders),
            equity_curve=tuple(equity_curve),
            positions=tuple(broker.get_positions()),
            account=broker.snapshot(),
        )
