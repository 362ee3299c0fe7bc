"""模拟盘 Broker。

在内存中维护现金、持仓与订单日志，按 滑点 -> 手续费 -> 资金/持仓检查 -> 风控闸门 -> 成交
的顺序处理订单。同一账户的所有状态变更都在一把 RLock 下串行执行。
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime

from ensemble_trader.algo.risk.circuit_breaker import CircuitBreaker
from ensemble_trader.algo.risk.manager import RiskManager, RiskReport
from ensemble_trader.broker.execution.fees import FeeSchedule
from ensemble_trader.broker.execution.simulator import FillSimulator, Quote
from ensemble_trader.broker.execution.slippage_models import PercentSlippageModel
from ensemble_trader.shared.errors import OrderRejectedError, OrderStateError, RiskLimitExceededError
from ensemble_trader.shared.models.models import (
    AccountLedger,
    AccountSnapshot,
    Order,
    Position,
    Side,
    utcnow,
)
from ensemble_trader.shared.utils.logging import setup_logger


class DemoBroker:
    """模拟盘撮合器（单账户）。

    Parameters
    ----------
    initial_cash:
        初始资金（日元）。
    risk_manager:
        下单前风控；缺省使用默认 `RiskParameters`。
    slippage_rate:
        比例滑点（0.001 = 0.1%）。
    fee_schedule:
        手续费表名称或实例（未知名称回退 sbi）。
    auto_fill:
        True 时下单即成交；False 时订单停在 PENDING，等待 `fill_order`/`cancel_order`。
    circuit_breaker:
        可选熔断器；触发后拒绝所有 BUY。
    """

    def __init__(
        self,
        initial_cash: float = 1_000_000.0,
        risk_manager: RiskManager | None = None,
        slippage_rate: float = 0.001,
        fee_schedule: str | FeeSchedule = "sbi",
        auto_fill: bool = True,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        if initial_cash < 0:
            raise ValueError("initial_cash must be >= 0")
        self.initial_cash = float(initial_cash)
        self.risk = risk_manager or RiskManager()
        self.auto_fill = auto_fill
        self.circuit_breaker = circuit_breaker
        self.logger = setup_logger("demo_broker")

        self._sim = FillSimulator(fee_schedule=fee_schedule, slippage=PercentSlippageModel(slippage_rate))
        self._lock = threading.RLock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._ledger = AccountLedger(cash_balance=self.initial_cash)
        self._positions: dict[str, Position] = {}
        self._orders: dict[str, Order] = {}
        self._quotes: dict[str, Quote] = {}
        self._realized_pnl = 0.0
        self._day_start_equity = self.initial_cash
        self._peak_equity = self.initial_cash
        self._ids = itertools.count(1)

    # ---- 账户视图 ----

    @property
    def balance(self) -> float:
        return self._ledger.cash_balance

    @property
    def total_commission_paid(self) -> float:
        return self._ledger.total_commission_paid

    @property
    def realized_pnl(self) -> float:
        return self._realized_pnl

    @property
    def unrealized_pnl(self) -> float:
        with self._lock:
            return sum(p.unrealized_pnl for p in self._positions.values())

    @property
    def total_assets(self) -> float:
        with self._lock:
            return self._ledger.cash_balance + sum(p.market_value for p in self._positions.values())

    @property
    def daily_pnl(self) -> float:
        return self.total_assets - self._day_start_equity

    @property
    def peak_equity(self) -> float:
        return self._peak_equity

    def get_position(self, symbol: str) -> Position | None:
        with self._lock:
            pos = self._positions.get(symbol)
            return replace(pos) if pos is not None else None

    def get_positions(self) -> list[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values()]

    def _order(self, order_id: str) -> Order:
        if order_id not in self._orders:
            raise KeyError(f"Unknown order: {order_id}")
        return self._orders[order_id]

    def get_order(self, order_id: str) -> Order:
        """返回订单拷贝；状态只能经由 fill/cancel 迁移。"""
        with self._lock:
            return replace(self._order(order_id))

    def get_orders(self) -> list[Order]:
        """订单日志（拷贝），最新在前。"""
        with self._lock:
            return [replace(o) for o in reversed(self._orders.values())]

    def quote(self, side: Side | str, quantity: float, price: float) -> Quote:
        """按当前滑点与手续费表试算，不下单。"""
        return self._sim.quote(side=Side(side), quantity=quantity, price=price)

    def snapshot(self) -> AccountSnapshot:
        with self._lock:
            positions = tuple(replace(p) for p in self._positions.values())
            positions_value = sum(p.market_value for p in positions)
            return AccountSnapshot(
                cash_balance=self._ledger.cash_balance,
                total_commission_paid=self._ledger.total_commission_paid,
                positions_value=positions_value,
                total_assets=self._ledger.cash_balance + positions_value,
                realized_pnl=self._realized_pnl,
                unrealized_pnl=sum(p.unrealized_pnl for p in positions),
                positions=positions,
            )

    # ---- 下单 ----

    def _next_id(self) -> str:
        return f"demo_{next(self._ids):06d}"

    def _pre_trade(self, order: Order, quote: Quote) -> None:
        self._sim.check(quote=quote, cash=self._ledger.cash_balance, position=self._positions.get(order.symbol))
        if order.side is not Side.BUY:
            return
        equity = self.total_assets
        daily_pnl = equity - self._day_start_equity
        if self.circuit_breaker is not None and not self.circuit_breaker.check(
            daily_pnl=daily_pnl, equity=equity, peak_equity=self._peak_equity
        ):
            raise RiskLimitExceededError(f"circuit breaker tripped: {self.circuit_breaker.last_trigger_reason}")
        held = self._positions.get(order.symbol)
        self.risk.check_order(
            order.side,
            order.quantity,
            quote.net_price,
            position_quantity=held.quantity if held else 0.0,
            daily_pnl=daily_pnl,
            equity=equity,
            peak_equity=self._peak_equity,
        )

    def _reject(self, order: Order, exc: OrderRejectedError) -> Order:
        order.mark_rejected(exc.reason)
        self._quotes.pop(order.id, None)
        self.logger.warning("Order %s rejected (%s): %s", order.id, exc.code, exc.reason)
        return order

    def _execute(self, order: Order, quote: Quote, ts: datetime | None) -> None:
        fill = self._sim.fill(
            symbol=order.symbol,
            quote=quote,
            cash=self._ledger.cash_balance,
            position=self._positions.get(order.symbol),
        )
        self._ledger.cash_balance = fill.cash
        self._ledger.total_commission_paid += fill.commission
        if fill.position is None:
            self._positions.pop(order.symbol, None)
        else:
            self._positions[order.symbol] = fill.position
        self._realized_pnl += fill.realized_pnl
        self._quotes.pop(order.id, None)
        order.mark_filled(filled_price=quote.net_price, realized_pnl=fill.realized_pnl, ts=ts)
        self._peak_equity = max(self._peak_equity, self.total_assets)
        self.logger.info(
            "Order %s filled: %s %s x%g @ %.4f (fee %.2f)",
            order.id,
            order.side.value,
            order.symbol,
            order.quantity,
            quote.net_price,
            fill.commission,
        )

    def place_order(
        self,
        symbol: str,
        side: Side | str,
        quantity: float,
        price: float,
        ts: datetime | None = None,
    ) -> Order:
        """下单，返回订单拷贝。

        被拒绝时返回 REJECTED 订单（含 reject_reason），现金与持仓不变。

        Raises
        ------
        ValueError
            数量或价格非正。
        """
        side = Side(side)
        if not quantity > 0:
            raise ValueError("quantity must be > 0")
        if not price > 0:
            raise ValueError("price must be > 0")

        with self._lock:
            quote = self._sim.quote(side=side, quantity=quantity, price=price)
            order = Order(
                id=self._next_id(),
                symbol=symbol,
                side=side,
                quantity=float(quantity),
                requested_price=float(price),
                net_price=quote.net_price,
                commission=quote.commission.total,
                slippage=quote.slippage,
                created_at=ts or utcnow(),
            )
            self._orders[order.id] = order
            try:
                self._pre_trade(order, quote)
            except OrderRejectedError as exc:
                return replace(self._reject(order, exc))

            self._quotes[order.id] = quote
            if self.auto_fill:
                self._execute(order, quote, ts)
            return replace(order)

    def fill_order(self, order_id: str, ts: datetime | None = None) -> Order:
        """成交一笔 PENDING 订单。

        资金/持仓、熔断与风控在成交时按当时的账户状态重新检查，失败转 REJECTED。
        """
        with self._lock:
            order = self._order(order_id)
            if order.is_terminal:
                raise OrderStateError(f"order {order_id} already {order.status.value}")
            quote = self._quotes[order_id]
            try:
                self._pre_trade(order, quote)
            except OrderRejectedError as exc:
                return replace(self._reject(order, exc))
            self._execute(order, quote, ts)
            return replace(order)

    def cancel_order(self, order_id: str) -> bool:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.is_terminal:
                return False
            order.mark_cancelled()
            self._quotes.pop(order_id, None)
            return True

    # ---- 行情与风控 ----

    def update_price(self, symbol: str, price: float) -> None:
        """按最新价重估持仓（未实现盈亏随之变化）。"""
        with self._lock:
            pos = self._positions.get(symbol)
            if pos is None:
                return
            pos.current_price = float(price)
            self._peak_equity = max(self._peak_equity, self.total_assets)

    def start_new_day(self) -> None:
        """以当前总资产作为新交易日的日内盈亏基准。"""
        with self._lock:
            self._day_start_equity = self.total_assets

    def risk_report(self) -> RiskReport:
        with self._lock:
            return self.risk.risk_report(list(self._positions.values()), self._ledger.cash_balance, self.daily_pnl)

    def position_size(self, entry_price: float, stop_price: float, risk_percent: float = 2.0) -> int:
        return self.risk.position_size(self.balance, entry_price, stop_price, risk_percent)

    def update_risk_parameters(self, **changes) -> None:
        with self._lock:
            self.risk = self.risk.with_parameters(**changes)
            if self.circuit_breaker is not None:
                self.circuit_breaker.risk = self.risk

    def reset(self) -> None:
        """清空订单与持仓，恢复初始资金。"""
        with self._lock:
            self._reset_state()
            if self.circuit_breaker is not None:
                self.circuit_breaker.reset()
