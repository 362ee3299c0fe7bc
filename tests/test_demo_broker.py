import threading

import pytest

from ensemble_trader.algo.risk.circuit_breaker import CircuitBreaker
from ensemble_trader.algo.risk.manager import RiskManager
from ensemble_trader.broker.demo_broker import DemoBroker
from ensemble_trader.shared.config.schema import RiskParameters
from ensemble_trader.shared.errors import OrderStateError
from ensemble_trader.shared.models.models import OrderStatus, Position, Side

BIG = RiskParameters(max_position_size=10_000_000)


def _broker(**kwargs) -> DemoBroker:
    kwargs.setdefault("risk_manager", RiskManager(BIG))
    return DemoBroker(**kwargs)


def test_buy_applies_slippage_and_debits_cash():
    broker = _broker()
    order = broker.place_order("7203", Side.BUY, 100, 2500.0)
    assert order.status is OrderStatus.FILLED
    assert order.id == "demo_000001"
    assert abs(order.filled_price - 2502.5) < 1e-9
    assert abs(order.slippage - 2.5) < 1e-9
    assert order.commission == 0.0
    assert abs(broker.balance - (1_000_000 - 250_250)) < 1e-6

    pos = broker.get_position("7203")
    assert pos.quantity == 100
    assert abs(pos.average_price - 2502.5) < 1e-9
    assert abs(broker.total_assets - 1_000_000) < 1e-6


def test_round_trip_closes_position_and_realizes_pnl():
    broker = _broker(slippage_rate=0.0)
    broker.place_order("7203", "BUY", 100, 2500.0)
    sell = broker.place_order("7203", "SELL", 100, 2600.0)
    assert sell.status is OrderStatus.FILLED
    assert sell.realized_pnl == 10_000.0
    assert broker.get_position("7203") is None
    assert broker.get_positions() == []
    assert broker.balance == 1_010_000.0
    assert broker.realized_pnl == 10_000.0


def test_partial_sell_keeps_average_price():
    broker = _broker(slippage_rate=0.0)
    broker.place_order("7203", Side.BUY, 100, 1000.0)
    broker.place_order("7203", Side.BUY, 100, 2000.0)
    assert broker.get_position("7203").average_price == 1500.0
    broker.place_order("7203", Side.SELL, 50, 1800.0)
    pos = broker.get_position("7203")
    assert pos.quantity == 150
    assert pos.average_price == 1500.0


def test_commission_is_charged_and_tracked():
    broker = _broker(slippage_rate=0.0, fee_schedule="traditional")
    order = broker.place_order("7203", Side.BUY, 10, 1000.0)
    assert order.commission == 108.0
    assert broker.balance == 1_000_000 - 10_000 - 108.0
    assert broker.total_commission_paid == 108.0
    # 均价不含手续费
    assert broker.get_position("7203").average_price == 1000.0
    sell = broker.place_order("7203", Side.SELL, 10, 1000.0)
    assert sell.realized_pnl == -108.0


def test_insufficient_funds_rejected_without_state_change():
    broker = _broker(initial_cash=100_000)
    order = broker.place_order("7203", Side.BUY, 100, 2500.0)
    assert order.status is OrderStatus.REJECTED
    assert order.reject_reason.startswith("Insufficient funds")
    assert broker.balance == 100_000
    assert broker.get_positions() == []
    assert broker.get_orders() == [order]


def test_insufficient_position_rejected():
    broker = _broker()
    order = broker.place_order("7203", Side.SELL, 1, 2500.0)
    assert order.status is OrderStatus.REJECTED
    assert "Insufficient position" in order.reject_reason


def test_risk_limit_rejects_oversized_buy():
    broker = DemoBroker()  # max_position_size = 100,000
    order = broker.place_order("7203", Side.BUY, 100, 2500.0)
    assert order.status is OrderStatus.REJECTED
    assert "max_position_size" in order.reject_reason
    assert broker.balance == 1_000_000


def test_invalid_order_arguments():
    broker = _broker()
    with pytest.raises(ValueError):
        broker.place_order("7203", Side.BUY, 0, 2500.0)
    with pytest.raises(ValueError):
        broker.place_order("7203", Side.BUY, 10, -1.0)
    with pytest.raises(ValueError):
        broker.place_order("7203", "HOLD", 10, 100.0)
    assert broker.get_orders() == []


def test_pending_orders_fill_and_cancel():
    broker = _broker(auto_fill=False, slippage_rate=0.0)
    first = broker.place_order("7203", Side.BUY, 10, 1000.0)
    second = broker.place_order("7203", Side.BUY, 10, 1000.0)
    assert first.status is OrderStatus.PENDING
    assert not first.is_terminal
    assert broker.balance == 1_000_000

    filled = broker.fill_order(first.id)
    assert filled.status is OrderStatus.FILLED
    assert filled.is_terminal
    assert broker.get_order(first.id).status is OrderStatus.FILLED
    assert broker.balance == 990_000
    with pytest.raises(OrderStateError):
        broker.fill_order(first.id)

    assert broker.cancel_order(second.id)
    assert broker.get_order(second.id).status is OrderStatus.CANCELLED
    assert not broker.cancel_order(second.id)
    assert not broker.cancel_order("demo_999999")
    with pytest.raises(KeyError):
        broker.get_order("demo_999999")


def test_pending_fill_rechecks_funds():
    broker = _broker(initial_cash=15_000, auto_fill=False, slippage_rate=0.0)
    a = broker.place_order("7203", Side.BUY, 10, 1000.0)
    b = broker.place_order("7203", Side.BUY, 10, 1000.0)
    broker.fill_order(a.id)
    assert broker.fill_order(b.id).status is OrderStatus.REJECTED
    assert broker.balance == 5_000


def test_pending_fill_rechecks_position_limit():
    broker = DemoBroker(
        risk_manager=RiskManager(RiskParameters(max_position_size=100_000)),
        slippage_rate=0.0,
        auto_fill=False,
    )
    a = broker.place_order("7203", Side.BUY, 30, 2500.0)
    b = broker.place_order("7203", Side.BUY, 30, 2500.0)
    assert (a.status, b.status) == (OrderStatus.PENDING, OrderStatus.PENDING)

    assert broker.fill_order(a.id).status is OrderStatus.FILLED
    second = broker.fill_order(b.id)
    assert second.status is OrderStatus.REJECTED
    assert "max_position_size" in second.reject_reason
    assert broker.get_position("7203").market_value == 75_000.0
    assert broker.balance == 925_000.0


def test_pending_buy_blocked_once_breaker_trips():
    risk = RiskManager(RiskParameters(max_position_size=10_000_000, max_daily_loss=100))
    cb = CircuitBreaker(risk)
    broker = DemoBroker(risk_manager=risk, slippage_rate=0.0, circuit_breaker=cb, auto_fill=False)
    broker.fill_order(broker.place_order("7203", Side.BUY, 10, 1000.0).id)
    pending = broker.place_order("7203", Side.BUY, 1, 1000.0)
    assert pending.status is OrderStatus.PENDING

    broker.update_price("7203", 900.0)
    assert broker.daily_pnl == -1000.0

    order = broker.fill_order(pending.id)
    assert order.status is OrderStatus.REJECTED
    assert order.reject_reason.startswith("circuit breaker tripped")
    assert cb.tripped
    assert broker.get_position("7203").quantity == 10
    assert broker.balance == 990_000.0

    # 平仓挂单照常成交
    sell = broker.place_order("7203", Side.SELL, 10, 900.0)
    assert broker.fill_order(sell.id).status is OrderStatus.FILLED


def test_orders_listed_newest_first():
    broker = _broker()
    ids = [broker.place_order("7203", Side.BUY, 1, 100.0).id for _ in range(3)]
    assert [o.id for o in broker.get_orders()] == list(reversed(ids))


def test_circuit_breaker_blocks_new_buys():
    risk = RiskManager(RiskParameters(max_position_size=10_000_000, max_daily_loss=100))
    cb = CircuitBreaker(risk)
    broker = DemoBroker(risk_manager=risk, slippage_rate=0.0, circuit_breaker=cb)
    broker.place_order("7203", Side.BUY, 10, 1000.0)
    broker.update_price("7203", 980.0)
    assert broker.daily_pnl == -200.0

    blocked = broker.place_order("7203", Side.BUY, 1, 980.0)
    assert blocked.status is OrderStatus.REJECTED
    assert blocked.reject_reason.startswith("circuit breaker tripped")
    assert cb.tripped

    # 平仓不受熔断影响
    assert broker.place_order("7203", Side.SELL, 10, 980.0).status is OrderStatus.FILLED

    broker.start_new_day()
    assert broker.place_order("7203", Side.BUY, 1, 980.0).status is OrderStatus.REJECTED
    cb.reset()
    assert broker.place_order("7203", Side.BUY, 1, 980.0).status is OrderStatus.FILLED


def test_snapshot_and_risk_report():
    broker = _broker(slippage_rate=0.0)
    broker.place_order("7203", Side.BUY, 100, 1000.0)
    broker.update_price("7203", 1100.0)
    snap = broker.snapshot()
    assert snap.positions_value == 110_000.0
    assert snap.unrealized_pnl == 10_000.0
    assert snap.total_assets == 1_010_000.0
    assert broker.peak_equity == 1_010_000.0

    report = broker.risk_report()
    assert len(report.positions) == 1
    assert report.daily_loss_ok


def test_position_copies_are_detached():
    broker = _broker(slippage_rate=0.0)
    broker.place_order("7203", Side.BUY, 10, 1000.0)
    pos = broker.get_position("7203")
    pos.quantity = 999
    assert broker.get_position("7203").quantity == 10


def test_update_risk_parameters_and_reset():
    broker = DemoBroker(slippage_rate=0.0)
    assert broker.place_order("7203", Side.BUY, 100, 2500.0).status is OrderStatus.REJECTED
    broker.update_risk_parameters(max_position_size=1_000_000)
    assert broker.place_order("7203", Side.BUY, 100, 2500.0).status is OrderStatus.FILLED
    assert broker.position_size(1000.0, 950.0) == 300

    broker.reset()
    assert broker.balance == 1_000_000
    assert broker.get_orders() == []
    assert broker.place_order("7203", Side.BUY, 1, 100.0).id == "demo_000001"


def test_order_copies_cannot_bypass_transitions():
    broker = _broker(auto_fill=False, slippage_rate=0.0)
    order = broker.place_order("7203", Side.BUY, 10, 1000.0)
    order.status = OrderStatus.FILLED
    broker.get_order(order.id).status = OrderStatus.CANCELLED
    broker.get_orders()[0].status = OrderStatus.REJECTED
    assert broker.get_order(order.id).status is OrderStatus.PENDING

    assert broker.fill_order(order.id).status is OrderStatus.FILLED
    assert broker.balance == 990_000


def test_unrealized_pnl_pct():
    broker = _broker(slippage_rate=0.0)
    broker.place_order("7203", Side.BUY, 10, 1000.0)
    broker.update_price("7203", 1100.0)
    assert abs(broker.get_position("7203").unrealized_pnl_pct - 10.0) < 1e-9
    assert Position("X", 0, 0.0, 50.0).unrealized_pnl_pct == 0.0


def test_concurrent_orders_keep_ledger_consistent():
    # 无滑点、零手续费、价格不变：现金 + 持仓成本 恒等于初始资金
    broker = _broker(slippage_rate=0.0, fee_schedule="sbi")
    errors = []
    barrier = threading.Barrier(8)

    def trader(seed):
        try:
            barrier.wait()
            for i in range(150):
                side = Side.BUY if (i + seed) % 3 else Side.SELL
                qty = 1 + (i * seed) % 5
                broker.place_order("7203", side, qty, 1000.0)
                pos = broker.get_position("7203")
                if pos is not None and pos.quantity < 0:
                    errors.append(f"negative position {pos.quantity}")
        except Exception as exc:  # pragma: no cover
            errors.append(exc)

    threads = [threading.Thread(target=trader, args=(s,)) for s in range(1, 9)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []

    orders = broker.get_orders()
    assert len(orders) == 8 * 150
    assert len({o.id for o in orders}) == len(orders)

    filled = [o for o in orders if o.status is OrderStatus.FILLED]
    bought = sum(o.quantity for o in filled if o.side is Side.BUY)
    sold = sum(o.quantity for o in filled if o.side is Side.SELL)
    pos = broker.get_position("7203")
    held = pos.quantity if pos else 0.0
    assert held == bought - sold >= 0
    cost_basis = held * pos.average_price if pos else 0.0
    assert broker.balance + cost_basis == 1_000_000
    assert broker.realized_pnl == 0.0
    # 价格不变时只会因资金或持仓不足被拒
    assert all(
        o.reject_reason.startswith("Insufficient")
        for o in orders
        if o.status is OrderStatus.REJECTED
    )
