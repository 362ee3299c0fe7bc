"""核心数据结构：PriceBar/Order/Position/Prediction/Signal 等。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ensemble_trader.shared.errors import OrderStateError


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class Trend(str, Enum):
    """集成预测的方向。"""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class SequenceTrend(str, Enum):
    """序列模型的方向（带 ±1% 横盘区间）。"""

    UP = "UP"
    DOWN = "DOWN"
    SIDEWAYS = "SIDEWAYS"


class RiskAction(str, Enum):
    HOLD = "HOLD"
    REDUCE = "REDUCE"
    STOP = "STOP"


class SignalAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PriceBar:
    """K 线（记录后不可变，按 timestamp 升序使用）。"""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass
class Position:
    """持仓。未实现盈亏按需计算，不缓存。"""

    symbol: str
    quantity: float
    average_price: float
    current_price: float

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def unrealized_pnl(self) -> float:
        return (self.current_price - self.average_price) * self.quantity

    @property
    def unrealized_pnl_pct(self) -> float:
        if self.average_price <= 0:
            return 0.0
        return (self.current_price - self.average_price) / self.average_price * 100


_TERMINAL = {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED}


@dataclass
class Order:
    """订单。PENDING 只能迁移一次到 FILLED/CANCELLED/REJECTED。"""

    id: str
    symbol: str
    side: Side
    quantity: float
    requested_price: float
    status: OrderStatus = OrderStatus.PENDING
    filled_price: float | None = None
    net_price: float = 0.0
    commission: float = 0.0
    slippage: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    filled_at: datetime | None = None
    reject_reason: str | None = None
    realized_pnl: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def _transition(self, status: OrderStatus) -> None:
        if self.status is not OrderStatus.PENDING:
            raise OrderStateError(f"order {self.id} already {self.status.value}")
        self.status = status

    def mark_filled(self, *, filled_price: float, realized_pnl: float = 0.0, ts: datetime | None = None) -> None:
        self._transition(OrderStatus.FILLED)
        self.filled_price = filled_price
        self.realized_pnl = realized_pnl
        self.filled_at = ts or utcnow()

    def mark_cancelled(self) -> None:
        self._transition(OrderStatus.CANCELLED)

    def mark_rejected(self, reason: str) -> None:
        self._transition(OrderStatus.REJECTED)
        self.reject_reason = reason


@dataclass
class AccountLedger:
    cash_balance: float
    total_commission_paid: float = 0.0


@dataclass(frozen=True)
class AccountSnapshot:
    """账户快照（拷贝，不随后续成交变化）。"""

    cash_balance: float
    total_commission_paid: float
    positions_value: float
    total_assets: float
    realized_pnl: float
    unrealized_pnl: float
    positions: tuple[Position, ...] = ()


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float


@dataclass(frozen=True)
class Prediction:
    predicted_price: float
    confidence: float
    trend: Trend
    confidence_interval: ConfidenceInterval
    model_weights: dict[str, float]
    reference_price: float | None = None
    model_name: str = "ensemble"
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Signal:
    """策略输出（回测用）。quantity<=0 表示“只给方向”，由风控定量。"""

    symbol: str
    action: SignalAction
    quantity: float = 0.0
    reason: str | None = None
