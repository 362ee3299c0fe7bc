"""简单均线交叉策略。"""

from collections import deque
from typing import Deque

from ensemble_trader.shared.models.models import PriceBar, Signal, SignalAction

from .base import Strategy, StrategyContext


class SimpleMAStrategy(Strategy):
    """简单移动均线交叉策略。

    Parameters
    ----------
    short_window:
        短期均线窗口。
    long_window:
        长期均线窗口。
    min_ma_diff:
        触发信号的最小均线差（去抖动）。
    """

    def __init__(self, short_window: int = 5, long_window: int = 20, min_ma_diff: float = 0.0):
        if not 0 < short_window < long_window:
            raise ValueError("require 0 < short_window < long_window")
        self.short_window = short_window
        self.long_window = long_window
        self.min_ma_diff = min_ma_diff
        self.prices: Deque[float] = deque(maxlen=long_window)
        self.last_signal: str | None = None  # "long" / "short" / None

    def on_bar(self, bar: PriceBar, context: StrategyContext) -> list[Signal]:
        """输入 K 线输出 MA 交叉信号（数量留空，由回测引擎按风控定量）。"""
        self.prices.append(bar.close)
        if len(self.prices) < self.long_window:
            return []

        short_ma = sum(list(self.prices)[-self.short_window:]) / self.short_window
        long_ma = sum(self.prices) / len(self.prices)

        # 信号强度过滤
        if abs(short_ma - long_ma) <= self.min_ma_diff:
            return []

        signals: list[Signal] = []

        if short_ma > long_ma and self.last_signal != "long":
            signals.append(Signal(symbol=context.symbol, action=SignalAction.BUY, reason="ma_cross_up"))
            self.last_signal = "long"
        elif short_ma < long_ma and self.last_signal != "short":
            if context.position is not None:
                signals.append(Signal(symbol=context.symbol, action=SignalAction.SELL, reason="ma_cross_down"))
            self.last_signal = "short"

        return signals
