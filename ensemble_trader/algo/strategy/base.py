from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from ensemble_trader.shared.models.models import Position, PriceBar, Signal


@dataclass(frozen=True)
class StrategyContext:
    """回测时传给策略的只读上下文。history 含当前 bar。"""

    symbol: str
    history: Sequence[PriceBar]
    position: Position | None
    cash: float


class Strategy(ABC):
    @abstractmethod
    def on_bar(self, bar: PriceBar, context: StrategyContext) -> list[Signal]:
        """
        输入一根 K 线，输出 0~N 个信号。
        """
        ...

    def __call__(self, bar: PriceBar, context: StrategyContext) -> list[Signal]:
        return self.on_bar(bar, context)
