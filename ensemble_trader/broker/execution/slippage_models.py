"""滑点模型。"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ensemble_trader.shared.models.models import Side


class SlippageModel(ABC):
    @abstractmethod
    def apply(self, *, price: float, side: Side) -> float:
        raise NotImplementedError


class PercentSlippageModel(SlippageModel):
    """按成交价比例施加滑点。买单抬高、卖单压低。"""

    def __init__(self, rate: float = 0.0):
        if rate < 0:
            raise ValueError("slippage rate must be >= 0")
        self.rate = float(rate)

    def apply(self, *, price: float, side: Side) -> float:
        if self.rate == 0.0:
            return float(price)
        delta = float(price) * self.rate
        return float(price) + delta if Side(side) is Side.BUY else float(price) - delta
