"""引擎基类。

回测（以及以后的逐 K 线模拟盘循环）都以 K 线序列为输入，
对外统一返回 `EngineResult`。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

from ensemble_trader.shared.models.models import PriceBar


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果。summary 为可直接打印的指标 dict。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    @staticmethod
    def require_ordered(bars: Sequence[PriceBar]) -> list[PriceBar]:
        """校验 K 线按时间非降序，返回列表拷贝。"""
        bars = list(bars)
        for prev, cur in zip(bars, bars[1:]):
            if cur.timestamp < prev.timestamp:
                raise ValueError(
                    f"bars must be ordered by timestamp ascending ({cur.timestamp} after {prev.timestamp})"
                )
        return bars

    @abstractmethod
    def run(self, bars: Sequence[PriceBar], symbol: str | None = None) -> EngineResult:
        raise NotImplementedError
