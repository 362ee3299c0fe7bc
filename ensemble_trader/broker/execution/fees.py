"""券商分档手续费（含 8% 消费税，税额向下取整到整日元）。"""

from __future__ import annotations

import math
from dataclasses import dataclass

TAX_RATE = 0.08


@dataclass(frozen=True)
class FeeBand:
    """成交额区间 [min_amount, max_amount) 对应的费率。"""

    min_amount: float
    max_amount: float
    rate: float


@dataclass(frozen=True)
class CommissionBreakdown:
    base: float
    tax: float
    total: float


# 网络券商常见的 8 档区间
_BAND_EDGES = (0, 100_000, 300_000, 500_000, 1_000_000, 3_000_000, 5_000_000, 10_000_000, math.inf)


def _bands(rates: tuple[float, ...]) -> tuple[FeeBand, ...]:
    return tuple(FeeBand(lo, hi, r) for lo, hi, r in zip(_BAND_EDGES[:-1], _BAND_EDGES[1:], rates))


@dataclass(frozen=True)
class FeeSchedule:
    name: str
    min_fee: float
    max_fee: float
    bands: tuple[FeeBand, ...]
    tax_rate: float = TAX_RATE

    def commission(self, amount: float) -> CommissionBreakdown:
        """按成交额所在档位计费，再夹到 [min_fee, max_fee]。"""
        base = 0.0
        for band in self.bands:
            if band.min_amount <= amount < band.max_amount:
                base = amount * band.rate
                break
        base = min(max(base, self.min_fee), self.max_fee)
        tax = float(math.floor(base * self.tax_rate))
        return CommissionBreakdown(base=base, tax=tax, total=base + tax)

    def round_trip(self, buy_amount: float, sell_amount: float) -> float:
        """买卖双边手续费合计。"""
        return self.commission(buy_amount).total + self.commission(sell_amount).total

    def net_profit(self, buy_amount: float, sell_amount: float) -> float:
        return sell_amount - buy_amount - self.round_trip(buy_amount, sell_amount)

    def profit_rate(self, buy_amount: float, sell_amount: float) -> float:
        """扣费后收益率（%）。"""
        if buy_amount <= 0:
            return 0.0
        return self.net_profit(buy_amount, sell_amount) / buy_amount * 100


_ZERO = _bands((0.0,) * 8)

FEE_SCHEDULES: dict[str, FeeSchedule] = {
    "sbi": FeeSchedule("sbi", 0.0, 0.0, _ZERO),
    "rakuten": FeeSchedule("rakuten", 0.0, 0.0, _ZERO),
    "monex": FeeSchedule("monex", 0.0, 0.0, _ZERO),
    "traditional": FeeSchedule(
        "traditional",
        100.0,
        100_000.0,
        _bands((0.001, 0.0008, 0.0006, 0.0004, 0.0003, 0.0002, 0.0001, 0.00005)),
    ),
}


def get_fee_schedule(name: str | FeeSchedule | None) -> FeeSchedule:
    """按名称取手续费表；未知名称回退到 sbi。"""
    if isinstance(name, FeeSchedule):
        return name
    return FEE_SCHEDULES.get(str(name or "sbi").lower(), FEE_SCHEDULES["sbi"])


def available_schedules() -> list[str]:
    return list(FEE_SCHEDULES)
