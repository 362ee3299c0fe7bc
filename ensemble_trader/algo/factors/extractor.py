"""特征提取：PriceBar 序列 -> 固定顺序的数值特征向量。"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple, Sequence

import numpy as np
import pandas as pd

from ensemble_trader.algo.factors import indicators
from ensemble_trader.shared.config.schema import FeatureConfig
from ensemble_trader.shared.errors import InsufficientDataError
from ensemble_trader.shared.models.models import PriceBar

# 槽位名沿用默认周期命名；自定义周期时槽位顺序不变
FEATURE_NAMES: tuple[str, ...] = (
    "sma_5",
    "sma_10",
    "sma_20",
    "sma_50",
    "ema_12",
    "ema_26",
    "rsi",
    "macd",
    "macd_signal",
    "macd_histogram",
    "bollinger_upper",
    "bollinger_lower",
    "bollinger_middle",
    "volume_sma",
    "price_change",
    "price_change_pct",
    "volatility",
    "price",
    "volume",
)
_INDEX = {name: i for i, name in enumerate(FEATURE_NAMES)}


@dataclass(frozen=True)
class FeatureVector:
    """特征向量（不可变，值均为有限浮点数）。"""

    values: tuple[float, ...]
    timestamp: datetime | None = None

    def __post_init__(self):
        if len(self.values) != len(FEATURE_NAMES):
            raise ValueError(f"FeatureVector expects {len(FEATURE_NAMES)} values, got {len(self.values)}")

    @property
    def names(self) -> tuple[str, ...]:
        return FEATURE_NAMES

    @property
    def price(self) -> float:
        return self.values[_INDEX["price"]]

    def __getitem__(self, name: str) -> float:
        return self.values[_INDEX[name]]

    def select(self, names: Sequence[str]) -> np.ndarray:
        return np.array([self.values[_INDEX[n]] for n in names], dtype=float)

    def as_array(self) -> np.ndarray:
        return np.array(self.values, dtype=float)

    def as_dict(self) -> dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.values))

    @classmethod
    def from_mapping(cls, data: dict[str, float], timestamp: datetime | None = None) -> "FeatureVector":
        """从 {name: value} 构造；缺失槽位补 0。"""
        return cls(values=tuple(_finite(data.get(n, 0.0)) for n in FEATURE_NAMES), timestamp=timestamp)


class TrainingSample(NamedTuple):
    features: FeatureVector
    target: float


def _finite(value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def bars_to_frame(bars: Sequence[PriceBar]) -> pd.DataFrame:
    """PriceBar 序列 -> DataFrame（校验时间升序）。"""
    df = pd.DataFrame(
        {
            "timestamp": [b.timestamp for b in bars],
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        }
    )
    if len(df) > 1 and not df["timestamp"].is_monotonic_increasing:
        raise ValueError("bars must be ordered by timestamp ascending")
    return df


class FeatureExtractor:
    """OHLCV -> FeatureVector。

    Parameters
    ----------
    config:
        指标周期配置，缺省为 5/10/20/50、EMA 12/26、RSI 14、布林 20/2σ。
    """

    def __init__(self, config: FeatureConfig | None = None):
        self.config = config or FeatureConfig()

    @property
    def required_bars(self) -> int:
        """计算一条完整特征所需的最少 K 线数（含 as_of 当根）。"""
        c = self.config
        return max(
            max(c.sma_periods),
            c.ema_slow + c.macd_signal - 1,
            c.bollinger_period,
            c.rsi_period + 1,
            c.volume_period,
            c.volatility_period + 1,
        )

    def compute_frame(self, bars: Sequence[PriceBar]) -> pd.DataFrame:
        """对整段序列计算全部指标列（预热期为 NaN）。"""
        c = self.config
        df = bars_to_frame(bars)
        close = df["close"].astype(float)
        for slot, period in zip(FEATURE_NAMES[:4], c.sma_periods):
            df[slot] = indicators.sma(close, period)
        df["ema_12"] = indicators.ema(close, c.ema_fast)
        df["ema_26"] = indicators.ema(close, c.ema_slow)
        df["rsi"] = indicators.rsi(close, c.rsi_period)
        df = df.join(indicators.macd(close, c.ema_fast, c.ema_slow, c.macd_signal))
        df = df.join(indicators.bollinger(close, c.bollinger_period, c.bollinger_std))
        df["volume_sma"] = indicators.sma(df["volume"], c.volume_period)
        df = df.join(indicators.price_change(close))
        df["volatility"] = indicators.realized_volatility(close, c.volatility_period, c.annualization)
        df["price"] = close
        return df

    def _row_to_vector(self, row: pd.Series) -> FeatureVector:
        ts = row["timestamp"]
        return FeatureVector(
            values=tuple(_finite(row[n]) for n in FEATURE_NAMES),
            timestamp=ts.to_pydatetime() if isinstance(ts, pd.Timestamp) else ts,
        )

    def extract(self, bars: Sequence[PriceBar], as_of_index: int | None = None) -> FeatureVector:
        """提取 `as_of_index` 处（含）的特征向量。

        Raises
        ------
        InsufficientDataError
            截至 as_of_index 的 K 线数少于 `required_bars`。
        IndexError
            as_of_index 越界。
        """
        n = len(bars)
        idx = n - 1 if as_of_index is None else as_of_index
        if idx < 0:
            idx += n
        if idx < 0 or idx >= n:
            raise IndexError(f"as_of_index {as_of_index} out of range for {n} bars")
        if idx + 1 < self.required_bars:
            raise InsufficientDataError(
                f"Need at least {self.required_bars} bars up to index {idx}, got {idx + 1}"
            )
        frame = self.compute_frame(bars[: idx + 1])
        return self._row_to_vector(frame.iloc[-1])

    def build_samples(self, bars: Sequence[PriceBar]) -> list[TrainingSample]:
        """生成训练样本：(当根特征, 下一根收盘价)。"""
        if len(bars) < self.required_bars + 1:
            raise InsufficientDataError(
                f"Need at least {self.required_bars + 1} bars to build samples, got {len(bars)}"
            )
        frame = self.compute_frame(bars)
        closes = frame["close"].astype(float).to_numpy()
        samples: list[TrainingSample] = []
        for i in range(self.required_bars - 1, len(frame) - 1):
            samples.append(TrainingSample(self._row_to_vector(frame.iloc[i]), float(closes[i + 1])))
        return samples
