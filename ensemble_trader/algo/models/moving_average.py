"""移动平均启发式预测（数据不足时的回退模型）。"""

from __future__ import annotations

from collections import deque
from typing import Deque, Sequence

import numpy as np

from ensemble_trader.algo.factors.extractor import FeatureVector, TrainingSample
from ensemble_trader.algo.models.base import (
    BasePredictor,
    FitMetrics,
    ModelFamily,
    MovingAverageOutput,
    clamp,
    fit_metrics,
)

TREND_WINDOW = 10
HISTORY_SIZE = 2 * TREND_WINDOW


def _tail_mean(prices: np.ndarray, period: int, fallback: float) -> float:
    if prices.size < period:
        return fallback
    return float(np.mean(prices[-period:]))


def estimate_from_prices(prices: Sequence[float]) -> MovingAverageOutput:
    """对一段收盘价直接给出启发式预测。

    predicted = 0.5*SMA5 + 0.3*SMA10 + 0.2*SMA20 + 0.1*trend
    - SMA 周期长于历史时用最新价代替；
    - trend = 最近 10 个均值 - 之前（最多 10 个）均值，不足 10 个点或无更早数据时为 0；
    - volatility = 最近 10 个价格的总体标准差，不足 10 个点为 0；
    - confidence = clamp(1 - volatility/latest, 0.1, 0.9)。
    """
    arr = np.asarray(prices, dtype=float)
    if arr.size == 0:
        raise ValueError("prices must not be empty")
    latest = float(arr[-1])

    sma_5 = _tail_mean(arr, 5, latest)
    sma_10 = _tail_mean(arr, 10, latest)
    sma_20 = _tail_mean(arr, 20, latest)

    trend = 0.0
    volatility = 0.0
    if arr.size >= TREND_WINDOW:
        recent = arr[-TREND_WINDOW:]
        older = arr[-HISTORY_SIZE:-TREND_WINDOW]
        if older.size:
            trend = float(np.mean(recent) - np.mean(older))
        volatility = float(np.std(recent))

    value = sma_5 * 0.5 + sma_10 * 0.3 + sma_20 * 0.2 + trend * 0.1
    confidence = clamp(1.0 - volatility / latest, 0.1, 0.9) if latest > 0 else 0.1
    return MovingAverageOutput(
        family=ModelFamily.MOVING_AVERAGE,
        value=value,
        confidence=confidence,
        sma_5=sma_5,
        sma_10=sma_10,
        sma_20=sma_20,
        trend_delta=trend,
        volatility=volatility,
    )


class MovingAverageModel(BasePredictor):
    """把 `estimate_from_prices` 包装成与其他模型一致的 train/predict 接口。

    训练只记录最近的收盘价；预测窗口 = 当前价之前的收盘价 + 特征里的当前价。
    """

    family = ModelFamily.MOVING_AVERAGE
    min_samples = 1

    def __init__(self) -> None:
        super().__init__()
        self._context: Deque[float] = deque(maxlen=HISTORY_SIZE - 1)

    def train(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        self._check_samples(samples)
        series = [s.features.price for s in samples] + [samples[-1].target]
        self._context = deque(series[:-1], maxlen=HISTORY_SIZE - 1)
        self._trained = True
        preds = [estimate_from_prices(series[: i + 1]).value for i in range(len(samples))]
        return fit_metrics(preds, series[1:])

    def observe(self, price: float) -> None:
        self._require_trained()
        self._context.append(float(price))

    def predict(self, features: FeatureVector) -> MovingAverageOutput:
        self._require_trained()
        return estimate_from_prices(list(self._context) + [features.price])
