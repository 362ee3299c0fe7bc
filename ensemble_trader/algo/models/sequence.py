"""序列模型（LSTM 风格的单步/多步自回归预测）。

实现上是对 min-max 归一化价格窗口的线性自回归读出层（带 ridge），
与 LSTM 共享同一组外部语义：固定序列长度、滚动窗口、把自身预测回灌做多步预测。
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Sequence

import numpy as np

from ensemble_trader.algo.factors.extractor import FeatureVector, TrainingSample
from ensemble_trader.algo.models.base import (
    BasePredictor,
    FitMetrics,
    ModelFamily,
    SequenceOutput,
    clamp,
    fit_metrics,
)
from ensemble_trader.algo.models.linalg import solve_normal_equation
from ensemble_trader.shared.models.models import SequenceTrend


class SequenceModel(BasePredictor):
    """滚动窗口自回归模型。

    Parameters
    ----------
    sequence_length:
        输入窗口长度 L；训练至少需要 L+1 个样本。
    ridge:
        读出层 L2 正则系数（保证正规方程可逆）。
    trend_threshold_pct:
        预测涨跌幅超过该百分比才判定 UP/DOWN，否则 SIDEWAYS。
    forecast_steps:
        `predict` 附带的多步预测步数。

    Notes
    -----
    窗口 = 当前价之前的 L-1 个收盘价 + 特征向量里的当前价。
    训练结束时窗口停在最后一个样本目标之前；新 K 线收盘后用 `observe` 推进。
    """

    family = ModelFamily.SEQUENCE

    def __init__(
        self,
        sequence_length: int = 60,
        ridge: float = 1e-3,
        trend_threshold_pct: float = 1.0,
        forecast_steps: int = 5,
    ):
        super().__init__()
        if sequence_length < 2:
            raise ValueError("sequence_length must be >= 2")
        self.sequence_length = int(sequence_length)
        self.min_samples = self.sequence_length + 1
        self.ridge = float(ridge)
        self.trend_threshold_pct = float(trend_threshold_pct)
        self.forecast_steps = int(forecast_steps)

        self._min = 0.0
        self._span = 1.0
        self._intercept = 0.0
        self._weights = np.zeros(self.sequence_length)
        self._context: Deque[float] = deque(maxlen=self.sequence_length - 1)

    def _scale(self, values: np.ndarray) -> np.ndarray:
        return (values - self._min) / self._span

    def _unscale(self, value: float) -> float:
        return value * self._span + self._min

    def _step(self, window: Sequence[float]) -> float:
        x = self._scale(np.asarray(window[-self.sequence_length :], dtype=float))
        return self._unscale(float(self._intercept + x @ self._weights))

    def train(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        self._check_samples(samples)
        series = np.array([s.features.price for s in samples] + [samples[-1].target], dtype=float)
        lo, hi = float(series.min()), float(series.max())
        self._min = lo
        self._span = hi - lo if hi > lo else 1.0

        scaled = self._scale(series)
        length = self.sequence_length
        windows = np.lib.stride_tricks.sliding_window_view(scaled[:-1], length)
        targets = scaled[length:]
        self._intercept, self._weights = solve_normal_equation(windows, targets, ridge=self.ridge)

        self._context = deque(series[-length:-1].tolist(), maxlen=length - 1)
        self._trained = True

        preds = [self._unscale(float(self._intercept + w @ self._weights)) for w in windows]
        return fit_metrics(preds, series[length:])

    def evaluate(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        """在连续样本上做滚动窗口评估（窗口取自样本自身的价格序列）。"""
        self._require_trained()
        self._check_samples(samples)
        series = np.array([s.features.price for s in samples] + [samples[-1].target], dtype=float)
        length = self.sequence_length
        windows = np.lib.stride_tricks.sliding_window_view(series[:-1], length)
        preds = [self._step(w) for w in windows]
        return fit_metrics(preds, series[length:])

    def observe(self, price: float) -> None:
        """把一根已收盘 K 线的价格推入滚动窗口。"""
        self._require_trained()
        self._context.append(float(price))

    def _window(self, features: FeatureVector) -> list[float]:
        return list(self._context) + [features.price]

    def forecast(self, features: FeatureVector, steps: int) -> tuple[float, ...]:
        """多步自回归预测：每步预测回灌到窗口末尾。"""
        self._require_trained()
        window = self._window(features)
        out: list[float] = []
        for _ in range(max(0, int(steps))):
            nxt = self._step(window)
            out.append(nxt)
            window.append(nxt)
        return tuple(out)

    @staticmethod
    def _volatility_pct(window: Sequence[float]) -> float:
        arr = np.asarray(window, dtype=float)
        prev = arr[:-1]
        if prev.size == 0:
            return 0.0
        rets = np.divide(np.diff(arr), prev, out=np.zeros_like(prev), where=prev != 0)
        return float(np.std(rets)) * 100.0

    def _trend(self, current: float, predicted: float) -> SequenceTrend:
        if current <= 0:
            return SequenceTrend.SIDEWAYS
        change_pct = (predicted - current) / current * 100.0
        if change_pct > self.trend_threshold_pct:
            return SequenceTrend.UP
        if change_pct < -self.trend_threshold_pct:
            return SequenceTrend.DOWN
        return SequenceTrend.SIDEWAYS

    def predict(self, features: FeatureVector) -> SequenceOutput:
        self._require_trained()
        window = self._window(features)
        value = self._step(window)
        current = features.price

        volatility = self._volatility_pct(window)
        change_pct = abs(value - current) / current * 100.0 if current > 0 else 100.0
        # 波动越大、预测变动越大，置信度越低
        score = 100.0 - volatility * 2.0 - min(change_pct * 5.0, 50.0)
        return SequenceOutput(
            family=self.family,
            value=value,
            confidence=clamp(score / 100.0),
            trend=self._trend(current, value),
            volatility=volatility,
            next_prices=self.forecast(features, self.forecast_steps),
        )
