"""基础预测模型协议与按模型族区分的输出类型。

所有模型遵循同一契约：
- `train(samples) -> FitMetrics`，样本不足抛 `InsufficientDataError`；
- `predict(features) -> ModelOutput`，未训练抛 `NotTrainedError`。

`FitMetrics.loss` 是按目标值极差归一化的 MSE（无量纲），
保证不同模型的 loss 可直接用于集成权重估计；mae/rmse 为价格单位。
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import numpy as np

from ensemble_trader.algo.factors.extractor import FeatureVector, TrainingSample
from ensemble_trader.shared.errors import InsufficientDataError, NotTrainedError
from ensemble_trader.shared.models.models import SequenceTrend


class ModelFamily(str, Enum):
    LINEAR_REGRESSION = "linear_regression"
    BAGGED_TREES = "bagged_trees"
    SEQUENCE = "sequence"
    MOVING_AVERAGE = "moving_average"


@dataclass(frozen=True)
class FitMetrics:
    loss: float
    mae: float
    rmse: float
    samples: int


@dataclass(frozen=True)
class ModelOutput:
    """集成只依赖 value/confidence 这一窄接口。"""

    family: ModelFamily
    value: float
    confidence: float


@dataclass(frozen=True)
class LinearRegressionOutput(ModelOutput):
    intercept: float = 0.0
    coefficients_used: int = 0


@dataclass(frozen=True)
class BaggedTreesOutput(ModelOutput):
    tree_variance: float = 0.0
    n_trees: int = 0


@dataclass(frozen=True)
class SequenceOutput(ModelOutput):
    trend: SequenceTrend = SequenceTrend.SIDEWAYS
    volatility: float = 0.0
    next_prices: tuple[float, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MovingAverageOutput(ModelOutput):
    sma_5: float = 0.0
    sma_10: float = 0.0
    sma_20: float = 0.0
    trend_delta: float = 0.0
    volatility: float = 0.0


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    if not math.isfinite(value):
        return lo
    return max(lo, min(hi, value))


def fit_metrics(predictions: Sequence[float], targets: Sequence[float]) -> FitMetrics:
    """计算 loss(归一化 MSE)/MAE/RMSE。"""
    pred = np.asarray(predictions, dtype=float)
    y = np.asarray(targets, dtype=float)
    if pred.size == 0:
        return FitMetrics(loss=0.0, mae=0.0, rmse=0.0, samples=0)
    err = pred - y
    mse = float(np.mean(err**2))
    span = float(np.max(y) - np.min(y))
    scale = span if span > 0 else max(abs(float(np.mean(y))), 1.0)
    return FitMetrics(
        loss=float(np.mean((err / scale) ** 2)),
        mae=float(np.mean(np.abs(err))),
        rmse=math.sqrt(mse),
        samples=int(pred.size),
    )


class BasePredictor(ABC):
    """基础预测模型抽象基类。"""

    family: ModelFamily
    min_samples: int = 2

    def __init__(self) -> None:
        self._trained = False

    @property
    def is_trained(self) -> bool:
        return self._trained

    def _check_samples(self, samples: Sequence[TrainingSample]) -> None:
        if len(samples) < self.min_samples:
            raise InsufficientDataError(
                f"{type(self).__name__} needs at least {self.min_samples} samples, got {len(samples)}"
            )

    def _require_trained(self) -> None:
        if not self._trained:
            raise NotTrainedError(f"{type(self).__name__} is not trained")

    @abstractmethod
    def train(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        """训练并返回样本内拟合指标。"""

    @abstractmethod
    def predict(self, features: FeatureVector) -> ModelOutput:
        """单步预测。"""

    def evaluate(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        """在给定样本上评估（不改变模型状态）。"""
        self._require_trained()
        preds = [self.predict(s.features).value for s in samples]
        return fit_metrics(preds, [s.target for s in samples])
