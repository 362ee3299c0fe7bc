"""线性回归模型（正规方程闭式解）。"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ensemble_trader.algo.factors.extractor import FEATURE_NAMES, FeatureVector, TrainingSample
from ensemble_trader.algo.models.base import (
    BasePredictor,
    FitMetrics,
    LinearRegressionOutput,
    ModelFamily,
    clamp,
    fit_metrics,
)
from ensemble_trader.algo.models.linalg import solve_normal_equation

# 全量特征里 bollinger_middle == sma_20、macd == ema_12 - ema_26 等严格共线，
# 默认只取一组线性无关的子集
DEFAULT_FEATURES: tuple[str, ...] = (
    "price",
    "sma_5",
    "sma_20",
    "ema_12",
    "rsi",
    "macd_histogram",
    "volatility",
    "price_change_pct",
    "volume",
)


class LinearRegressionModel(BasePredictor):
    """y = b0 + Σ b_i x_i，系数由 (X^T X)^-1 X^T y 求得。

    Parameters
    ----------
    feature_names:
        参与回归的特征名（需为 FEATURE_NAMES 的子集）。
    standardize:
        是否先做 z-score 标准化（改善条件数；常数列标准化后为 0 列，会触发奇异）。

    Notes
    -----
    X^T X 不可逆时 `train` 抛 `SingularMatrixError`，调用方应回退到其他模型。
    """

    family = ModelFamily.LINEAR_REGRESSION
    min_samples = 2

    def __init__(self, feature_names: Sequence[str] | None = None, standardize: bool = True):
        super().__init__()
        names = tuple(feature_names or DEFAULT_FEATURES)
        unknown = [n for n in names if n not in FEATURE_NAMES]
        if unknown:
            raise ValueError(f"Unknown features: {unknown}")
        self.feature_names = names
        self.standardize = standardize
        self.intercept = 0.0
        self.coefficients: np.ndarray = np.zeros(len(names))
        self._mean = np.zeros(len(names))
        self._std = np.ones(len(names))

    def _design(self, rows: np.ndarray) -> np.ndarray:
        if not self.standardize:
            return rows
        safe_std = np.where(self._std > 0, self._std, 1.0)
        centered = (rows - self._mean) / safe_std
        return np.where(self._std > 0, centered, 0.0)

    def _raw(self, samples: Sequence[TrainingSample]) -> np.ndarray:
        return np.vstack([s.features.select(self.feature_names) for s in samples])

    def train(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        self._check_samples(samples)
        raw = self._raw(samples)
        y = np.array([s.target for s in samples], dtype=float)
        if self.standardize:
            self._mean = raw.mean(axis=0)
            self._std = raw.std(axis=0)
        x = self._design(raw)

        intercept, coefficients = solve_normal_equation(x, y)
        self.intercept = intercept
        self.coefficients = coefficients
        self._trained = True
        return fit_metrics(self.intercept + x @ self.coefficients, y)

    def _value(self, features: FeatureVector) -> float:
        x = self._design(features.select(self.feature_names)[None, :])[0]
        return float(self.intercept + x @ self.coefficients)

    def predict(self, features: FeatureVector) -> LinearRegressionOutput:
        self._require_trained()
        value = self._value(features)
        price = features.price
        confidence = clamp(1.0 - abs(value - price) / price) if price > 0 else 0.0
        return LinearRegressionOutput(
            family=self.family,
            value=value,
            confidence=confidence,
            intercept=self.intercept,
            coefficients_used=len(self.feature_names),
        )

    def evaluate_r2(self, samples: Sequence[TrainingSample]) -> dict[str, float]:
        """mse/mae/r2（目标无方差时 r2 记为 0）。"""
        self._require_trained()
        y = np.array([s.target for s in samples], dtype=float)
        pred = np.array([self._value(s.features) for s in samples], dtype=float)
        ss_res = float(np.sum((y - pred) ** 2))
        ss_tot = float(np.sum((y - y.mean()) ** 2))
        return {
            "mse": float(np.mean((y - pred) ** 2)),
            "mae": float(np.mean(np.abs(y - pred))),
            "r2": 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0,
        }
