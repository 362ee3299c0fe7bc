"""Bagging 回归树集成（随机森林风格）。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ensemble_trader.algo.factors.extractor import FEATURE_NAMES, FeatureVector, TrainingSample
from ensemble_trader.algo.models.base import (
    BaggedTreesOutput,
    BasePredictor,
    FitMetrics,
    ModelFamily,
    clamp,
    fit_metrics,
)


@dataclass(slots=True)
class _Node:
    value: float
    feature: int = -1
    threshold: float = 0.0
    left: "_Node | None" = None
    right: "_Node | None" = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None or self.right is None


def _best_split(x: np.ndarray, y: np.ndarray) -> tuple[float, int, float] | None:
    """按方差下降找最优切分。

    同分时保留先出现者（特征序号小、阈值小），与逐个阈值扫描的结果一致。
    """
    n, n_features = x.shape
    if n < 2:
        return None
    total_var = float(np.var(y))
    left_n = np.arange(1, n, dtype=float)
    right_n = n - left_n

    best: tuple[float, int, float] | None = None
    for j in range(n_features):
        order = np.argsort(x[:, j], kind="mergesort")
        xs = x[order, j]
        ys = y[order]
        distinct = xs[:-1] < xs[1:]
        if not distinct.any():
            continue
        csum = np.cumsum(ys)
        csq = np.cumsum(ys * ys)
        left_sum, left_sq = csum[:-1], csq[:-1]
        right_sum, right_sq = csum[-1] - left_sum, csq[-1] - left_sq
        left_var = left_sq / left_n - (left_sum / left_n) ** 2
        right_var = right_sq / right_n - (right_sum / right_n) ** 2
        weighted = (left_n * left_var + right_n * right_var) / n
        score = np.where(distinct, total_var - weighted, -np.inf)
        i = int(np.argmax(score))
        if best is None or score[i] > best[0]:
            best = (float(score[i]), j, float((xs[i] + xs[i + 1]) / 2.0))
    return best


class BaggedTreesModel(BasePredictor):
    """N 棵回归树，各自在 bootstrap 重采样上训练；预测取均值。

    Parameters
    ----------
    n_estimators:
        树的数量。
    max_depth:
        最大深度。
    min_samples_split:
        节点样本数低于该值时不再切分。
    seed / rng:
        bootstrap 的随机源；传入 rng 时忽略 seed。固定 seed 可复现训练结果。
    """

    family = ModelFamily.BAGGED_TREES
    min_samples = 2

    def __init__(
        self,
        n_estimators: int = 100,
        max_depth: int = 10,
        min_samples_split: int = 2,
        feature_names: Sequence[str] | None = None,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
    ):
        super().__init__()
        if n_estimators <= 0:
            raise ValueError("n_estimators must be > 0")
        if max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        self.n_estimators = int(n_estimators)
        self.max_depth = int(max_depth)
        self.min_samples_split = max(2, int(min_samples_split))
        self.feature_names = tuple(feature_names or FEATURE_NAMES)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.trees: list[_Node] = []

    def _build(self, x: np.ndarray, y: np.ndarray, depth: int) -> _Node:
        node = _Node(value=float(np.mean(y)) if y.size else 0.0)
        if depth >= self.max_depth or y.size < self.min_samples_split:
            return node
        split = _best_split(x, y)
        if split is None or split[0] <= 0:
            return node
        _, feature, threshold = split
        mask = x[:, feature] <= threshold
        node.feature = feature
        node.threshold = threshold
        node.left = self._build(x[mask], y[mask], depth + 1)
        node.right = self._build(x[~mask], y[~mask], depth + 1)
        return node

    @staticmethod
    def _predict_tree(node: _Node, row: np.ndarray) -> float:
        while not node.is_leaf:
            node = node.left if row[node.feature] <= node.threshold else node.right  # type: ignore[assignment]
        return node.value

    def _tree_outputs(self, row: np.ndarray) -> np.ndarray:
        return np.array([self._predict_tree(t, row) for t in self.trees], dtype=float)

    def train(self, samples: Sequence[TrainingSample]) -> FitMetrics:
        self._check_samples(samples)
        x = np.vstack([s.features.select(self.feature_names) for s in samples])
        y = np.array([s.target for s in samples], dtype=float)
        n = y.size

        trees: list[_Node] = []
        for _ in range(self.n_estimators):
            idx = self.rng.integers(0, n, size=n)
            trees.append(self._build(x[idx], y[idx], depth=0))
        self.trees = trees
        self._trained = True

        preds = [float(np.mean(self._tree_outputs(row))) for row in x]
        return fit_metrics(preds, y)

    def predict(self, features: FeatureVector) -> BaggedTreesOutput:
        self._require_trained()
        outputs = self._tree_outputs(features.select(self.feature_names))
        variance = float(np.var(outputs))
        return BaggedTreesOutput(
            family=self.family,
            value=float(np.mean(outputs)),
            confidence=clamp(1.0 / (1.0 + variance)),
            tree_variance=variance,
            n_trees=len(self.trees),
        )
