"""集成预测器：多个独立训练的模型 + 动态权重。

并发约定：
- `train` 由训练锁串行化；每轮训练都新建模型实例，训练完后一次性发布新的不可变快照；
- `predict` 只读取一次 `self._snapshot` 引用，不加锁，看到的要么是旧快照要么是新快照。
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Sequence, Union

from ensemble_trader.algo.factors.extractor import FeatureVector, TrainingSample
from ensemble_trader.algo.models.base import BasePredictor, FitMetrics, ModelOutput
from ensemble_trader.algo.models.registry import build_model
from ensemble_trader.shared.config.schema import EnsembleConfig, ModelSpec
from ensemble_trader.shared.errors import NoValidPredictionError, NotTrainedError
from ensemble_trader.shared.models.models import ConfidenceInterval, Prediction, Trend, utcnow
from ensemble_trader.shared.utils.logging import setup_logger

ModelFactory = Callable[[], BasePredictor]
Member = Union[ModelSpec, ModelFactory]


class EnsembleState(str, Enum):
    UNTRAINED = "UNTRAINED"
    TRAINED = "TRAINED"


@dataclass(frozen=True)
class TrainingFailure:
    """单个成员训练失败的记录（权重降为 error_weight，但不为 0）。"""

    error_type: str
    message: str


@dataclass(frozen=True)
class _Snapshot:
    state: EnsembleState
    weights: Mapping[str, float]
    models: Mapping[str, BasePredictor] = field(default_factory=dict)
    results: Mapping[str, FitMetrics | TrainingFailure] = field(default_factory=dict)


def _normalize(raw: Mapping[str, float]) -> dict[str, float]:
    total = sum(raw.values())
    if total <= 0:
        n = len(raw)
        return {k: 1.0 / n for k in raw} if n else {}
    return {k: v / total for k, v in raw.items()}


class EnsemblePredictor:
    """集成预测服务对象（显式构造、由调用方管理生命周期）。

    Parameters
    ----------
    config:
        集成配置；默认三成员 short/medium/long，初始权重 0.4/0.4/0.2。
    members:
        覆盖 config.models：name -> ModelSpec 或无参工厂（每轮训练调用一次，返回新实例）。
    initial_weights:
        覆盖训练前的初始权重（会归一化）。
    """

    def __init__(
        self,
        config: EnsembleConfig | None = None,
        members: Mapping[str, Member] | None = None,
        initial_weights: Mapping[str, float] | None = None,
    ):
        self.config = config or EnsembleConfig()
        self._members: dict[str, Member] = dict(members) if members is not None else dict(self.config.models)
        if not self._members:
            raise ValueError("ensemble needs at least one model")

        if initial_weights is None:
            initial_weights = {
                name: (m.weight if isinstance(m, ModelSpec) else 1.0) for name, m in self._members.items()
            }
        missing = set(self._members) - set(initial_weights)
        if missing:
            raise ValueError(f"initial_weights missing models: {sorted(missing)}")
        if any(w < 0 for w in initial_weights.values()):
            raise ValueError("weights must be non-negative")

        self.logger = setup_logger("ensemble")
        self._train_lock = threading.Lock()
        self._snapshot = _Snapshot(
            state=EnsembleState.UNTRAINED,
            weights=MappingProxyType(_normalize({k: float(initial_weights[k]) for k in self._members})),
        )

    @property
    def state(self) -> EnsembleState:
        return self._snapshot.state

    @property
    def is_trained(self) -> bool:
        return self._snapshot.state is EnsembleState.TRAINED

    @property
    def weights(self) -> dict[str, float]:
        return dict(self._snapshot.weights)

    @property
    def model_names(self) -> tuple[str, ...]:
        return tuple(self._members)

    def _new_model(self, index: int, member: Member) -> BasePredictor:
        if isinstance(member, ModelSpec):
            seed = self.config.seed + index if self.config.seed is not None else None
            return build_model(member, seed=seed)
        return member()

    @staticmethod
    def _recent_fraction(member: Member) -> float:
        return member.recent_fraction if isinstance(member, ModelSpec) else 1.0

    @staticmethod
    def _slice(samples: Sequence[TrainingSample], fraction: float) -> Sequence[TrainingSample]:
        if fraction >= 1.0:
            return samples
        keep = max(1, int(math.floor(len(samples) * fraction)))
        return samples[-keep:]

    def _estimate_weights(self, results: Mapping[str, FitMetrics | TrainingFailure]) -> dict[str, float]:
        eps = self.config.loss_epsilon
        raw: dict[str, float] = {}
        for name, res in results.items():
            if isinstance(res, FitMetrics) and math.isfinite(res.loss) and res.loss >= 0:
                raw[name] = 1.0 / (res.loss + eps)
            else:
                raw[name] = self.config.error_weight
        return _normalize(raw)

    def train(self, samples: Sequence[TrainingSample]) -> dict[str, FitMetrics | TrainingFailure]:
        """训练全部成员并重估权重。

        单个成员失败只记录为 `TrainingFailure`，不会中断整轮训练。
        全部失败时仍发布快照（此后 `predict` 抛 `NoValidPredictionError`）。
        """
        samples = list(samples)
        with self._train_lock:
            models: dict[str, BasePredictor] = {}
            results: dict[str, FitMetrics | TrainingFailure] = {}
            for index, (name, member) in enumerate(self._members.items()):
                subset = self._slice(samples, self._recent_fraction(member))
                try:
                    model = self._new_model(index, member)
                    metrics = model.train(subset)
                except Exception as exc:  # 成员失败不影响其余成员
                    self.logger.warning("Model %s failed to train: %s", name, exc)
                    results[name] = TrainingFailure(error_type=type(exc).__name__, message=str(exc))
                    continue
                models[name] = model
                results[name] = metrics

            weights = self._estimate_weights(results)
            self._snapshot = _Snapshot(
                state=EnsembleState.TRAINED,
                weights=MappingProxyType(weights),
                models=MappingProxyType(models),
                results=MappingProxyType(results),
            )
        self.logger.info(
            "Ensemble trained on %d samples, weights=%s",
            len(samples),
            {k: round(v, 4) for k, v in weights.items()},
        )
        return results

    def _collect(self, snapshot: _Snapshot, features: FeatureVector) -> dict[str, ModelOutput]:
        outputs: dict[str, ModelOutput] = {}
        for name, model in snapshot.models.items():
            try:
                out = model.predict(features)
            except Exception as exc:
                self.logger.warning("Model %s failed to predict: %s", name, exc)
                continue
            if not math.isfinite(out.value):
                self.logger.warning("Model %s returned non-finite value, skipped", name)
                continue
            outputs[name] = out
        return outputs

    def predict(self, features: FeatureVector, reference_price: float | None = None) -> Prediction:
        """加权合成预测。

        trend 以 `reference_price`（默认特征向量里的当前价）为参照；
        区间半宽 = sqrt(Σw(p-p̄)²/Σw) × (1 - confidence)。
        """
        snapshot = self._snapshot
        if snapshot.state is not EnsembleState.TRAINED:
            raise NotTrainedError("ensemble is not trained")

        outputs = self._collect(snapshot, features)
        if not outputs:
            raise NoValidPredictionError("no model returned a valid prediction")

        weights = _normalize({name: snapshot.weights[name] for name in outputs})
        value = sum(weights[n] * outputs[n].value for n in outputs)
        confidence = sum(weights[n] * outputs[n].confidence for n in outputs)
        variance = sum(weights[n] * (outputs[n].value - value) ** 2 for n in outputs)
        margin = math.sqrt(variance) * (1.0 - confidence)

        reference = features.price if reference_price is None else float(reference_price)
        if value > reference:
            trend = Trend.UP
        elif value < reference:
            trend = Trend.DOWN
        else:
            trend = Trend.NEUTRAL

        return Prediction(
            predicted_price=value,
            confidence=confidence,
            trend=trend,
            confidence_interval=ConfidenceInterval(lower=value - margin, upper=value + margin),
            model_weights=dict(snapshot.weights),
            reference_price=reference,
            timestamp=features.timestamp or utcnow(),
        )

    def evaluate(self, samples: Sequence[TrainingSample]) -> dict[str, FitMetrics | TrainingFailure]:
        """逐成员评估 MAE/RMSE（评估失败同样记录为 TrainingFailure）。"""
        snapshot = self._snapshot
        if snapshot.state is not EnsembleState.TRAINED:
            raise NotTrainedError("ensemble is not trained")
        samples = list(samples)
        report: dict[str, FitMetrics | TrainingFailure] = {}
        for name in self._members:
            model = snapshot.models.get(name)
            if model is None:
                failure = snapshot.results.get(name)
                report[name] = failure if isinstance(failure, TrainingFailure) else TrainingFailure(
                    error_type="NotTrainedError", message=f"{name} is not trained"
                )
                continue
            try:
                report[name] = model.evaluate(samples)
            except Exception as exc:
                self.logger.warning("Model %s failed to evaluate: %s", name, exc)
                report[name] = TrainingFailure(error_type=type(exc).__name__, message=str(exc))
        return report

    def status(self) -> dict:
        """训练状态概览。"""
        snapshot = self._snapshot
        return {
            "state": snapshot.state.value,
            "is_trained": snapshot.state is EnsembleState.TRAINED,
            "model_count": len(self._members),
            "models": {
                name: {
                    "trained": name in snapshot.models,
                    "weight": snapshot.weights.get(name, 0.0),
                    "error": (
                        snapshot.results[name].message
                        if isinstance(snapshot.results.get(name), TrainingFailure)
                        else None
                    ),
                }
                for name in self._members
            },
        }
