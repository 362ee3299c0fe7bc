"""模型注册表：字符串 -> 预测模型实现。"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

from ensemble_trader.algo.models.bagged_trees import BaggedTreesModel
from ensemble_trader.algo.models.base import BasePredictor
from ensemble_trader.algo.models.linear_regression import LinearRegressionModel
from ensemble_trader.algo.models.moving_average import MovingAverageModel
from ensemble_trader.algo.models.sequence import SequenceModel
from ensemble_trader.shared.config.schema import ModelSpec

_REGISTRY: dict[str, type[BasePredictor]] = {}


def register_model(name: str, cls: type[BasePredictor]) -> None:
    _REGISTRY[name] = cls


def get_model_cls(name: str) -> type[BasePredictor]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown model: {name}")
    return _REGISTRY[name]


def _init_params(cls: type) -> set[str]:
    sig = inspect.signature(cls.__init__)
    return {name for name in sig.parameters.keys() if name != "self"}


def build_model(spec: ModelSpec | Mapping[str, Any], seed: int | None = None) -> BasePredictor:
    """从配置构建一个全新的（未训练）模型实例。

    `seed` 只传给接受 `seed` 参数的模型（如 bagged_trees）；params 中显式给出的 seed 优先。
    未知参数直接报错，避免拼写错误被静默忽略。
    """
    if isinstance(spec, Mapping):
        spec = ModelSpec.model_validate(dict(spec))
    cls = get_model_cls(spec.type)
    allowed = _init_params(cls)
    params = dict(spec.params)
    unknown = sorted(set(params) - allowed)
    if unknown:
        raise ValueError(f"Invalid params for model '{spec.type}': {unknown}")
    if "seed" in allowed and "seed" not in params and seed is not None:
        params["seed"] = seed
    return cls(**params)


# 默认注册
register_model("linear_regression", LinearRegressionModel)
register_model("bagged_trees", BaggedTreesModel)
register_model("sequence", SequenceModel)
register_model("moving_average", MovingAverageModel)
