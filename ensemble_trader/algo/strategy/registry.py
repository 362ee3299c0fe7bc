"""策略注册表：字符串 -> Strategy 实现。"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

from ensemble_trader.algo.strategy.base import Strategy
from ensemble_trader.algo.strategy.forecast import ForecastStrategy
from ensemble_trader.algo.strategy.simple_ma import SimpleMAStrategy
from ensemble_trader.shared.config.schema import AppConfig, StrategyConfig

_REGISTRY: dict[str, type[Strategy]] = {}


def register_strategy(name: str, cls: type[Strategy]) -> None:
    _REGISTRY[name] = cls


def get_strategy_cls(name: str) -> type[Strategy]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown strategy: {name}")
    return _REGISTRY[name]


def _filter_init_kwargs(cls: type, params: Mapping[str, Any]) -> dict[str, Any]:
    """过滤出 __init__ 支持的参数，避免配置里多字段导致报错。"""
    sig = inspect.signature(cls.__init__)
    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values()):
        return dict(params)

    allowed = {name for name in sig.parameters.keys() if name != "self"}
    return {k: v for k, v in params.items() if k in allowed}


def build_strategy(
    cfg: StrategyConfig | Mapping[str, Any] | None,
    app_config: AppConfig | None = None,
) -> Strategy:
    """从配置构建策略实例。

    支持：
    - StrategyConfig（来自 shared.config.schema）
    - dict（含 type + 参数字段）

    接受 `config` 参数的策略（如 forecast）会拿到 app_config。
    """
    if cfg is None:
        return SimpleMAStrategy()

    if isinstance(cfg, StrategyConfig):
        name = str(cfg.type)
        params = dict(cfg.params or {})
    elif isinstance(cfg, Mapping):
        name = str(cfg.get("type"))
        params = dict(cfg.get("params") or {})
        params.update({k: v for k, v in cfg.items() if k not in {"type", "params"}})
    else:
        raise ValueError("strategy cfg must be StrategyConfig or dict")

    cls = get_strategy_cls(name)
    if app_config is not None:
        params.setdefault("config", app_config)
    kwargs = _filter_init_kwargs(cls, params)
    return cls(**kwargs)


# 默认注册
register_strategy("simple_ma", SimpleMAStrategy)
register_strategy("forecast", ForecastStrategy)
