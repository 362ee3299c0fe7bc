"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长回测中“隐蔽爆炸”；
- 业务代码只读属性，不再 `cfg.get(...)`。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _pack_flat_params(data: Any, *, reserved: set[str]) -> Any:
    """把 `type` 之外的扁平字段挪进 `params`（用户写起来方便，schema 仍可 forbid）。"""
    if not isinstance(data, dict):
        return data
    params = {k: v for k, v in data.items() if k not in reserved and k != "params"}
    existing = data.get("params")
    if isinstance(existing, dict):
        params = {**params, **existing}
    packed = {k: v for k, v in data.items() if k in reserved}
    packed["params"] = params
    return packed


class RiskParameters(BaseModel):
    """风控参数（金额单位：账户币种，百分比单位：%）。"""

    max_position_size: float = Field(default=100_000.0, ge=0)
    max_portfolio_risk_percent: float = Field(default=10.0, ge=0)
    stop_loss_percent: float = Field(default=5.0, ge=0, lt=100)
    take_profit_percent: float = Field(default=10.0, ge=0)
    max_daily_loss: float = Field(default=50_000.0, ge=0)
    max_drawdown_percent: float = Field(default=20.0, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class FeatureConfig(BaseModel):
    """特征提取周期配置。"""

    sma_periods: List[int] = Field(default_factory=lambda: [5, 10, 20, 50])
    ema_fast: int = Field(default=12, gt=0)
    ema_slow: int = Field(default=26, gt=0)
    macd_signal: int = Field(default=9, gt=0)
    rsi_period: int = Field(default=14, gt=0)
    bollinger_period: int = Field(default=20, gt=1)
    bollinger_std: float = Field(default=2.0, gt=0)
    volume_period: int = Field(default=20, gt=0)
    volatility_period: int = Field(default=20, gt=1)
    annualization: int = Field(default=252, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("sma_periods")
    @classmethod
    def _four_positive_periods(cls, v: List[int]) -> List[int]:
        # 特征向量顺序固定：sma 恰好 4 个
        if len(v) != 4 or any(p <= 0 for p in v):
            raise ValueError("sma_periods must be exactly 4 positive periods")
        return v

    @model_validator(mode="after")
    def _fast_before_slow(self) -> "FeatureConfig":
        if self.ema_fast >= self.ema_slow:
            raise ValueError("ema_fast must be < ema_slow")
        return self


class ModelSpec(BaseModel):
    """集成成员配置（type + weight + recent_fraction + params）。"""

    type: str
    weight: float = Field(default=1.0, ge=0)
    recent_fraction: float = Field(default=1.0, gt=0, le=1)
    params: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack(cls, data: Any) -> Any:
        return _pack_flat_params(data, reserved={"type", "weight", "recent_fraction"})


def _default_members() -> Dict[str, ModelSpec]:
    return {
        "short": ModelSpec(type="sequence", weight=0.4, recent_fraction=0.7),
        "medium": ModelSpec(type="bagged_trees", weight=0.4),
        "long": ModelSpec(type="linear_regression", weight=0.2),
    }


class EnsembleConfig(BaseModel):
    """集成配置。"""

    models: Dict[str, ModelSpec] = Field(default_factory=_default_members)
    loss_epsilon: float = Field(default=0.001, gt=0)
    error_weight: float = Field(default=0.1, gt=0)
    seed: Optional[int] = 42

    model_config = ConfigDict(extra="forbid")

    @field_validator("models")
    @classmethod
    def _non_empty(cls, v: Dict[str, ModelSpec]) -> Dict[str, ModelSpec]:
        if not v:
            raise ValueError("ensemble.models must not be empty")
        return v


class ExecutionConfig(BaseModel):
    """模拟撮合配置。"""

    initial_cash: float = Field(default=1_000_000.0, ge=0)
    slippage_rate: float = Field(default=0.001, ge=0, lt=1)
    fee_schedule: str = "sbi"
    auto_fill: bool = True

    model_config = ConfigDict(extra="forbid")


class StrategyConfig(BaseModel):
    """策略配置（type + params）。"""

    type: str = "simple_ma"
    params: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack(cls, data: Any) -> Any:
        return _pack_flat_params(data, reserved={"type"})


class BacktestConfig(BaseModel):
    """回测配置。"""

    symbol: str = "7203"
    initial_cash: Optional[float] = None
    size_by_risk: bool = True
    default_quantity: float = Field(default=100.0, gt=0)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)

    model_config = ConfigDict(extra="forbid")


class AppConfig(BaseModel):
    """应用总配置。"""

    risk: RiskParameters = Field(default_factory=RiskParameters)
    features: FeatureConfig = Field(default_factory=FeatureConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    fallback_min_bars: int = Field(default=60, gt=0)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
