"""基于集成预测的趋势策略。"""

from __future__ import annotations

from ensemble_trader.prediction.service import PredictionService
from ensemble_trader.shared.config.schema import AppConfig
from ensemble_trader.shared.errors import NoValidPredictionError
from ensemble_trader.shared.models.models import Prediction, PriceBar, Signal, SignalAction, Trend
from ensemble_trader.shared.utils.logging import setup_logger

from .base import Strategy, StrategyContext


class ForecastStrategy(Strategy):
    """用截至当前 bar 的历史训练预测服务，按预测方向开平仓。

    Parameters
    ----------
    min_confidence:
        预测置信度低于该值时不动作。
    retrain_every:
        每隔多少根 K 线重新预测一次（训练较慢）。
    min_history:
        历史少于该值时不预测。
    config:
        预测服务使用的应用配置。
    """

    def __init__(
        self,
        min_confidence: float = 0.5,
        retrain_every: int = 20,
        min_history: int = 20,
        config: AppConfig | None = None,
    ):
        if retrain_every <= 0:
            raise ValueError("retrain_every must be > 0")
        self.min_confidence = float(min_confidence)
        self.retrain_every = int(retrain_every)
        self.min_history = int(min_history)
        self.service = PredictionService(config)
        self.logger = setup_logger("strategy")
        self.last_prediction: Prediction | None = None
        self._bars_seen = 0

    def on_bar(self, bar: PriceBar, context: StrategyContext) -> list[Signal]:
        self._bars_seen += 1
        if len(context.history) < self.min_history or self._bars_seen % self.retrain_every:
            return []
        try:
            pred = self.service.predict_from_bars(context.history)
        except NoValidPredictionError as exc:
            self.logger.warning("No prediction at %s: %s", bar.timestamp, exc)
            return []
        self.last_prediction = pred
        if pred.confidence < self.min_confidence:
            return []

        reason = f"forecast {pred.predicted_price:.2f} ({pred.confidence:.2f})"
        if pred.trend is Trend.UP and context.position is None:
            return [Signal(symbol=context.symbol, action=SignalAction.BUY, reason=reason)]
        if pred.trend is Trend.DOWN and context.position is not None:
            return [Signal(symbol=context.symbol, action=SignalAction.SELL, reason=reason)]
        return []
