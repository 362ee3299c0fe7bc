"""预测编排：按历史长度在集成模型与均线启发式之间选择。"""

from __future__ import annotations

from typing import Sequence

from ensemble_trader.algo.ensemble.combiner import EnsemblePredictor
from ensemble_trader.algo.factors.extractor import FeatureExtractor
from ensemble_trader.algo.models.moving_average import estimate_from_prices
from ensemble_trader.shared.config.schema import AppConfig
from ensemble_trader.shared.errors import InsufficientDataError
from ensemble_trader.shared.models.models import ConfidenceInterval, PriceBar, Prediction, Trend
from ensemble_trader.shared.utils.logging import setup_logger


class PredictionService:
    """K 线 -> Prediction。

    - K 线少于 `fallback_min_bars`：均线启发式；
    - 否则：构建样本、训练一个新的 `EnsemblePredictor`，在最新特征上预测（参照价为最新收盘价）；
    - 特征提取报数据不足时同样回退到启发式。

    不会生成任何合成数据；空序列直接抛 `InsufficientDataError`。
    """

    def __init__(self, config: AppConfig | None = None):
        self.config = config or AppConfig()
        self.extractor = FeatureExtractor(self.config.features)
        self.logger = setup_logger("prediction")
        self.last_ensemble: EnsemblePredictor | None = None

    def predict_heuristic(self, bars: Sequence[PriceBar]) -> Prediction:
        if not bars:
            raise InsufficientDataError("no price bars to predict from")
        closes = [b.close for b in bars]
        out = estimate_from_prices(closes)
        latest = closes[-1]
        margin = out.volatility * (1.0 - out.confidence)
        if out.value > latest:
            trend = Trend.UP
        elif out.value < latest:
            trend = Trend.DOWN
        else:
            trend = Trend.NEUTRAL
        return Prediction(
            predicted_price=out.value,
            confidence=out.confidence,
            trend=trend,
            confidence_interval=ConfidenceInterval(lower=out.value - margin, upper=out.value + margin),
            model_weights={"moving_average": 1.0},
            reference_price=latest,
            model_name="moving_average",
            timestamp=bars[-1].timestamp,
        )

    def predict_ensemble(self, bars: Sequence[PriceBar]) -> Prediction:
        samples = self.extractor.build_samples(bars)
        ensemble = EnsemblePredictor(self.config.ensemble)
        ensemble.train(samples)
        self.last_ensemble = ensemble
        latest = self.extractor.extract(bars)
        return ensemble.predict(latest, reference_price=bars[-1].close)

    def predict_from_bars(self, bars: Sequence[PriceBar]) -> Prediction:
        bars = list(bars)
        if len(bars) < self.config.fallback_min_bars:
            self.logger.info(
                "Only %d bars (< %d), using moving-average heuristic",
                len(bars),
                self.config.fallback_min_bars,
            )
            return self.predict_heuristic(bars)
        try:
            return self.predict_ensemble(bars)
        except InsufficientDataError as exc:
            self.logger.warning("Feature extraction needs more data (%s), using heuristic", exc)
            return self.predict_heuristic(bars)
