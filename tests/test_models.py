import math

import numpy as np
import pytest

from conftest import make_bars
from ensemble_trader.algo.factors.extractor import FeatureExtractor, FeatureVector, TrainingSample
from ensemble_trader.algo.models.bagged_trees import BaggedTreesModel
from ensemble_trader.algo.models.base import ModelFamily, fit_metrics
from ensemble_trader.algo.models.linalg import gauss_jordan_inverse, solve_normal_equation
from ensemble_trader.algo.models.linear_regression import LinearRegressionModel
from ensemble_trader.algo.models.moving_average import MovingAverageModel, estimate_from_prices
from ensemble_trader.algo.models.registry import build_model, get_model_cls
from ensemble_trader.algo.models.sequence import SequenceModel
from ensemble_trader.shared.errors import InsufficientDataError, NotTrainedError, SingularMatrixError
from ensemble_trader.shared.models.models import SequenceTrend


def _price_samples(prices):
    return [
        TrainingSample(FeatureVector.from_mapping({"price": p}), float(prices[i + 1]))
        for i, p in enumerate(prices[:-1])
    ]


def _linear_samples(n=30):
    out = []
    for i in range(n):
        price = 100.0 + i
        volume = float((i * i) % 7)
        out.append(TrainingSample(FeatureVector.from_mapping({"price": price, "volume": volume}),
                                  3.0 + 2.0 * price + 0.5 * volume))
    return out


@pytest.fixture(scope="module")
def market_samples():
    return FeatureExtractor().build_samples(make_bars(120))


def test_gauss_jordan_inverse_known_matrix():
    inv = gauss_jordan_inverse(np.array([[4.0, 7.0], [2.0, 6.0]]))
    expected = np.array([[0.6, -0.7], [-0.2, 0.4]])
    assert np.allclose(inv, expected)


def test_gauss_jordan_inverse_singular_and_non_square():
    with pytest.raises(SingularMatrixError):
        gauss_jordan_inverse(np.array([[1.0, 2.0], [2.0, 4.0]]))
    with pytest.raises(ValueError):
        gauss_jordan_inverse(np.ones((2, 3)))


def test_solve_normal_equation_recovers_line():
    x = np.arange(10.0)[:, None]
    intercept, coef = solve_normal_equation(x, 1.5 + 2.0 * x[:, 0])
    assert abs(intercept - 1.5) < 1e-8
    assert abs(coef[0] - 2.0) < 1e-8


def test_fit_metrics_loss_is_range_normalized():
    m = fit_metrics([1.0, 3.0], [0.0, 2.0])
    assert abs(m.mae - 1.0) < 1e-12
    assert abs(m.rmse - 1.0) < 1e-12
    assert abs(m.loss - 0.25) < 1e-12
    assert m.samples == 2


def test_linear_regression_fits_exact_relation():
    model = LinearRegressionModel(feature_names=["price", "volume"])
    metrics = model.train(_linear_samples())
    assert metrics.loss < 1e-12

    out = model.predict(FeatureVector.from_mapping({"price": 150.0, "volume": 2.0}))
    assert out.family is ModelFamily.LINEAR_REGRESSION
    assert abs(out.value - (3.0 + 300.0 + 1.0)) < 1e-6
    assert out.coefficients_used == 2
    assert 0.0 <= out.confidence <= 1.0

    report = model.evaluate_r2(_linear_samples())
    assert report["r2"] > 0.999999


def test_linear_regression_constant_feature_is_singular():
    samples = [
        TrainingSample(FeatureVector.from_mapping({"price": 100.0 + i, "rsi": 50.0}), 101.0 + i)
        for i in range(10)
    ]
    with pytest.raises(SingularMatrixError):
        LinearRegressionModel(feature_names=["price", "rsi"]).train(samples)
    with pytest.raises(SingularMatrixError):
        LinearRegressionModel(feature_names=["price", "rsi"], standardize=False).train(samples)


def test_linear_regression_rejects_unknown_feature():
    with pytest.raises(ValueError):
        LinearRegressionModel(feature_names=["price", "moon_phase"])


def test_models_require_training_and_samples():
    vec = FeatureVector.from_mapping({"price": 1.0})
    for model in (LinearRegressionModel(), BaggedTreesModel(n_estimators=2), SequenceModel(sequence_length=3),
                  MovingAverageModel()):
        with pytest.raises(NotTrainedError):
            model.predict(vec)
        with pytest.raises(InsufficientDataError):
            model.train([])


def test_bagged_trees_reproducible_with_seed(market_samples):
    a = BaggedTreesModel(n_estimators=5, max_depth=4, seed=11)
    b = BaggedTreesModel(n_estimators=5, max_depth=4, seed=11)
    ma = a.train(market_samples)
    mb = b.train(market_samples)
    assert ma == mb

    vec = market_samples[-1].features
    pa, pb = a.predict(vec), b.predict(vec)
    assert pa.value == pb.value
    assert pa.n_trees == 5
    assert pa.tree_variance >= 0
    assert abs(pa.confidence - 1.0 / (1.0 + pa.tree_variance)) < 1e-12


def test_bagged_trees_depth_zero_predicts_bootstrap_mean(market_samples):
    model = BaggedTreesModel(n_estimators=1, max_depth=0, seed=3)
    model.train(market_samples)
    out = model.predict(market_samples[0].features)
    targets = [s.target for s in market_samples]
    assert min(targets) <= out.value <= max(targets)
    assert out.tree_variance == 0.0


def test_bagged_trees_invalid_params():
    with pytest.raises(ValueError):
        BaggedTreesModel(n_estimators=0)
    with pytest.raises(ValueError):
        BaggedTreesModel(max_depth=-1)


def test_sequence_model_min_samples_and_length():
    with pytest.raises(ValueError):
        SequenceModel(sequence_length=1)
    model = SequenceModel(sequence_length=5)
    prices = [100.0 + i for i in range(6)]
    with pytest.raises(InsufficientDataError):
        model.train(_price_samples(prices))
    model.train(_price_samples(prices + [106.0]))
    assert model.is_trained


def test_sequence_model_detects_uptrend():
    prices = [100.0 * 1.05**i for i in range(40)]
    samples = _price_samples(prices)
    model = SequenceModel(sequence_length=5, forecast_steps=3)
    model.train(samples)

    out = model.predict(FeatureVector.from_mapping({"price": prices[-1]}))
    assert out.family is ModelFamily.SEQUENCE
    assert out.trend is SequenceTrend.UP
    assert out.value > prices[-1]
    assert len(out.next_prices) == 3
    assert out.next_prices[0] == out.value
    assert 0.0 <= out.confidence <= 1.0
    assert out.volatility >= 0.0


def test_sequence_model_flat_series_is_sideways():
    samples = _price_samples([50.0] * 12)
    model = SequenceModel(sequence_length=4)
    model.train(samples)
    out = model.predict(FeatureVector.from_mapping({"price": 50.0}))
    assert out.trend is SequenceTrend.SIDEWAYS
    assert abs(out.value - 50.0) < 1e-6
    assert out.volatility == 0.0


def test_sequence_model_observe_and_evaluate(market_samples):
    model = SequenceModel(sequence_length=10)
    model.train(market_samples)
    before = model.predict(market_samples[-1].features).value
    model.observe(market_samples[-1].target)
    after = model.predict(market_samples[-1].features).value
    assert before != after

    report = model.evaluate(market_samples)
    assert report.samples == len(market_samples) + 1 - 10
    assert math.isfinite(report.loss)


def test_moving_average_short_history():
    out = estimate_from_prices([1.0, 2.0, 3.0, 4.0, 5.0])
    assert out.sma_5 == 3.0
    assert out.sma_10 == 5.0 and out.sma_20 == 5.0
    assert out.trend_delta == 0.0 and out.volatility == 0.0
    assert abs(out.value - 4.0) < 1e-12
    assert out.confidence == 0.9


def test_moving_average_full_history():
    out = estimate_from_prices([float(p) for p in range(1, 21)])
    assert abs(out.sma_5 - 18.0) < 1e-12
    assert abs(out.sma_10 - 15.5) < 1e-12
    assert abs(out.sma_20 - 10.5) < 1e-12
    assert abs(out.trend_delta - 10.0) < 1e-12
    assert abs(out.value - 16.75) < 1e-12
    assert abs(out.volatility - math.sqrt(8.25)) < 1e-12
    assert abs(out.confidence - (1 - math.sqrt(8.25) / 20.0)) < 1e-12


def test_moving_average_confidence_floor_and_empty():
    out = estimate_from_prices([100.0, 1.0] * 5)
    assert out.confidence == 0.1
    with pytest.raises(ValueError):
        estimate_from_prices([])


def test_moving_average_model_uses_trained_context():
    prices = [float(p) for p in range(1, 22)]
    model = MovingAverageModel()
    model.train(_price_samples(prices))
    out = model.predict(FeatureVector.from_mapping({"price": 21.0}))
    assert out.value == estimate_from_prices(prices[-20:]).value


def test_registry_builds_fresh_models():
    model = build_model({"type": "bagged_trees", "n_estimators": 3}, seed=5)
    assert isinstance(model, BaggedTreesModel)
    assert model.n_estimators == 3
    assert not model.is_trained

    seq = build_model({"type": "sequence", "sequence_length": 8}, seed=5)
    assert isinstance(seq, SequenceModel) and seq.sequence_length == 8
    assert get_model_cls("moving_average") is MovingAverageModel


def test_registry_rejects_unknown_type_and_params():
    with pytest.raises(ValueError):
        build_model({"type": "neural_magic"})
    with pytest.raises(ValueError):
        build_model({"type": "linear_regression", "depth": 3})
