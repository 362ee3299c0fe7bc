import math

import pytest

from conftest import make_bars
from ensemble_trader.algo.factors.extractor import FEATURE_NAMES, FeatureExtractor, FeatureVector
from ensemble_trader.shared.config.schema import FeatureConfig
from ensemble_trader.shared.errors import InsufficientDataError


def test_required_bars_default_is_longest_sma():
    assert FeatureExtractor().required_bars == 50


def test_extract_is_deterministic(bars):
    ext = FeatureExtractor()
    a = ext.extract(bars)
    b = ext.extract(list(bars))
    assert a.values == b.values
    assert len(a.values) == len(FEATURE_NAMES)
    assert all(math.isfinite(v) for v in a.values)


def test_extract_as_of_uses_only_past_bars(bars):
    ext = FeatureExtractor()
    full = ext.extract(bars, as_of_index=70)
    truncated = ext.extract(bars[:71])
    assert full.values == truncated.values
    assert full.price == bars[70].close
    assert full.timestamp == bars[70].timestamp


def test_extract_negative_index_counts_from_end(bars):
    ext = FeatureExtractor()
    assert ext.extract(bars, as_of_index=-1).values == ext.extract(bars).values


def test_extract_insufficient_bars():
    with pytest.raises(InsufficientDataError):
        FeatureExtractor().extract(make_bars(49))


def test_extract_out_of_range(bars):
    with pytest.raises(IndexError):
        FeatureExtractor().extract(bars, as_of_index=len(bars))


def test_extract_rejects_unordered_bars(bars):
    shuffled = list(bars)
    shuffled[10], shuffled[20] = shuffled[20], shuffled[10]
    with pytest.raises(ValueError):
        FeatureExtractor().extract(shuffled)


def test_build_samples_targets_are_next_close(bars):
    samples = FeatureExtractor().build_samples(bars)
    assert len(samples) == len(bars) - 50
    first, last = samples[0], samples[-1]
    assert first.features.price == bars[49].close
    assert first.target == bars[50].close
    assert last.target == bars[-1].close


def test_build_samples_needs_one_extra_bar():
    with pytest.raises(InsufficientDataError):
        FeatureExtractor().build_samples(make_bars(50))
    assert len(FeatureExtractor().build_samples(make_bars(51))) == 1


def test_custom_periods_shrink_warmup():
    cfg = FeatureConfig(sma_periods=[2, 3, 4, 5], ema_fast=3, ema_slow=6, macd_signal=3,
                        rsi_period=4, bollinger_period=5, volume_period=5, volatility_period=5)
    ext = FeatureExtractor(cfg)
    assert ext.required_bars == 8
    vec = ext.extract(make_bars(8))
    assert vec["sma_5"] != 0.0


def test_feature_vector_helpers():
    vec = FeatureVector.from_mapping({"price": 10.0, "rsi": float("nan"), "volume": 5.0})
    assert vec.price == 10.0
    assert vec["rsi"] == 0.0
    assert list(vec.select(["price", "volume"])) == [10.0, 5.0]
    assert vec.as_dict()["volume"] == 5.0
    with pytest.raises(ValueError):
        FeatureVector(values=(1.0, 2.0))
