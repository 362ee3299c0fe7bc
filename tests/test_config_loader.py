from pathlib import Path

import pytest

from conftest import ROOT
from ensemble_trader.shared.config.config_loader import load_config, parse_config
from ensemble_trader.shared.config.schema import AppConfig, ModelSpec
from ensemble_trader.shared.errors import ConfigError


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "cfg.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_example_config_loads():
    cfg = load_config(ROOT / "config" / "config.yml", load_env=False)
    assert isinstance(cfg, AppConfig)
    assert cfg.fallback_min_bars == 60
    assert set(cfg.ensemble.models) == {"short", "medium", "long"}
    assert cfg.ensemble.models["short"].params == {"sequence_length": 30}
    assert cfg.ensemble.models["short"].recent_fraction == 0.7
    assert cfg.backtest.strategy.type == "simple_ma"
    assert cfg.backtest.strategy.params == {"short_window": 5, "long_window": 20}
    assert cfg.risk.stop_loss_percent == 3


def test_empty_file_gives_defaults(tmp_path):
    cfg = load_config(_write(tmp_path, ""), load_env=False)
    assert cfg == AppConfig()
    assert cfg.risk.max_position_size == 100_000
    assert cfg.ensemble.models["medium"] == ModelSpec(type="bagged_trees", weight=0.4)


def test_load_config_expands_env(tmp_path, monkeypatch):
    monkeypatch.setenv("ET_SEED", "7")
    monkeypatch.setenv("ET_SCHEDULE", "traditional")
    path = _write(tmp_path, "ensemble:\n  seed: ${ET_SEED}\nexecution:\n  fee_schedule: ${ET_SCHEDULE}\n")
    cfg = load_config(path, load_env=False)
    assert cfg.ensemble.seed == 7
    assert cfg.execution.fee_schedule == "traditional"


def test_load_config_reads_env_file(tmp_path, monkeypatch):
    monkeypatch.delenv("ET_FROM_FILE", raising=False)
    (tmp_path / ".env").write_text("# comment\nET_FROM_FILE='0.002'\n", encoding="utf-8")
    path = _write(tmp_path, "execution:\n  slippage_rate: ${ET_FROM_FILE}\n")
    cfg = load_config(path)
    assert cfg.execution.slippage_rate == 0.002


def test_load_config_missing_env_raises(tmp_path, monkeypatch):
    monkeypatch.delenv("ET_MISSING", raising=False)
    path = _write(tmp_path, "backtest:\n  symbol: ${ET_MISSING}\n")
    with pytest.raises(ValueError) as exc:
        load_config(path, load_env=False)
    assert "Missing environment variable" in str(exc.value)


def test_unknown_key_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, "risk:\n  max_positon_size: 5\n"), load_env=False)


def test_invalid_values_are_config_errors():
    with pytest.raises(ConfigError):
        parse_config({"features": {"sma_periods": [5, 10, 20]}})
    with pytest.raises(ConfigError):
        parse_config({"features": {"ema_fast": 30, "ema_slow": 26}})
    with pytest.raises(ConfigError):
        parse_config({"ensemble": {"models": {}}})
    with pytest.raises(ConfigError):
        parse_config({"ensemble": {"models": {"a": {"type": "sequence", "recent_fraction": 0}}}})
    with pytest.raises(ConfigError):
        parse_config({"risk": {"stop_loss_percent": 100}})


def test_non_mapping_root_and_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, "- a\n- b\n"), load_env=False)
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")
