import math
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np
import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from ensemble_trader.shared.models.models import PriceBar  # noqa: E402

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_bars(n: int, base: float = 2500.0, drift: float = 1.0, seed: int = 7) -> list[PriceBar]:
    """确定性的日线序列：线性趋势 + 正弦摆动 + 固定种子噪声。"""
    rng = np.random.default_rng(seed)
    noise = rng.normal(0.0, 5.0, size=n)
    bars = []
    for i in range(n):
        close = base + drift * i + 40.0 * math.sin(i / 5.0) + float(noise[i])
        bars.append(
            PriceBar(
                timestamp=START + timedelta(days=i),
                open=close - 2.0,
                high=close + 8.0,
                low=close - 8.0,
                close=close,
                volume=100_000.0 + 1_000.0 * (i % 7),
            )
        )
    return bars


def bars_from_closes(closes) -> list[PriceBar]:
    return [
        PriceBar(timestamp=START + timedelta(days=i), open=c, high=c, low=c, close=c, volume=1_000.0)
        for i, c in enumerate(closes)
    ]


@pytest.fixture
def bars() -> list[PriceBar]:
    return make_bars(120)


@pytest.fixture
def short_bars() -> list[PriceBar]:
    return make_bars(30)
