"""历史 K 线加载。

CSV 列：timestamp, open, high, low, close[, volume]。
timestamp 支持 ISO 字符串或秒/毫秒时间戳；统一转为 UTC。
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pandas as pd

from ensemble_trader.shared.models.models import PriceBar

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close")


def _parse_timestamps(col: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(col):
        # 毫秒时间戳 > 1e12
        unit = "ms" if float(col.max()) > 1e12 else "s"
        return pd.to_datetime(col, unit=unit, utc=True)
    return pd.to_datetime(col, utc=True)


def bars_from_frame(df: pd.DataFrame) -> list[PriceBar]:
    """DataFrame -> PriceBar 列表（按时间升序，重复时间戳保留最后一条）。"""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"missing columns: {missing}")
    frame = df.copy()
    frame["timestamp"] = _parse_timestamps(frame["timestamp"])
    if "volume" not in frame.columns:
        frame["volume"] = 0.0
    frame = (
        frame.dropna(subset=list(REQUIRED_COLUMNS))
        .sort_values("timestamp", kind="mergesort")
        .drop_duplicates(subset="timestamp", keep="last")
        .reset_index(drop=True)
    )
    return list(_iter_bars(frame))


def _iter_bars(frame: pd.DataFrame) -> Iterator[PriceBar]:
    for row in frame.itertuples(index=False):
        volume = float(row.volume)
        yield PriceBar(
            timestamp=row.timestamp.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=volume if volume == volume else 0.0,
        )


def load_bars_csv(path: str | Path) -> list[PriceBar]:
    """从 CSV 读取 K 线。"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    return bars_from_frame(df)
