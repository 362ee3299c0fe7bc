"""技术指标（纯函数）。

输入为 pandas Series（按时间升序），输出与输入等长的 Series；
预热期不足的位置为 NaN，由上层统一处理。所有除零情形都有确定的取值：
- RSI：平均亏损为 0 时取 100；
- 涨跌幅：前收盘价为 0 时取 0；
- 对数收益：价格非正时该期收益记为 0。
"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd


def sma(values: pd.Series, period: int) -> pd.Series:
    """简单移动平均。"""
    if period <= 0:
        raise ValueError("SMA period must be > 0")
    return values.astype(float).rolling(period, min_periods=period).mean()


def ema(values: pd.Series, period: int) -> pd.Series:
    """指数移动平均：以首个完整窗口的 SMA 作为种子，其后递推。

    允许输入带前导 NaN（例如 MACD 线），从第一个有效值开始计数。
    """
    if period <= 0:
        raise ValueError("EMA period must be > 0")
    arr = values.astype(float).to_numpy()
    out = np.full(arr.shape, np.nan)
    valid = np.flatnonzero(~np.isnan(arr))
    if valid.size < period:
        return pd.Series(out, index=values.index)
    start = int(valid[0])
    seed_idx = start + period - 1
    alpha = 2.0 / (period + 1)
    prev = float(np.mean(arr[start : seed_idx + 1]))
    out[seed_idx] = prev
    for i in range(seed_idx + 1, arr.size):
        prev = (arr[i] - prev) * alpha + prev
        out[i] = prev
    return pd.Series(out, index=values.index)


def rsi(values: pd.Series, period: int = 14) -> pd.Series:
    """RSI（Wilder 平滑）。"""
    if period <= 0:
        raise ValueError("RSI period must be > 0")
    arr = values.astype(float).to_numpy()
    out = np.full(arr.shape, np.nan)
    if arr.size <= period:
        return pd.Series(out, index=values.index)

    delta = np.diff(arr)
    gains = np.clip(delta, 0.0, None)
    losses = np.clip(-delta, 0.0, None)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    out[period] = _rsi_value(avg_gain, avg_loss)
    for i in range(period, delta.size):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i + 1] = _rsi_value(avg_gain, avg_loss)
    return pd.Series(out, index=values.index)


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd(values: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """MACD 线 / 信号线 / 柱。"""
    line = ema(values, fast) - ema(values, slow)
    sig = ema(line, signal)
    return pd.DataFrame({"macd": line, "macd_signal": sig, "macd_histogram": line - sig})


def bollinger(values: pd.Series, period: int = 20, num_std: float = 2.0) -> pd.DataFrame:
    """布林带（总体标准差）。"""
    middle = sma(values, period)
    std = values.astype(float).rolling(period, min_periods=period).std(ddof=0)
    return pd.DataFrame(
        {
            "bollinger_upper": middle + num_std * std,
            "bollinger_lower": middle - num_std * std,
            "bollinger_middle": middle,
        }
    )


def log_returns(values: pd.Series) -> pd.Series:
    arr = values.astype(float).to_numpy()
    out = np.full(arr.shape, np.nan)
    if arr.size > 1:
        prev, cur = arr[:-1], arr[1:]
        ok = (prev > 0) & (cur > 0)
        # 无效价格对应比值置 1，即收益 0
        out[1:] = np.log(np.where(ok, cur, 1.0) / np.where(ok, prev, 1.0))
    return pd.Series(out, index=values.index)


def realized_volatility(values: pd.Series, period: int = 20, annualization: int = 252) -> pd.Series:
    """对数收益在尾部窗口内的标准差，按 sqrt(annualization) 年化。"""
    if period <= 1:
        raise ValueError("volatility period must be > 1")
    rets = log_returns(values)
    return rets.rolling(period, min_periods=period).std(ddof=0) * math.sqrt(annualization)


def price_change(values: pd.Series) -> pd.DataFrame:
    close = values.astype(float)
    prev = close.shift(1)
    change = (close - prev).fillna(0.0)
    pct = (change / prev.where(prev != 0) * 100.0).fillna(0.0)
    return pd.DataFrame({"price_change": change, "price_change_pct": pct})
