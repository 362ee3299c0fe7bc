"""回测绩效指标计算。"""

from __future__ import annotations

import math
from datetime import datetime
from statistics import mean, median, pstdev
from typing import Iterable, Sequence

TRADING_DAYS = 252


def _annualization_factor(equity_curve: Sequence[tuple[datetime, float]]) -> float:
    """根据 equity_curve 的时间间隔估计 Sharpe 年化因子（按 252 个交易日）。"""
    if len(equity_curve) < 2:
        return math.sqrt(TRADING_DAYS)
    deltas = []
    for i in range(1, len(equity_curve)):
        dt = (equity_curve[i][0] - equity_curve[i - 1][0]).total_seconds()
        if dt > 0:
            deltas.append(dt)
    if not deltas:
        return math.sqrt(TRADING_DAYS)
    med = median(deltas)
    # 日线及更粗的周期都按“每个点一天”处理
    periods_per_day = max(1.0, 86400 / med) if med > 0 else 1.0
    return math.sqrt(TRADING_DAYS * periods_per_day)


def compute_equity_metrics(equity_curve: Sequence[tuple[datetime, float]]) -> dict:
    """计算权益曲线指标（总收益、最大回撤、Sharpe）。

    total_return / max_drawdown 为比例（0.1 = 10%）。
    """
    if not equity_curve:
        return {"total_return": 0.0, "max_drawdown": 0.0, "sharpe": 0.0}

    equity_curve = sorted(equity_curve, key=lambda x: x[0])
    initial_equity = equity_curve[0][1]
    final_equity = equity_curve[-1][1]
    total_return = (final_equity / initial_equity - 1) if initial_equity else 0.0

    # 最大回撤
    peak = equity_curve[0][1]
    max_dd = 0.0
    for _, eq in equity_curve:
        peak = max(peak, eq)
        dd = (eq - peak) / peak if peak else 0.0
        max_dd = min(max_dd, dd)

    returns = []
    for i in range(1, len(equity_curve)):
        prev = equity_curve[i - 1][1]
        curr = equity_curve[i][1]
        if prev > 0:
            returns.append((curr / prev) - 1)
    sharpe = 0.0
    if returns:
        mu = mean(returns)
        sigma = pstdev(returns) if len(returns) > 1 else 0.0
        factor = _annualization_factor(equity_curve)
        sharpe = (mu / sigma) * factor if sigma else 0.0

    return {"total_return": total_return, "max_drawdown": abs(max_dd), "sharpe": sharpe}


def compute_trade_metrics(realized_pnls: Iterable[float]) -> dict:
    """按平仓成交的已实现盈亏计算胜率、均值盈亏与盈亏比。"""
    wins = []
    losses = []
    pnls = []
    for pnl in realized_pnls:
        pnl = float(pnl)
        pnls.append(pnl)
        if pnl > 0:
            wins.append(pnl)
        elif pnl < 0:
            losses.append(pnl)
    total_trades = len(pnls)
    win_rate = len(wins) / total_trades if total_trades else 0.0
    avg_win = mean(wins) if wins else 0.0
    avg_loss = -mean(losses) if losses else 0.0
    total_profit = sum(wins)
    total_loss_abs = abs(sum(losses))
    profit_factor = (
        (total_profit / total_loss_abs)
        if total_loss_abs > 0
        else (float("inf") if total_profit > 0 else 0.0)
    )
    return {
        "win_rate": win_rate,
        "avg_win": avg_win,
        "avg_loss": avg_loss,
        "largest_win": max(wins) if wins else 0.0,
        "largest_loss": -min(losses) if losses else 0.0,
        "total_trades": total_trades,
        "winning_trades": len(wins),
        "losing_trades": total_trades - len(wins),
        "profit_factor": profit_factor,
        "expectancy": mean(pnls) if pnls else 0.0,
    }
