"""风险管理：仓位计算、持仓/组合风险评估与下单前风控闸门。"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from ensemble_trader.shared.config.schema import RiskParameters
from ensemble_trader.shared.errors import RiskLimitExceededError
from ensemble_trader.shared.models.models import Position, RiskAction, Side

STOP_MULTIPLIER = 1.5


@dataclass(frozen=True)
class PositionRisk:
    position_size: float
    risk_amount: float
    stop_loss_price: float
    take_profit_price: float
    risk_reward_ratio: float
    within_limit: bool


@dataclass(frozen=True)
class PortfolioRisk:
    total_value: float
    total_risk: float
    risk_percent: float
    within_limit: bool
    action: RiskAction


@dataclass(frozen=True)
class RiskReport:
    portfolio: PortfolioRisk
    positions: tuple[PositionRisk, ...]
    daily_loss_ok: bool
    recommendations: tuple[str, ...]


class RiskManager:
    """风险管理器（给定参数下是纯函数集合，不持有账户状态）。

    Parameters
    ----------
    params:
        风控参数；缺省使用 `RiskParameters()` 的默认值。
    """

    def __init__(self, params: RiskParameters | None = None):
        self.params = params or RiskParameters()

    def with_parameters(self, **changes) -> "RiskManager":
        """返回参数部分更新后的新 RiskManager（原实例不变）。"""
        data = self.params.model_dump()
        data.update(changes)
        return RiskManager(RiskParameters.model_validate(data))

    def stop_loss_price(self, entry_price: float) -> float:
        return entry_price * (1 - self.params.stop_loss_percent / 100)

    def take_profit_price(self, entry_price: float) -> float:
        return entry_price * (1 + self.params.take_profit_percent / 100)

    def position_size(
        self,
        account_balance: float,
        entry_price: float,
        stop_price: float,
        risk_percent: float = 2.0,
    ) -> int:
        """按账户风险比例计算股数。

        floor(balance*risk%/|entry-stop|)，再受 floor(max_position_size/entry) 约束。
        entry == stop 或价格/余额非正时返回 0。
        """
        per_share = abs(entry_price - stop_price)
        if per_share <= 0 or entry_price <= 0 or account_balance <= 0 or risk_percent <= 0:
            return 0
        by_risk = math.floor(account_balance * (risk_percent / 100) / per_share)
        cap = math.floor(self.params.max_position_size / entry_price)
        return max(0, min(by_risk, cap))

    def position_risk(self, size: float, entry_price: float, current_price: float) -> PositionRisk:
        stop = self.stop_loss_price(entry_price)
        take = self.take_profit_price(entry_price)
        downside = entry_price - stop
        rr = (take - entry_price) / downside if downside > 0 else math.inf
        return PositionRisk(
            position_size=size,
            risk_amount=size * abs(entry_price - current_price),
            stop_loss_price=stop,
            take_profit_price=take,
            risk_reward_ratio=rr,
            within_limit=size * current_price <= self.params.max_position_size,
        )

    def portfolio_risk(self, positions: Iterable[Position], account_balance: float) -> PortfolioRisk:
        """组合风险：risk% > 1.5×上限 -> STOP，> 上限 -> REDUCE，否则 HOLD。"""
        total_value = 0.0
        total_risk = 0.0
        for p in positions:
            total_value += p.quantity * p.current_price
            total_risk += p.quantity * abs(p.average_price - p.current_price)

        if account_balance > 0:
            risk_percent = total_risk / account_balance * 100
        else:
            risk_percent = math.inf if total_risk > 0 else 0.0

        limit = self.params.max_portfolio_risk_percent
        if risk_percent > limit * STOP_MULTIPLIER:
            action = RiskAction.STOP
        elif risk_percent > limit:
            action = RiskAction.REDUCE
        else:
            action = RiskAction.HOLD
        return PortfolioRisk(
            total_value=total_value,
            total_risk=total_risk,
            risk_percent=risk_percent,
            within_limit=risk_percent <= limit,
            action=action,
        )

    def daily_loss_ok(self, daily_pnl: float) -> bool:
        return daily_pnl >= -self.params.max_daily_loss

    def drawdown_ok(self, current_value: float, peak_value: float) -> bool:
        if peak_value <= 0:
            return True
        drawdown = (peak_value - current_value) / peak_value * 100
        return drawdown <= self.params.max_drawdown_percent

    def risk_report(self, positions: Sequence[Position], account_balance: float, daily_pnl: float) -> RiskReport:
        portfolio = self.portfolio_risk(positions, account_balance)
        position_risks = tuple(
            self.position_risk(p.quantity, p.average_price, p.current_price) for p in positions
        )
        daily_ok = self.daily_loss_ok(daily_pnl)

        recommendations: list[str] = []
        if not portfolio.within_limit:
            recommendations.append("Portfolio risk exceeds the limit; reduce positions.")
        if not daily_ok:
            recommendations.append("Daily loss limit reached; stop trading for today.")
        if portfolio.action is RiskAction.STOP:
            recommendations.append("Emergency stop: close all positions.")
        elif portfolio.action is RiskAction.REDUCE:
            recommendations.append("Reduce position sizes to lower risk.")

        return RiskReport(
            portfolio=portfolio,
            positions=position_risks,
            daily_loss_ok=daily_ok,
            recommendations=tuple(recommendations),
        )

    def check_order(
        self,
        side: Side,
        quantity: float,
        price: float,
        position_quantity: float = 0.0,
        daily_pnl: float = 0.0,
        equity: float | None = None,
        peak_equity: float | None = None,
    ) -> None:
        """下单前风控闸门（只约束 BUY；SELL 总是允许减仓）。

        Raises
        ------
        RiskLimitExceededError
            持仓名义超过 max_position_size、日损超限或回撤超限。
        """
        if Side(side) is not Side.BUY:
            return
        notional = (position_quantity + quantity) * price
        if notional > self.params.max_position_size:
            raise RiskLimitExceededError(
                f"position notional {notional:.2f} exceeds max_position_size {self.params.max_position_size:.2f}"
            )
        if not self.daily_loss_ok(daily_pnl):
            raise RiskLimitExceededError(
                f"daily loss {daily_pnl:.2f} exceeds max_daily_loss {self.params.max_daily_loss:.2f}"
            )
        if equity is not None and peak_equity is not None and not self.drawdown_ok(equity, peak_equity):
            raise RiskLimitExceededError(
                f"drawdown exceeds max_drawdown_percent {self.params.max_drawdown_percent:.2f}%"
            )
