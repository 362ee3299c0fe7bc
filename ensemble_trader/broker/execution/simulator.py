"""撮合模拟器。

职责：在给定 (side, quantity, raw_price, cash, position) 的情况下，
计算滑点/手续费、做资金与持仓检查，并返回成交后的 cash/position。
本身不持有账户状态，也不修改传入的 Position。
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ensemble_trader.broker.execution.fees import CommissionBreakdown, FeeSchedule, get_fee_schedule
from ensemble_trader.broker.execution.slippage_models import PercentSlippageModel, SlippageModel
from ensemble_trader.shared.errors import InsufficientFundsError, InsufficientPositionError
from ensemble_trader.shared.models.models import Position, Side

QTY_EPS = 1e-12


@dataclass(frozen=True)
class Quote:
    side: Side
    quantity: float
    raw_price: float
    net_price: float
    slippage: float
    commission: CommissionBreakdown

    @property
    def notional(self) -> float:
        return self.quantity * self.net_price

    @property
    def required_cash(self) -> float:
        return self.notional + self.commission.total


@dataclass(frozen=True)
class FillResult:
    cash: float
    position: Position | None
    realized_pnl: float
    commission: float


class FillSimulator:
    """现货语义撮合：不做空；sell 仅平已有仓位。

    持仓均价按成交净价（含滑点、不含手续费）加权；卖出的已实现盈亏扣除手续费。
    """

    def __init__(self, *, fee_schedule: str | FeeSchedule = "sbi", slippage: SlippageModel | None = None):
        self.fee_schedule = get_fee_schedule(fee_schedule)
        self.slippage = slippage or PercentSlippageModel(0.0)

    def quote(self, *, side: Side, quantity: float, price: float) -> Quote:
        side = Side(side)
        net_price = self.slippage.apply(price=float(price), side=side)
        return Quote(
            side=side,
            quantity=float(quantity),
            raw_price=float(price),
            net_price=net_price,
            slippage=abs(net_price - float(price)),
            commission=self.fee_schedule.commission(float(quantity) * net_price),
        )

    def check(self, *, quote: Quote, cash: float, position: Position | None) -> None:
        """下单前资金/持仓检查。

        Raises
        ------
        InsufficientFundsError
            BUY 的 数量*净价+手续费 超过现金。
        InsufficientPositionError
            SELL 数量超过现有持仓。
        """
        if quote.side is Side.BUY:
            if quote.required_cash > cash:
                raise InsufficientFundsError(
                    f"Insufficient funds: need {quote.required_cash:.2f}, have {cash:.2f}"
                )
            return
        held = position.quantity if position is not None else 0.0
        if held < quote.quantity:
            raise InsufficientPositionError(
                f"Insufficient position: want to sell {quote.quantity:g}, hold {held:g}"
            )

    def fill(self, *, symbol: str, quote: Quote, cash: float, position: Position | None) -> FillResult:
        self.check(quote=quote, cash=cash, position=position)
        fee = quote.commission.total
        if quote.side is Side.BUY:
            return self._fill_buy(symbol=symbol, quote=quote, cash=cash, position=position, fee=fee)
        return self._fill_sell(quote=quote, cash=cash, position=position, fee=fee)

    def _fill_buy(self, *, symbol: str, quote: Quote, cash: float, position: Position | None, fee: float) -> FillResult:
        if position is None:
            new_pos = Position(
                symbol=symbol,
                quantity=quote.quantity,
                average_price=quote.net_price,
                current_price=quote.net_price,
            )
        else:
            total_qty = position.quantity + quote.quantity
            cost = position.quantity * position.average_price + quote.notional
            new_pos = replace(
                position,
                quantity=total_qty,
                average_price=cost / total_qty if total_qty > 0 else 0.0,
            )
        return FillResult(cash=cash - quote.notional - fee, position=new_pos, realized_pnl=0.0, commission=fee)

    def _fill_sell(self, *, quote: Quote, cash: float, position: Position | None, fee: float) -> FillResult:
        assert position is not None
        realized = (quote.net_price - position.average_price) * quote.quantity - fee
        remaining = position.quantity - quote.quantity
        new_pos = replace(position, quantity=remaining) if remaining > QTY_EPS else None
        return FillResult(cash=cash + quote.notional - fee, position=new_pos, realized_pnl=realized, commission=fee)
