import logging

from ensemble_trader.algo.risk.manager import RiskManager

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    熔断器 (Circuit Breaker)

    日损或回撤越界后锁存“停止开仓”状态，直到显式 reset()
    """

    def __init__(self, risk: RiskManager):
        self.risk = risk
        self.tripped = False
        self.last_trigger_reason = ""

    def _trip(self, reason: str) -> bool:
        self.tripped = True
        self.last_trigger_reason = reason
        logger.error(f"Circuit Breaker Triggered: {reason}")
        return False

    def check(self, daily_pnl: float = 0.0, equity: float | None = None, peak_equity: float | None = None) -> bool:
        """
        检查当前账户状态

        Returns:
            True: 安全
            False: 熔断（已触发过则一直为 False）
        """
        if self.tripped:
            return False

        if not self.risk.daily_loss_ok(daily_pnl):
            return self._trip(
                f"Daily loss > {self.risk.params.max_daily_loss:.0f} (Current: {daily_pnl:.2f})"
            )

        if equity is not None and peak_equity is not None and not self.risk.drawdown_ok(equity, peak_equity):
            drawdown = (peak_equity - equity) / peak_equity * 100
            return self._trip(
                f"Drawdown > {self.risk.params.max_drawdown_percent}% (Current: {drawdown:.2f}%)"
            )

        return True

    def reset(self):
        """人工确认后解除熔断"""
        self.tripped = False
        self.last_trigger_reason = ""
