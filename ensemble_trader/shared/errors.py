"""核心异常体系。

约定：
- 数据/模型类错误直接抛给调用方，由调用方决定回退（例如改用均线启发式模型）；
- 下单类错误统一继承 `OrderRejectedError`，由撮合层转换为 REJECTED 订单，不向上冒泡。
"""

from __future__ import annotations


class TradingCoreError(Exception):
    """所有核心异常的基类。"""


class InsufficientDataError(TradingCoreError):
    """样本/K 线数量不足。"""


class NotTrainedError(TradingCoreError):
    """未训练即预测（编程错误，不做重试）。"""


class SingularMatrixError(TradingCoreError):
    """正规方程 X^T X 不可逆（消元时主元过小）。"""


class NoValidPredictionError(TradingCoreError):
    """集成内所有模型均无法给出预测。"""


class OrderStateError(TradingCoreError):
    """订单已处于终态，不允许再次迁移。"""


class ConfigError(ValueError):
    """配置校验失败。"""


class OrderRejectedError(TradingCoreError):
    """下单被拒绝；`reason` 为可读原因。"""

    code = "rejected"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InsufficientFundsError(OrderRejectedError):
    code = "insufficient_funds"


class InsufficientPositionError(OrderRejectedError):
    code = "insufficient_position"


class RiskLimitExceededError(OrderRejectedError):
    code = "risk_limit"
