"""ensemble_trader：集成预测 + 模拟下单核心库。

- `algo.factors`：OHLCV -> 固定顺序特征向量；
- `algo.models` / `algo.ensemble`：基础预测模型与加权集成；
- `algo.risk`：仓位/组合风控；
- `broker` / `engine`：模拟撮合账户与回测引擎。

命令行入口由仓库根目录 `main.py` 统一承载。
"""

__version__ = "0.3.0"
