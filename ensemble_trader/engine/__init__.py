"""回测引擎。

`BacktestEngine.run(bars) -> BacktestResult`；撮合委托给 `broker.demo_broker.DemoBroker`。
"""
