"""ensemble_trader 统一命令行入口。

该模块提供单一入口 `main.py`，通过子命令驱动不同任务：

- `predict`：读取历史 K 线，输出集成预测（数据不足时回退到均线启发式）。
- `backtest`：单次回测，输出绩效表。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

from ensemble_trader.engine.backtest_engine import BacktestEngine
from ensemble_trader.market_data.loader import load_bars_csv
from ensemble_trader.prediction.service import PredictionService
from ensemble_trader.shared.config.config_loader import load_config
from ensemble_trader.shared.config.schema import AppConfig, StrategyConfig
from ensemble_trader.shared.models.models import Prediction

console = Console()


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (predict/backtest)
    data: K 线 CSV 路径
    """
    config: str
    task: str
    data: str
    strategy: str | None = None   # backtest 时覆盖配置里的策略类型
    symbol: str | None = None


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="ensemble-trader", description="ensemble_trader 统一入口")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... backtest`（全局）与 `python main.py backtest --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task", required=True)

    p_predict = sub.add_parser("predict", help="集成价格预测")
    _add_config_arg(p_predict, default=argparse.SUPPRESS)
    p_predict.add_argument("--data", required=True, help="K 线 CSV (timestamp,open,high,low,close,volume)")

    p_backtest = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    p_backtest.add_argument("--data", required=True, help="K 线 CSV (timestamp,open,high,low,close,volume)")
    p_backtest.add_argument("--strategy", default=None, help="策略类型 (simple_ma/forecast)")
    p_backtest.add_argument("--symbol", default=None, help="标的代码（默认取配置）")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    """解析命令行参数。"""
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task,
        data=ns.data,
        strategy=getattr(ns, "strategy", None),
        symbol=getattr(ns, "symbol", None),
    )


def _with_strategy(cfg: AppConfig, name: str | None) -> AppConfig:
    if not name or name == cfg.backtest.strategy.type:
        return cfg
    backtest = cfg.backtest.model_copy(update={"strategy": StrategyConfig(type=name)})
    return cfg.model_copy(update={"backtest": backtest})


def _print_prediction(pred: Prediction) -> None:
    table = Table(title=f"Prediction ({pred.model_name})", box=box.ROUNDED)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")
    table.add_row("Reference price", f"{pred.reference_price:,.2f}" if pred.reference_price is not None else "-")
    table.add_row("Predicted price", f"{pred.predicted_price:,.2f}")
    table.add_row("Confidence", f"{pred.confidence:.2%}")
    table.add_row("Trend", pred.trend.value)
    table.add_row(
        "Interval",
        f"{pred.confidence_interval.lower:,.2f} ~ {pred.confidence_interval.upper:,.2f}",
    )
    for name, weight in pred.model_weights.items():
        table.add_row(f"weight[{name}]", f"{weight:.4f}")
    console.print(table)


def _print_performance(perf: dict) -> None:
    table = Table(title="Backtest performance", box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")
    for key, value in perf.items():
        text = f"{value:,.4f}" if isinstance(value, float) else str(value)
        table.add_row(key, text)
    console.print(table)


def main(argv: list[str] | None = None) -> Any:
    """程序主入口。

    Returns
    -------
    Any
        predict 返回 `Prediction`；backtest 返回绩效 dict。
    """
    args = parse_args(argv)
    cfg = load_config(args.config)
    bars = load_bars_csv(args.data)

    if args.task == "predict":
        pred = PredictionService(cfg).predict_from_bars(bars)
        _print_prediction(pred)
        return pred

    if args.task == "backtest":
        result = BacktestEngine(_with_strategy(cfg, args.strategy)).run(bars, symbol=args.symbol)
        _print_performance(result.performance)
        return result.performance

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
