"""vaultsim.cli

Command line interface entry point for vaultsim.

Design constraints:
- argparse-based.
- Lazy imports: do not import heavy dependencies at parse time.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

EPILOG = "Past performance is a simulation. Synthetic data is always flagged."


@dataclass(frozen=True)
class CliContext:
    repo_root: Path


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultsim",
        description="Backtest vault allocation strategies and rebalancing rules.",
        epilog=EPILOG,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )

    sub = parser.add_subparsers(dest="command")

    p_bt = sub.add_parser("backtest", help="Run a backtest from a JSON or YAML request file")
    p_bt.add_argument("request", type=Path, help="Path to the backtest request (.json, .yaml, .yml).")
    p_bt.add_argument("--output", "-o", type=Path, default=None, help="Write the result JSON here instead of stdout.")
    p_bt.add_argument("--config", type=Path, default=None, help="Config file (default: config/default.yaml).")
    p_bt.add_argument("--seed", type=int, default=None, help="Seed for synthetic fallback prices.")
    p_bt.add_argument("--prices-dir", type=Path, default=None, help="Directory of <ASSET>.csv price files, tried first.")
    p_bt.add_argument("--offline", action="store_true", help="Disable live HTTP price sources.")

    sub.add_parser("sources", help="List registered price sources")

    return parser


def _print_version() -> None:
    from vaultsim import __version__

    print(f"vaultsim v{__version__}")


def _load_config(ctx: CliContext, path: Path | None):
    from vaultsim.core.config import Config

    if path is not None:
        return Config.from_yaml(path)
    return Config.from_repo_defaults(ctx.repo_root)


def _apply_overrides(config, args: argparse.Namespace):
    prices = config.prices
    sources = list(prices.sources)
    if args.offline:
        sources = []
    csv_cfg = config.csv
    if args.prices_dir is not None:
        csv_cfg = csv_cfg.model_copy(update={"directory": args.prices_dir})
        sources = ["csv", *[s for s in sources if s != "csv"]]

    update: dict[str, object] = {"sources": sources}
    if args.seed is not None:
        update["seed"] = args.seed
    return config.model_copy(update={"prices": prices.model_copy(update=update), "csv": csv_cfg})


def _cmd_backtest(ctx: CliContext, args: argparse.Namespace) -> int:
    # Lazy imports
    from pydantic import ValidationError

    from vaultsim.backtest.engine import run_backtest
    from vaultsim.backtest.io import dump_result, load_request
    from vaultsim.core.exceptions import ConfigError
    from vaultsim.core.logging import configure_logging

    try:
        config = _apply_overrides(_load_config(ctx, args.config), args)
    except (ConfigError, ValidationError) as e:
        print(f"error: invalid config: {e}", file=sys.stderr)
        return 2

    configure_logging(config.logging)

    try:
        request = load_request(args.request)
    except FileNotFoundError:
        print(f"error: request not found: {args.request}", file=sys.stderr)
        return 2
    except (ValueError, ValidationError) as e:
        print(f"error: invalid request: {e}", file=sys.stderr)
        return 2

    try:
        result = run_backtest(request, config=config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    text = dump_result(result, args.output)
    m = result.metrics
    if args.output is None:
        print(text)
    else:
        print(f"result: {args.output}")
        print(f"- final value: {m.final_value:.2f}")
        print(f"- total return: {m.total_return:.2f}%")
        print(f"- buy and hold: {m.buy_and_hold_return:.2f}%")
        print(f"- max drawdown: {m.max_drawdown:.2f}%")
        print(f"- rebalances: {m.num_rebalances}")

    if m.using_mock_data:
        print(f"warning: {m.data_source_warning}", file=sys.stderr)
    return 0


def _cmd_sources(ctx: CliContext, args: argparse.Namespace) -> int:
    from vaultsim.sources import list_sources

    for name in list_sources():
        print(name)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = CliContext(repo_root=_repo_root_from_cwd())

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "backtest": _cmd_backtest,
        "sources": _cmd_sources,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    return int(fn(ctx, args))


if __name__ == "__main__":
    raise SystemExit(main())
