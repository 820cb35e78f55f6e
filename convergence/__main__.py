"""Entry point: python -m convergence <command>

Commands:
  run          Drive every scheduled task until interrupted
  cycle        Refresh positions once, then run one synthesis cycle
  sweep        Deactivate expired signals
  track        Mark active signals to the latest prices
  performance  Summarize tracked signal outcomes
  backtest     Replay persisted signals against historical candles
  analyze      Re-score known wallets
  seed         Register wallet addresses for analysis
  discover     Pull candidate wallets from the public leaderboard
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv

from convergence.backtest import print_report
from convergence.config import ConfigError, EngineConfig
from convergence.datastore import DataStore
from convergence.engine import ConvergenceEngine
from convergence.hl_client import HyperliquidClient
from convergence.logging_setup import configure_logging
from convergence.price_feed import HyperliquidPriceFeed
from convergence.scheduler import TaskScheduler, build_default_tasks

log = structlog.get_logger()


def build_engine(config: EngineConfig) -> ConvergenceEngine:
    store = DataStore(config.DB_PATH)
    client = HyperliquidClient(
        info_url=config.HL_INFO_URL,
        leaderboard_url=config.HL_LEADERBOARD_URL,
        timeout=config.HTTP_TIMEOUT,
    )
    price_feed = HyperliquidPriceFeed(
        url=config.HL_INFO_URL,
        stale_after=config.PRICE_STALE_SECONDS,
        timeout=config.HTTP_TIMEOUT,
    )
    return ConvergenceEngine(store, client, price_feed, config)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_run(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    scheduler = TaskScheduler(engine.store, build_default_tasks(engine, engine.config))
    scheduler.recover_state()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_shutdown)
        except NotImplementedError:
            pass

    log.info("scheduler_starting", tasks=[t.name for t in scheduler.tasks], db=engine.config.DB_PATH)
    await scheduler.run(tick_interval_s=args.tick, max_ticks=args.max_ticks)
    return 0


async def cmd_cycle(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    if not args.skip_refresh:
        await engine.refresh_positions()
    result = await engine.run_synthesis_cycle()
    print(
        f"created={result.signals_created} updated={result.signals_updated} "
        f"invalidated={result.signals_invalidated} skipped={','.join(result.coins_skipped) or '-'}"
    )
    for s in engine.get_active_signals():
        print(
            f"  {s.coin:<8} {s.direction.value:<5} conf={s.confidence:>3d} "
            f"risk={s.risk_score:>3d} {s.signal_strength.value:<6} "
            f"entry={s.suggested_entry:.4f} stop={s.stop_loss:.4f} "
            f"tp1={s.take_profit_1:.4f} lev={s.suggested_leverage:.1f}x"
        )
    return 0


async def cmd_sweep(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    print(f"expired={engine.sweep_expired()}")
    return 0


async def cmd_track(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    result = await engine.track_signals()
    closed = ",".join(f"{coin}:{direction}" for coin, direction in result.closed) or "-"
    print(f"updated={result.updated} closed={closed}")
    return 0


async def cmd_performance(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    summary, assets = engine.get_performance(args.days)
    print(
        f"closed={summary.closed_signals} of {summary.total_signals} "
        f"win_rate={summary.win_rate * 100:.1f}% total_pnl={summary.total_pnl_pct:+.2f}%"
    )
    for a in assets:
        print(
            f"  {a.coin:<8} n={a.total_signals:<4d} wr={a.win_rate * 100:5.1f}% "
            f"total={a.total_pnl_pct:+.2f}% best={a.best_pnl_pct:+.2f}% worst={a.worst_pnl_pct:+.2f}%"
        )
    return 0


async def cmd_backtest(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    summary = await engine.run_backtest(args.days, args.max_signals)
    print_report(summary)
    return 0


async def cmd_analyze(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    counts = await engine.reanalyze_wallets(limit=args.limit)
    print(" ".join(f"{k}={v}" for k, v in counts.items()))
    return 0


async def cmd_seed(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    addresses = list(args.addresses)
    if args.file:
        for line in Path(args.file).read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                addresses.append(line)
    inserted = engine.store.ensure_wallets(addresses)
    print(f"seeded={inserted} of {len(addresses)}")
    return 0


async def cmd_discover(engine: ConvergenceEngine, args: argparse.Namespace) -> int:
    print(f"discovered={await engine.discover_wallets()}")
    return 0


COMMANDS = {
    "run": cmd_run,
    "cycle": cmd_cycle,
    "sweep": cmd_sweep,
    "track": cmd_track,
    "performance": cmd_performance,
    "backtest": cmd_backtest,
    "analyze": cmd_analyze,
    "seed": cmd_seed,
    "discover": cmd_discover,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="convergence",
        description="Convergence signal engine for Hyperliquid wallets",
    )
    parser.add_argument("--db-path", default=None, help="SQLite DB path (overrides CONVERGENCE_DB_PATH)")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run the scheduler until interrupted")
    run.add_argument("--tick", type=float, default=1.0, help="seconds between cadence checks")
    run.add_argument("--max-ticks", type=int, default=None)

    cycle = sub.add_parser("cycle", help="one refresh + synthesis cycle")
    cycle.add_argument("--skip-refresh", action="store_true", help="use stored positions as-is")

    sub.add_parser("sweep", help="deactivate expired signals")
    sub.add_parser("track", help="mark active signals to the latest prices")

    perf = sub.add_parser("performance", help="summarize tracked signal outcomes")
    perf.add_argument("--days", type=int, default=None, help="lookback window in days")

    bt = sub.add_parser("backtest", help="backtest persisted signals")
    bt.add_argument("--days", type=int, default=None, help="lookback window in days")
    bt.add_argument("--max-signals", type=int, default=None)

    analyze = sub.add_parser("analyze", help="re-score known wallets")
    analyze.add_argument("--limit", type=int, default=None)

    seed = sub.add_parser("seed", help="register wallet addresses")
    seed.add_argument("addresses", nargs="*")
    seed.add_argument("--file", default=None, help="file with one address per line")

    sub.add_parser("discover", help="pull candidate wallets from the leaderboard")
    return parser


async def _dispatch(config: EngineConfig, args: argparse.Namespace) -> int:
    engine = build_engine(config)
    try:
        return await COMMANDS[args.command](engine, args)
    finally:
        await engine.close()
        engine.store.close()


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    config = EngineConfig()
    if args.db_path:
        config.DB_PATH = args.db_path
    try:
        config.validate_required()
    except ConfigError as exc:
        log.error("config_invalid", error=str(exc))
        return 1

    try:
        return asyncio.run(_dispatch(config, args))
    except KeyboardInterrupt:
        log.info("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
