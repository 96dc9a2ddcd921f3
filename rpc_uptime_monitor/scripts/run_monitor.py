"""
Run the RPC uptime monitor until SIGINT/SIGTERM.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

try:
    # When executed as a module: python -m rpc_uptime_monitor.scripts.run_monitor
    from ..controllers.monitor_controller import MonitorConfig, MonitorController
except ImportError:
    # When executed directly: python rpc_uptime_monitor/scripts/run_monitor.py
    current_file = Path(__file__).resolve()
    repo_root = current_file.parents[2]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    from rpc_uptime_monitor.controllers.monitor_controller import MonitorConfig, MonitorController

NTFY_URL_ENV = "RPC_MONITOR_NTFY_URL"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch JSON-RPC endpoints and push a note when they come back.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
    parser.add_argument("--notify-on-down", action="store_true", help="Also notify on UP -> DOWN")
    parser.add_argument("--dry-run", action="store_true", help="Log notifications instead of sending them")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> MonitorConfig:
    data = {}
    if args.config:
        cfg_path = Path(args.config)
        if not cfg_path.exists():
            raise SystemExit(f"Config not found: {cfg_path}")
        try:
            with cfg_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SystemExit(f"Invalid YAML in {cfg_path}: {e}")
        if not isinstance(data, dict):
            raise SystemExit(f"Config root must be a mapping: {cfg_path}")

    env_url = os.getenv(NTFY_URL_ENV)
    if env_url:
        data["notify_url"] = env_url
    if args.interval is not None:
        data["check_interval"] = args.interval
    if args.notify_on_down:
        data["notify_on_down"] = True
    if args.dry_run:
        data["dry_run"] = True

    try:
        return MonitorConfig(**data)
    except ValidationError as e:
        raise SystemExit(f"Invalid config: {e}")


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    try:
        repo_root = Path(__file__).resolve().parents[2]
        logs_dir = repo_root / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / "monitor.log"
        logger.add(
            str(log_path),
            rotation="10 MB",
            retention="10 days",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            level="DEBUG",
        )
        logger.info("File logging enabled: {}", log_path)
    except Exception as e:
        logger.warning("Failed to configure file logging: {}", e)


async def run(controller: MonitorController, stop_event: asyncio.Event) -> int:
    """
    Drive the monitor until stop_event is set or the loop dies. Returns the
    process exit status.
    """
    loop_task = asyncio.create_task(controller.run_forever())
    stop_task = asyncio.create_task(stop_event.wait())
    try:
        done, _ = await asyncio.wait({loop_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if loop_task in done:
            exc = loop_task.exception()
            if exc is not None:
                logger.opt(exception=exc).error("Fatal error: {}", exc)
                return 1
            return 0
        await controller.stop()
        return 0
    finally:
        stop_task.cancel()
        if not loop_task.done():
            loop_task.cancel()
        await asyncio.gather(loop_task, stop_task, return_exceptions=True)
        await controller.aclose()


async def _main_async(config: MonitorConfig) -> int:
    controller = MonitorController(config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_signal(signum: int, frame: object) -> None:
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)
    return await run(controller, stop_event)


def main(argv: Optional[List[str]] = None) -> None:
    # Load environment variables from .env if present
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = load_config(args)
    sys.exit(asyncio.run(_main_async(config)))


if __name__ == "__main__":
    main()
