#!/usr/bin/env python3
"""Instant replay recorder launcher.

Runs the capture supervisor headless until SIGINT/SIGTERM.

Usage:
    python launch_replay.py --config configs/default.yaml
    python launch_replay.py --simulate              # No device or ffmpeg needed
    python launch_replay.py --export-on-enter       # Press Enter to save a clip
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import List, Optional

from configs.settings import AppConfig, load_config
from exceptions import ConfigError
from log_config.logger import configure_logging, get_logger
from replay.capture import CaptureSupervisor
from replay.events import ErrorEventBus, get_error_bus
from replay.initialization import build_supervisor
from replay.lifecycle import CleanupManager
from startup_validator import validate_environment

logger = get_logger(__name__)

DEFAULT_CONFIG = Path("configs/default.yaml")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Instant replay kiosk recorder")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Path to YAML configuration")
    parser.add_argument("--simulate", action="store_true", help="Use the simulated encoder and remuxer")
    parser.add_argument(
        "--export-on-enter",
        action="store_true",
        help="Export the buffer each time Enter is pressed",
    )
    return parser.parse_args(argv)


def _log_problem_summary(bus: ErrorEventBus) -> str:
    counts = bus.problem_counts()
    if not counts:
        logger.info("No problems reported this run")
        return ""
    ordered = sorted(counts.items(), key=lambda item: item[0].value)
    summary = ", ".join(f"{category.value}={count}" for category, count in ordered)
    logger.warning(f"Problems reported this run: {summary}")
    return summary


def _export_on_enter(supervisor: CaptureSupervisor, stop_event: threading.Event) -> None:
    for _ in sys.stdin:
        if stop_event.is_set():
            break
        result = supervisor.export_window()
        print(json.dumps(result.as_dict()), flush=True)
    stop_event.set()


def run(config: AppConfig, simulate: bool = False, export_on_enter: bool = False) -> int:
    errors, warnings = validate_environment(config, simulate=simulate)
    for warning in warnings:
        logger.warning(warning)
    if errors:
        for error in errors:
            logger.error(error)
        return 1

    supervisor = build_supervisor(config, simulate=simulate)

    stop_event = threading.Event()
    cleanup = CleanupManager()
    cleanup.register_cleanup("capture_supervisor", supervisor.cleanup_and_stop, timeout=10.0)
    cleanup.install(on_signal=lambda signum: stop_event.set())

    result = supervisor.start_recording()
    logger.info(f"Start: {result.message}")

    if export_on_enter:
        threading.Thread(
            target=_export_on_enter,
            args=(supervisor, stop_event),
            name="ExportOnEnter",
            daemon=True,
        ).start()

    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        cleanup.cleanup()
        _log_problem_summary(get_error_bus())

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Cannot load configuration: {e}")
        return 2

    log_dir = Path(config.logging.log_dir) if config.logging.log_dir else None
    configure_logging(
        log_dir=log_dir,
        level=config.logging.level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
    )

    return run(config, simulate=args.simulate, export_on_enter=args.export_on_enter)


if __name__ == "__main__":
    sys.exit(main())
