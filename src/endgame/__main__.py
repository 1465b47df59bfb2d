"""Endgame Bot - Entry Point

Usage:
    python -m endgame [--config PATH] [--dry-run | --live] [--log-level LEVEL]

Commands:
    run     - Start the bot (default)
    version - Show version

Examples:
    python -m endgame
    python -m endgame --config config/production.toml --live
    python -m endgame --dry-run --log-level DEBUG
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

from endgame import __version__

CONFIG_SEARCH_PATHS = (
    Path("config/default.toml"),
    Path("endgame.toml"),
    Path("/etc/endgame/endgame.toml"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="endgame",
        description="Polymarket near-resolution buying bot",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Endgame {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        default=None,
        help="Log opportunities without submitting orders",
    )
    mode.add_argument(
        "--live",
        dest="dry_run",
        action="store_false",
        help="Submit real orders (requires a private key)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("run", help="Start the bot")
    subparsers.add_parser("version", help="Show version")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def find_config_file(specified: Optional[Path]) -> Optional[Path]:
    """Explicit path if it exists, else the first default location found."""
    if specified is not None:
        return specified if specified.exists() else None

    for path in CONFIG_SEARCH_PATHS:
        if path.exists():
            return path

    return None


def cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.dry_run is not None:
        overrides["bot.dry_run"] = args.dry_run
    if args.log_level is not None:
        overrides["bot.log_level"] = args.log_level
    return overrides


async def run_bot(args: argparse.Namespace) -> int:
    """Run the bot until a shutdown signal or an unrecoverable feed failure."""
    from endgame.app import EndgameApp
    from endgame.core.config import ConfigManager
    from endgame.core.logging import setup_logging

    config_path = find_config_file(args.config)
    config = ConfigManager(config_path, overrides=cli_overrides(args))

    log = setup_logging(
        level=config.get_str("bot.log_level", "INFO"),
        json_output=config.get_bool("bot.log_json", False),
        log_file=config.get("bot.log_file"),
    )

    if args.config is not None and config_path is None:
        log.warning("config_file_not_found", path=str(args.config))

    log.info(
        "loading_endgame",
        version=__version__,
        config=str(config_path) if config_path else "defaults",
    )

    app = EndgameApp(config)
    try:
        return await app.run_forever()
    except Exception as e:
        log.error("fatal_error", error=str(e))
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"Endgame {__version__}")
        return 0

    try:
        return asyncio.run(run_bot(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
