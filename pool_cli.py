#!/usr/bin/env python3
"""
pool_cli.py

Command-line entry point for the delegation pool boost tools.

Commands:
  undelegate-boost   Unstake boost tokens from the pool
  timestamp          Wait for the pool to come up and print its timestamp

Configuration sources (precedence: CLI > ENV > config > defaults):

1) Command-line flags:
   --keypair       path to a Solana keypair file (JSON array of 64 bytes)
   --url           pool host, e.g. ec1ipse.me or 127.0.0.1:3000
   --unsecure      talk to the pool over http instead of https
   --timeout       per-request timeout in seconds
   --log-level     DEBUG | INFO | WARNING | ERROR
   --program-id    delegation program id
   --config        path to config.json (default: config.json)

2) Environment variables:
   POOL_KEYPAIR
   POOL_URL
   POOL_UNSECURE      ("true"/"false")
   POOL_TIMEOUT
   POOL_LOG_LEVEL
   POOL_PROGRAM_ID

3) config.json keys (optional):
   {
     "keypair_path": "~/.config/solana/id.json",
     "url": "ec1ipse.me",
     "unsecure": false,
     "timeout": 10,
     "log_level": "WARNING",
     "delegation_program_id": "..."
   }
"""

import argparse
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from rich.markup import escape
from solders.keypair import Keypair
from solders.pubkey import Pubkey

import undelegate_boost
from boost_tx import DELEGATION_PROGRAM_ID, InvalidAmountError, InvalidMintError
from pool_api import DEFAULT_TIMEOUT, FetchError, MalformedResponseError, PoolApi, Success
from pool_console import configure_logging, console

logger = logging.getLogger(__name__)

CONFIG_PATH = "config.json"
DEFAULT_KEYPAIR_PATH = "~/.config/solana/id.json"
DEFAULT_POOL_URL = "ec1ipse.me"
DEFAULT_LOG_LEVEL = "WARNING"


class ConfigError(Exception):
    """Missing or invalid configuration."""


# -----------------------------
# Config helpers
# -----------------------------
def load_local_config(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        try:
            cfg = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"{path} must contain a JSON object.")
    return cfg


def str_to_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    if v in ("1", "true", "yes", "y"):
        return True
    if v in ("0", "false", "no", "n"):
        return False
    return default


def first_non_none(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def load_keypair(path: str) -> Keypair:
    """Load a Solana CLI keypair file (a JSON array of 64 integers)."""
    full_path = os.path.expanduser(path)
    if not os.path.exists(full_path):
        raise ConfigError(f"Keypair file not found: {full_path}")

    with open(full_path, "r") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Keypair file {full_path} is not valid JSON: {e}") from e

    try:
        return Keypair.from_bytes(bytes(raw))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Keypair file {full_path} does not hold a valid keypair: {e}") from e


@dataclass(frozen=True)
class Settings:
    keypair_path: str
    url: str
    unsecure: bool
    timeout: float
    log_level: str
    program_id: Pubkey


def resolve_settings(args: argparse.Namespace, env: Mapping[str, str] = os.environ) -> Settings:
    cfg = load_local_config(args.config)

    keypair_path = first_non_none(
        args.keypair,
        env.get("POOL_KEYPAIR"),
        cfg.get("keypair_path"),
        DEFAULT_KEYPAIR_PATH,
    )

    url = first_non_none(args.url, env.get("POOL_URL"), cfg.get("url"), DEFAULT_POOL_URL)
    if "://" in url:
        raise ConfigError("Pool URL must be a bare host (use --unsecure for http).")

    # --unsecure can only switch http on; otherwise env, then config
    if args.unsecure:
        unsecure = True
    else:
        unsecure = str_to_bool(env.get("POOL_UNSECURE"), default=bool(cfg.get("unsecure", False)))

    raw_timeout = first_non_none(args.timeout, env.get("POOL_TIMEOUT"), cfg.get("timeout"), DEFAULT_TIMEOUT)
    try:
        timeout = float(raw_timeout)
    except (TypeError, ValueError):
        raise ConfigError(f"Timeout must be a number of seconds, got {raw_timeout!r}")
    if timeout <= 0:
        raise ConfigError("Timeout must be positive.")

    log_level = first_non_none(
        args.log_level,
        env.get("POOL_LOG_LEVEL"),
        cfg.get("log_level"),
        DEFAULT_LOG_LEVEL,
    )

    raw_program_id = first_non_none(
        args.program_id,
        env.get("POOL_PROGRAM_ID"),
        cfg.get("delegation_program_id"),
    )
    if raw_program_id is None:
        program_id = DELEGATION_PROGRAM_ID
    else:
        try:
            program_id = Pubkey.from_string(raw_program_id)
        except ValueError as e:
            raise ConfigError(f"Invalid delegation program id {raw_program_id!r}: {e}") from e

    return Settings(
        keypair_path=keypair_path,
        url=url,
        unsecure=unsecure,
        timeout=timeout,
        log_level=str(log_level),
        program_id=program_id,
    )


# -----------------------------
# Commands
# -----------------------------
def cmd_undelegate_boost(args: argparse.Namespace, settings: Settings) -> int:
    keypair = load_keypair(settings.keypair_path)
    with PoolApi(settings.url, unsecure=settings.unsecure, timeout=settings.timeout) as api:
        result = undelegate_boost.run(
            args.amount,
            args.mint,
            keypair,
            api,
            program_id=settings.program_id,
        )
    if result is None or isinstance(result, Success):
        return 0
    return 1


def cmd_timestamp(args: argparse.Namespace, settings: Settings) -> int:
    with PoolApi(settings.url, unsecure=settings.unsecure, timeout=settings.timeout) as api:
        ts = api.get_timestamp()
    console.print(f"[info]Server timestamp:[/info] [highlight]{ts}[/highlight]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pool-boost",
        description="Manage boost stake delegated to a mining pool.",
    )
    parser.add_argument(
        "--config",
        default=CONFIG_PATH,
        help="Path to local JSON config file (default: config.json).",
    )
    parser.add_argument(
        "--keypair",
        help="Solana keypair file. Overrides POOL_KEYPAIR env and config.json.",
    )
    parser.add_argument(
        "--url",
        help="Pool host (no scheme). Overrides POOL_URL env and config.json.",
    )
    parser.add_argument(
        "--unsecure",
        action="store_true",
        help="Use http instead of https.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help=f"Per-request timeout in seconds (default: {DEFAULT_TIMEOUT:g}).",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: WARNING).",
    )
    parser.add_argument(
        "--program-id",
        help="Delegation program id. Overrides POOL_PROGRAM_ID env and config.json.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    unboost = subparsers.add_parser(
        "undelegate-boost",
        help="Unstake boost tokens from the pool.",
    )
    undelegate_boost.add_arguments(unboost)
    unboost.set_defaults(func=cmd_undelegate_boost)

    timestamp = subparsers.add_parser(
        "timestamp",
        help="Wait for the pool to answer and print its timestamp.",
    )
    timestamp.set_defaults(func=cmd_timestamp)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args)
        configure_logging(settings.log_level)
        return args.func(args, settings)
    except ConfigError as e:
        console.print(f"[error]Configuration error: {escape(str(e))}[/error]")
    except MalformedResponseError as e:
        console.print(f"[error]  Pool returned unexpected data: {escape(str(e))}[/error]")
    except FetchError as e:
        console.print(f"[error]  Unable to reach the pool: {escape(str(e))}[/error]")
    except InvalidMintError as e:
        console.print(f"[error]  {escape(str(e))}[/error]")
    except InvalidAmountError as e:
        console.print(f"[error]  Invalid amount: {escape(str(e))}[/error]")
    except KeyboardInterrupt:
        console.print("\n[warning]Interrupted by user. Exiting...[/warning]")
        return 130
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
