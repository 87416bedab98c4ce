"""CLI entry point: load settings, log in and keep the configured secrets fresh."""

from __future__ import annotations

import argparse
import logging
import sys

from vault_lease_cache.config import DEFAULT_CONFIG_PATH, ConfigError, load_settings


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="vault-lease-cache: self-renewing cache of HashiCorp Vault secrets",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to settings.yaml",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch the configured secrets once, print them masked and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    from vault_lease_cache.prompt.console import run_console

    return run_console(settings, once=args.once)


if __name__ == "__main__":
    sys.exit(main())
