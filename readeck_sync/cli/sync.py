"""Command line entry point for Readeck vault sync.

Run it from cron to keep a vault folder in sync:
    */30 * * * * cd /home/me/notes && readeck-sync sync >> /var/log/readeck_sync.log 2>&1

Usage:
    readeck-sync login [--password]
    readeck-sync sync
    readeck-sync reset [--sync]
    readeck-sync logout
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import getpass
import logging
import signal
import sys
from typing import TYPE_CHECKING

from readeck_sync.adapters.readeck.auth.service import AuthService
from readeck_sync.adapters.readeck.sync.service import BookmarkSyncService
from readeck_sync.config import load_config, require_api_url
from readeck_sync.core.logging_utils import setup_json_logging
from readeck_sync.domain.exceptions import AuthError, SyncError
from readeck_sync.infrastructure.settings_store import JsonSettingsStore
from readeck_sync.infrastructure.vault import FileSystemVault

if TYPE_CHECKING:
    from readeck_sync.config import AppConfig

logger = logging.getLogger("readeck_sync.cli")


def _print_notice(message: str) -> None:
    print(message)


async def run_sync(cfg: AppConfig) -> int:
    """Run one sync pass.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    require_api_url(cfg)
    service = BookmarkSyncService(
        cfg.readeck,
        FileSystemVault(cfg.runtime.vault_path),
        JsonSettingsStore(cfg.runtime.state_file),
        notifier=_print_notice,
    )
    try:
        report = await service.run_sync()
    except SyncError as exc:
        print(f"\nERROR: {exc.message}")
        return 1

    if report.warnings:
        print(f"\nWarnings ({len(report.warnings)}):")
        for warning in report.warnings[:10]:
            print(f"  - {warning}")
        if len(report.warnings) > 10:
            print(f"  ... and {len(report.warnings) - 10} more")
    return 0


async def run_login(cfg: AppConfig, *, use_password: bool = False) -> int:
    require_api_url(cfg)
    auth = AuthService(cfg.readeck, JsonSettingsStore(cfg.runtime.state_file))

    if not use_password:
        try:
            device = await auth.start_login()
        except AuthError as exc:
            logger.warning("device_login_unavailable", extra={"error": str(exc)})
            print("Device login is not available on this server; using a password instead.")
        else:
            print(f"\nOpen {device.verification_uri} and enter the code: {device.user_code}")
            if device.verification_uri_complete:
                print(f"Or open {device.verification_uri_complete}")
            print("Waiting for approval (Ctrl+C to cancel)...")

            loop = asyncio.get_running_loop()
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signal.SIGINT, auth.cancel_login)
            try:
                token = await auth.await_login()
            except AuthError as exc:
                print(f"\nERROR: {exc.message}")
                return 1
            finally:
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(signal.SIGINT)

            if token is None:
                print("Login cancelled.")
                return 1
            print("Logged in to Readeck.")
            return 0

    username = input("Readeck username: ").strip()
    password = getpass.getpass("Readeck password: ")
    try:
        await auth.login_with_password(username, password)
    except AuthError as exc:
        print(f"\nERROR: {exc.message}")
        return 1
    print("Logged in to Readeck.")
    return 0


async def run_logout(cfg: AppConfig) -> int:
    auth = AuthService(cfg.readeck, JsonSettingsStore(cfg.runtime.state_file))
    revoked = await auth.logout()
    print("Logged out." if revoked else "Logged out (token could not be revoked remotely).")
    return 0


def run_reset(cfg: AppConfig) -> int:
    service = BookmarkSyncService(
        cfg.readeck,
        FileSystemVault(cfg.runtime.vault_path),
        JsonSettingsStore(cfg.runtime.state_file),
    )
    service.reset_checkpoint()
    print("Sync checkpoint cleared; the next sync fetches every bookmark.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="readeck-sync", description="Sync Readeck bookmarks into a Markdown vault"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("sync", help="Fetch changed bookmarks and write notes")
    login = subparsers.add_parser("login", help="Authorize this tool against Readeck")
    login.add_argument(
        "--password",
        action="store_true",
        help="Use username and password instead of the device code flow",
    )
    subparsers.add_parser("logout", help="Revoke and forget the stored token")
    reset = subparsers.add_parser("reset", help="Forget the last sync time")
    reset.add_argument(
        "--sync",
        action="store_true",
        help="Resync every bookmark right after clearing the checkpoint",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config()
    except RuntimeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(2)

    setup_json_logging(cfg.runtime.log_level, log_file=cfg.runtime.log_file)

    try:
        if args.command == "sync":
            exit_code = asyncio.run(run_sync(cfg))
        elif args.command == "login":
            exit_code = asyncio.run(run_login(cfg, use_password=args.password))
        elif args.command == "logout":
            exit_code = asyncio.run(run_logout(cfg))
        else:
            exit_code = run_reset(cfg)
            if exit_code == 0 and args.sync:
                exit_code = asyncio.run(run_sync(cfg))
    except RuntimeError as exc:
        logger.exception("readeck_cli_failed", extra={"command": args.command})
        print(f"\nERROR: {exc}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
