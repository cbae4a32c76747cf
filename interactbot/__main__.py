#!/usr/bin/env python3
"""
Run the interaction dispatcher, or manage the bot's registered commands.

Usage:
    # Serve the webhook (default)
    python -m interactbot --port 8080

    # Register / update every command, then exit
    python -m interactbot --install-commands

    # Remove every registered command, then exit
    python -m interactbot --teardown-commands

Options override the matching environment settings (PORT, PROJECT_ID,
SECRET_ID). --install-commands and --teardown-commands are mutually
exclusive with each other and with serving.
"""
import argparse
import asyncio
import sys

from interactbot.config import Settings, settings
from interactbot.core.errors import BotError, RegistrationError
from interactbot.core.registry import SyncMode
from interactbot.infra.http_client import close_all_sessions
from interactbot.infra.logging_config import get_logger, setup_logging

logger = get_logger("interactbot")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="interactbot",
        description="Signed interaction webhook dispatcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--port", type=int, help="Listening port (default: PORT or 8080)")
    parser.add_argument("--project", help="Secret store project/namespace (default: PROJECT_ID)")
    parser.add_argument("--secret-id", help="Secret holding the downstream credential (default: SECRET_ID)")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--install-commands", action="store_true",
        help="Create or update all commands on the platform and exit",
    )
    mode.add_argument(
        "--teardown-commands", action="store_true",
        help="Delete all commands registered for this application and exit",
    )
    return parser


def apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.project is not None:
        overrides["project_id"] = args.project
    if args.secret_id is not None:
        overrides["secret_id"] = args.secret_id
    return base.model_copy(update=overrides) if overrides else base


async def run_sync(app_settings: Settings, mode: SyncMode) -> int:
    from interactbot.bootstrap import sync_commands

    try:
        result = await sync_commands(app_settings, mode)
    finally:
        await close_all_sessions()

    if mode is SyncMode.TEARDOWN and result.failed:
        logger.warning(f"Teardown finished with failures: {result.failed}")
    print(f"{mode.value}: {', '.join(result.synced) or '(none)'}")
    return 0


def serve(app_settings: Settings) -> None:
    import uvicorn

    from interactbot.transport.http_app import create_app

    uvicorn.run(
        create_app(app_settings),
        host="0.0.0.0",
        port=app_settings.port,
        log_config=None,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    app_settings = apply_overrides(settings, args)
    setup_logging(level=app_settings.log_level, use_json=app_settings.is_production)

    if args.install_commands or args.teardown_commands:
        mode = SyncMode.INSTALL if args.install_commands else SyncMode.TEARDOWN
        try:
            return asyncio.run(run_sync(app_settings, mode))
        except RegistrationError as exc:
            logger.warning(str(exc))
            return 1
        except BotError as exc:
            logger.warning(f"Command sync aborted: {exc}")
            return 1

    serve(app_settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
