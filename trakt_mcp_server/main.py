"""Command line entry point for Trakt MCP Server."""

import argparse
import asyncio
import signal
import sys
import time
from typing import List, Optional, TextIO

from . import __version__
from .config import Config, load_config, parse_log_level
from .logging_config import get_logger, setup_server_logging
from .server import MCPServer
from .tools import register_tools
from .trakt_client import TraktAPIError, TraktClient, TraktError


logger = get_logger("mcp_server")

# Trakt answers 400 while the user has not approved the device code yet
PENDING_STATUS = 400


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trakt-mcp-server",
        description="MCP server for Trakt.tv over stdio. Credentials come from "
                    "TRAKT_CLIENT_ID, TRAKT_CLIENT_SECRET and TRAKT_ACCESS_TOKEN."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        help="Log verbosity: debug, info, warn or error (default: LOG_LEVEL or info)"
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this rotating file (default: LOG_FILE)"
    )
    parser.add_argument(
        "--require-init",
        action="store_true",
        help="Reject tools/call requests received before initialize"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the MCP server on stdin/stdout (default)")
    subparsers.add_parser("auth", help="Run the OAuth device flow and print the resulting tokens")
    return parser


async def serve(config: Config) -> None:
    """Run the stdio server until end of input or a termination signal."""
    client = TraktClient(config.trakt)
    if not client.is_configured:
        logger.warning("TRAKT_CLIENT_ID not set - some tools will not work")

    server = MCPServer(require_initialization=config.server.require_initialization)
    register_tools(server, client)

    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def on_signal(signame: str) -> None:
        logger.info(f"shutting down signal={signame}")
        server.shutdown()
        if task is not None:
            task.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            pass

    try:
        async with client:
            await server.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def authenticate(config: Config, out: Optional[TextIO] = None) -> int:
    """Run the device flow from a terminal and print the tokens to ``out`` (stdout)."""
    if out is None:
        out = sys.stdout
    if not config.trakt.client_id or not config.trakt.client_secret:
        logger.error("TRAKT_CLIENT_ID and TRAKT_CLIENT_SECRET must be set")
        return 1

    async with TraktClient(config.trakt) as client:
        try:
            code = await client.get_device_code()
        except TraktError as e:
            logger.error(f"device code request failed error={e}")
            return 1

        print(f"Please visit: {code.verification_url}", file=sys.stderr)
        print(f"Enter code: {code.user_code}", file=sys.stderr)
        print(f"Waiting for authorization (expires in {code.expires_in} seconds)...", file=sys.stderr)

        interval = max(code.interval, 1)
        deadline = time.monotonic() + code.expires_in
        while time.monotonic() < deadline:
            await asyncio.sleep(interval)
            try:
                token = await client.poll_for_token(code.device_code)
            except TraktAPIError as e:
                if e.status_code == PENDING_STATUS:
                    continue
                if e.is_rate_limited:
                    interval += 1
                    continue
                logger.error(f"device authorization failed status={e.status_code}")
                return 1
            except TraktError as e:
                logger.error(f"device authorization failed error={e}")
                return 1

            print(f"TRAKT_ACCESS_TOKEN={token.access_token}", file=out)
            if token.refresh_token:
                print(f"TRAKT_REFRESH_TOKEN={token.refresh_token}", file=out)
            return 0

    logger.error("device code expired before authorization")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, configure logging and run the selected command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    if args.log_level:
        config.server.log_level = parse_log_level(args.log_level)
    if args.log_file:
        config.server.log_file = args.log_file
    if args.require_init:
        config.server.require_initialization = True

    setup_server_logging(config.to_dict())

    if args.command == "auth":
        return asyncio.run(authenticate(config))

    try:
        asyncio.run(serve(config))
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.info("server stopped")
        return 1
    except Exception as e:
        logger.error(f"server error error={e}")
        return 1
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
