"""espcli - command-line entry point.

Usage:
    espcli install [-p PATH] [-t TARGET] [-y]
    espcli init [NAME] [-l c|cpp] [-t TARGET]
    espcli devices [--no-detect]
    espcli build [-t TARGET] [-c]
    espcli flash [-p PORT] [-b BAUD]
    espcli monitor [-p PORT] [-b BAUD]
    espcli run [-p PORT] [-b BAUD] [--skip-build]
    espcli clean [-f]
    espcli doctor
    espcli menuconfig
    espcli source
    espcli targets
    espcli serve [--host HOST] [--port PORT]
    espcli mcp [--http] [--host HOST] [--port PORT]
"""

import argparse
import asyncio
import inspect
import sys

from config import VERSION, get_settings
from observability import configure_logging, get_logger

from . import commands
from .display import Display
from .prompts import PromptCancelled

logger = get_logger("cli")

COMMANDS = {
    "install": commands.install_command,
    "init": commands.init_command,
    "devices": commands.devices_command,
    "build": commands.build_command,
    "flash": commands.flash_command,
    "monitor": commands.monitor_command,
    "run": commands.run_command,
    "clean": commands.clean_command,
    "doctor": commands.doctor_command,
    "menuconfig": commands.menuconfig_command,
    "source": commands.source_command,
    "targets": commands.targets_command,
    "serve": commands.serve_command,
    "mcp": commands.mcp_command,
}

ALIASES = {"ports": "devices", "check": "doctor"}


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number, got {value}")
    return number


def _port_options(parser: argparse.ArgumentParser, baud_help: str) -> None:
    parser.add_argument("-p", "--port", help="Serial port")
    parser.add_argument("-b", "--baud", type=_positive_int, help=baud_help)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="espcli", description="CLI for ESP-IDF development")
    parser.add_argument("--version", action="version", version=f"espcli {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    sub = parser.add_subparsers(dest="command", metavar="<command>")

    install = sub.add_parser("install", help="Install ESP-IDF")
    install.add_argument("-p", "--path", help="Installation path")
    install.add_argument("-t", "--target", help="Target chip (default: all)")
    install.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompts")

    init = sub.add_parser("init", help="Create a new ESP-IDF project")
    init.add_argument("name", nargs="?", help="Project name")
    init.add_argument("-l", "--lang", choices=["c", "cpp"], help="Language: c or cpp")
    init.add_argument("-t", "--target", help="Target chip")
    init.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompts")

    devices = sub.add_parser("devices", aliases=["ports"], help="List connected devices")
    devices.add_argument("--no-detect", action="store_true", help="Skip esptool chip detection")

    build = sub.add_parser("build", help="Build the project")
    build.add_argument("-t", "--target", help="Set target before build")
    build.add_argument("-c", "--clean", action="store_true", help="Clean before build")

    _port_options(sub.add_parser("flash", help="Flash firmware to device"), "Flash baud rate")
    _port_options(sub.add_parser("monitor", help="Open serial monitor"), "Monitor baud rate")

    run = sub.add_parser("run", help="Build, flash and monitor")
    _port_options(run, "Baud rate")
    run.add_argument("--skip-build", action="store_true", help="Skip build step")

    clean = sub.add_parser("clean", help="Clean build artifacts")
    clean.add_argument("-f", "--full", action="store_true", help="Full clean (includes sdkconfig)")

    sub.add_parser("doctor", aliases=["check"], help="Check system health")
    sub.add_parser("menuconfig", help="Open the project configuration menu")
    sub.add_parser("source", help="Print the command that loads ESP-IDF in this shell")
    sub.add_parser("targets", help="List supported target chips")

    serve = sub.add_parser("serve", help="Start the HTTP/WebSocket server")
    serve.add_argument("--host", help="Listening address")
    serve.add_argument("--port", type=_positive_int, help="Listening port")

    mcp = sub.add_parser("mcp", help="Start the MCP server for AI assistants")
    mcp.add_argument("--http", action="store_true", help="Serve streamable HTTP instead of stdio")
    mcp.add_argument("--host", help="HTTP listening address")
    mcp.add_argument("--port", type=_positive_int, help="HTTP listening port")

    return parser


def setup_logging(verbose: bool) -> None:
    settings = get_settings()
    level = "DEBUG" if verbose else settings.logging.level.upper()
    try:
        configure_logging(
            log_dir=settings.paths.log_dir,
            console_enabled=settings.logging.console_enabled,
            json_enabled=settings.logging.json_enabled,
            level=level,
        )
    except OSError as e:
        configure_logging(console_enabled=settings.logging.console_enabled, level=level)
        logger.warning("File logging disabled", log_dir=str(settings.paths.log_dir), reason=str(e))


def run(argv: list[str] | None = None, display: Display | None = None) -> int:
    """Parse ``argv``, run the command and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    display = display or Display()
    command = COMMANDS[ALIASES.get(args.command, args.command)]
    logger.debug("Running command", command=args.command)

    try:
        if inspect.iscoroutinefunction(command):
            return asyncio.run(command(args, display))
        return command(args, display)
    except PromptCancelled as e:
        display.warn(str(e))
        return 0
    except KeyboardInterrupt:
        display.write()
        return 130


def main() -> None:
    """Main entry point - called by the ``espcli`` command."""
    sys.exit(run())
