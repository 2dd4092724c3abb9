#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Ollama Supervisor - command line entry point.

Start, stop, repair and inspect the local Ollama engine.
"""

# Set proxy bypass BEFORE any imports that might cache proxy settings
import os
os.environ.setdefault('NO_PROXY', 'localhost,127.0.0.1')
os.environ.setdefault('no_proxy', 'localhost,127.0.0.1')

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def get_log_path() -> Path:
    return Path.home() / ".ollama_supervisor" / "logs" / "supervisor.log"


def setup_logging(verbose: bool = False):
    """Configure logging to console and file.

    Log file location: ~/.ollama_supervisor/logs/supervisor.log (append mode)

    Returns:
        tuple: (console_handler, file_handler) to keep references alive
    """
    log_file_path = get_log_path()
    logs_dir = log_file_path.parent

    # Create console handler first (always works)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    ))

    file_handler = None
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        # Fall back to console-only logging if log directory cannot be created
        print(f"[WARNING] Failed to create log directory {logs_dir}: {e}", file=sys.stderr)
        logs_dir = None

    if logs_dir is not None:
        try:
            file_handler = logging.FileHandler(
                log_file_path,
                mode='a',
                encoding='utf-8'
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
        except OSError as e:
            print(f"[WARNING] Failed to create log file {log_file_path}: {e}", file=sys.stderr)
            file_handler = None

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(console_handler)
    if file_handler:
        root_logger.addHandler(file_handler)

    # Suppress verbose logging from third-party libraries
    for name in ['urllib3', 'asyncio', 'concurrent', 'psutil']:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.debug("Executable: %s", sys.executable)
    logger.debug("sys.argv: %s", sys.argv)
    if file_handler:
        logger.debug("Log file: %s", log_file_path)
    else:
        logger.warning("File logging disabled - console only")

    return (console_handler, file_handler)


# Global reference to keep log handlers alive (prevents garbage collection)
_global_log_handlers = None


def build_parser() -> argparse.ArgumentParser:
    from ollama_supervisor import __app_name__, __version__

    parser = argparse.ArgumentParser(
        prog="ollama-supervisor",
        description=f"{__app_name__} {__version__}: manage the local Ollama engine",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug output on the console")
    parser.add_argument("--port", type=int, default=None, help="engine port for this invocation")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="probe whether the engine is serving")
    sub.add_parser("start", help="spawn `ollama serve` in the background")
    sub.add_parser("stop", help="terminate every engine process")
    sub.add_parser("repair", help="stop, restart and verify the engine")
    sub.add_parser("list", help="list installed models")
    sub.add_parser("scan", help="list models known to the engine or found on disk")
    pull = sub.add_parser("pull", help="download a model")
    pull.add_argument("name")
    rm = sub.add_parser("rm", help="remove a model")
    rm.add_argument("name")
    sub.add_parser("version", help="show the engine version")
    sub.add_parser("install", help="install the engine (Homebrew on macOS)")
    port = sub.add_parser("port", help="show or persist the engine port")
    port.add_argument("value", nargs="?", type=int)
    generate = sub.add_parser("generate", help="run one prompt against a model")
    generate.add_argument("model")
    generate.add_argument("prompt")
    return parser


def _print(text: str) -> None:
    print(text, flush=True)


def dispatch(args: argparse.Namespace, control) -> int:
    """Dispatch one parsed command. Returns the process exit code."""
    command = args.command

    if command == "status":
        installation = control.supervisor.installation_status()
        health = installation.health
        _print(f"Platform:  {control.get_platform().display_name}")
        _print(f"Base URL:  {control.get_base_url()}")
        _print(f"Installed: {'yes' if installation.is_installed else 'no'}")
        if installation.version:
            _print(f"Version:   {installation.version}")
        _print(f"State:     {health.state.value} ({health.detail})")
        return 0 if health.is_running else 1

    if command == "start":
        attempt = control.supervisor.start()
        _print(f"Engine started: {attempt.describe()}")
        _print("Run `ollama-supervisor status` to confirm it is serving.")
        return 0

    if command == "stop":
        for message in control.supervisor.stop():
            _print(message)
        return 0

    if command == "repair":
        report = control.repair.run()
        _print(report.render())
        return 0 if report.success else 1

    if command == "list":
        records = control.inventory.list()
        if not records:
            _print("No models installed")
        for record in records:
            extras = "  ".join(v for v in (record.size, record.modified) if v)
            _print(f"{record.name}  {extras}".rstrip())
        return 0

    if command == "scan":
        names = control.inventory.scan()
        if not names:
            _print("No models found")
        for name in names:
            _print(name)
        return 0

    if command == "pull":
        _print(control.inventory.pull(args.name))
        return 0

    if command == "rm":
        _print(control.inventory.remove(args.name))
        return 0

    if command == "version":
        _print(control.supervisor.version())
        return 0

    if command == "install":
        result = control.installer.install()
        for line in result.debug:
            logging.getLogger(__name__).debug("install: %s", line)
        _print(result.message)
        return 0

    if command == "port":
        if args.value is not None:
            control.set_port(args.value, persist=True)
        _print(str(control.get_port()))
        return 0

    if command == "generate":
        _print(control.api.generate(args.model, args.prompt))
        return 0

    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point"""
    from ollama_supervisor.config.settings import InvalidPortError
    from ollama_supervisor.services.control_plane import get_control_plane
    from ollama_supervisor.services.exceptions import EngineError

    parser = build_parser()
    args = parser.parse_args(argv)

    global _global_log_handlers
    _global_log_handlers = setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        control = get_control_plane()
        if args.port is not None:
            control.set_port(args.port)
        return dispatch(args, control)
    except InvalidPortError as e:
        logger.error("%s", e)
        return 2
    except (EngineError, ValueError) as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.debug("Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
