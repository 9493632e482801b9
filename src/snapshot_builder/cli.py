"""Command-line interface for the snapshot builder."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from pathlib import Path
from typing import Optional

from .builder import Builder
from .config import load_config
from .errors import BuildError, ValidationError
from .paths import LOGS_DIR
from .utils.logging import RedactingFilter, configure_logging, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hcloud-snapshot-builder",
        description="Build a Hetzner Cloud snapshot from a temporary server.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON build config (default: config/build.json).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    build_parser_ = subparsers.add_parser("build", help="Run a snapshot build")
    build_parser_.add_argument(
        "--debug", action="store_true",
        help="Pause before every step and ask whether to continue",
    )
    build_parser_.add_argument(
        "--log-dir", type=str, default=None,
        help=f"Directory for build logs (default: {LOGS_DIR})",
    )

    subparsers.add_parser("validate", help="Validate the build config and exit")

    # logs 子命令 - 查看构建日志
    logs_parser = subparsers.add_parser("logs", help="View build logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest build log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )
    logs_parser.add_argument(
        "--log-dir", type=str, default=None,
        help=f"Directory holding build logs (default: {LOGS_DIR})",
    )
    return parser


def _ask_continue(step_name: str) -> bool:
    answer = input(f"⏸️  Next step: {step_name}. Continue? [Y/n] ")
    return answer.strip().lower() not in ("n", "no", "q")


def _print_validation_errors(exc: ValidationError) -> None:
    print("❌ Invalid configuration:")
    for error in exc.errors:
        print(f"   - {error}")


def handle_build_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ValidationError as exc:
        _print_validation_errors(exc)
        return EXIT_FAILED

    # 显式传入需要脱敏的值
    configure_logging(
        getattr(logging, args.log_level),
        redaction=RedactingFilter(config.secrets()),
    )

    cancel = threading.Event()

    def _on_interrupt(signum, frame):  # pragma: no cover - signal delivery
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("⛔ Interrupt received, cancelling build and cleaning up...")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        builder = Builder(
            config,
            cancel=cancel,
            debug_hook=_ask_continue if args.debug else None,
            log_dir=args.log_dir,
        )
        artifact = builder.run()
    except BuildError as exc:
        if exc.cancelled:
            print("⛔ Build cancelled")
            return EXIT_CANCELLED
        print(f"💥 Build failed: {exc}")
        return EXIT_FAILED
    finally:
        signal.signal(signal.SIGINT, previous)

    print(json.dumps(artifact.to_dict(), indent=2))
    return EXIT_OK


def handle_validate_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ValidationError as exc:
        _print_validation_errors(exc)
        return EXIT_FAILED
    print(f"✅ Configuration OK (server {config.server_name}, snapshot {config.snapshot_name})")
    return EXIT_OK


def handle_logs_command(args: argparse.Namespace) -> int:
    """Handle the logs subcommand."""
    log_dir = Path(args.log_dir) if args.log_dir else LOGS_DIR

    if not log_dir.exists():
        print("📁 No build logs found. Run a build first.")
        return EXIT_OK

    log_files = sorted(log_dir.glob("build_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)

    if not log_files:
        print("📁 No build logs found.")
        return EXIT_OK

    # 列出所有日志
    if args.list_logs:
        print(f"📁 Build logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Server':<40} {'Time':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                status = data.get("status", "unknown")
                server = data.get("server_name") or "?"
                start_time = (data.get("start_time") or "")[:19].replace("T", " ")
                status_emoji = _STATUS_EMOJI.get(status, "❓")
                print(f"{i:<4} {status_emoji} {status:<10} {server:<40} {start_time:<20} {log_file.name}")
            except (OSError, ValueError):
                print(f"{i:<4} ❓ {'error':<10} {'?':<40} {'?':<20} {log_file.name}")
        return EXIT_OK

    # 选择要显示的日志文件
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            # 尝试在 log_dir 中查找
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return EXIT_FAILED
    else:
        # 默认显示最新的
        target_file = log_files[0]

    show_log_file(target_file)
    return EXIT_OK


_STATUS_EMOJI = {
    "success": "✅",
    "failed": "❌",
    "running": "🔄",
    "cancelled": "⛔",
    "halted": "⏹️",
}


def show_log_file(log_file: Path) -> None:
    """Display a build log file."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    print(f"\n{'='*60}")
    print(f"📄 Build Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"🖥️  Server:     {data.get('server_name', 'N/A')}")
    print(f"⏰ Started:    {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:      {data.get('end_time', 'N/A')}")
    print(f"{_STATUS_EMOJI.get(status, '❓')} Status:     {status}")
    print(f"{'='*60}\n")

    for entry in data.get("steps", []):
        print(f"  • {entry.get('step')}: {entry.get('status')}")
        if entry.get("error"):
            print(f"    ⚠️ {entry['error']}")

    cleanup = data.get("cleanup", [])
    if cleanup:
        print("\n🧹 Cleanup:")
        for entry in cleanup:
            line = f"  • {entry.get('step')}: {entry.get('status')}"
            if entry.get("error"):
                line += f" ({entry['error']})"
            print(line)

    artifact = data.get("artifact")
    if artifact:
        print(f"\n📸 Image: {artifact.get('image_id') or 'none'}")
    error = data.get("error")
    if error:
        print(f"\n💥 {error.get('step')}: {error.get('type')}: {error.get('message')}")
    print()


def dispatch_command(args: argparse.Namespace) -> int:
    if args.command == "logs":
        return handle_logs_command(args)
    if args.command == "validate":
        return handle_validate_command(args)
    if args.command == "build":
        return handle_build_command(args)
    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
