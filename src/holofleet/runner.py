#!/usr/bin/env python3
"""Main entry point for holofleet."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import TRANSPORTS, Config, load_config
from .dashboard import Dashboard
from .executor import Dispatcher, HostStatus
from .models import CommandKind, ConfigurationError, SettledOutcome

COMMANDS = {
    "status": CommandKind.GET_STATUS,
    "switch-channel": CommandKind.SWITCH_CHANNEL,
    "reboot": CommandKind.REBOOT,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a status check, channel switch or reboot on a fleet of HoloPorts"
    )
    parser.add_argument("config", type=Path, help="Path to YAML configuration file")
    parser.add_argument("command", choices=sorted(COMMANDS), help="Command to dispatch")
    parser.add_argument(
        "--ssh-key-path",
        type=Path,
        help="Override SSH key path from config",
    )
    parser.add_argument(
        "--target-channel",
        help="Channel to switch to (switch-channel only)",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        help="Maximum hosts contacted at once (0 for no limit)",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        help="SSH implementation to use",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write settled outcomes to this JSON file",
    )
    parser.add_argument(
        "--no-logs",
        action="store_true",
        help="Disable logging to files",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    apply_overrides(config, args)

    if config.ssh_key is not None and not config.ssh_key.exists():
        print(f"Error: SSH key not found: {config.ssh_key}", file=sys.stderr)
        return 1

    kind = COMMANDS[args.command]
    enable_logging = not args.no_logs

    if not args.dashboard:
        try:
            results = _run_headless(config, kind, enable_logging)
        except ConfigurationError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 1
    else:
        # Fail before the UI starts
        try:
            Dispatcher(config).preflight(kind)
        except ConfigurationError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 1
        app = Dashboard(config, kind, enable_logging=enable_logging)
        app.run()
        results = app.results
        if not results:
            failed = [
                name
                for name, state in app.dispatcher.states.items()
                if state.status is not HostStatus.SUCCESS
            ]
            if failed:
                print(f"\nUnfinished or failed hosts: {', '.join(failed)}", file=sys.stderr)
            return 1

    print_summary(results)

    if args.output:
        write_report(args.output, results)

    failed_hosts = [r.outcome.host_name for r in results if not r.succeeded]
    if failed_hosts:
        print(f"\nFailed hosts: {', '.join(failed_hosts)}", file=sys.stderr)
        return 1

    return 0


def apply_overrides(config: Config, args: argparse.Namespace) -> None:
    """Apply command line overrides on top of the loaded config."""
    if args.ssh_key_path:
        config.ssh_key = args.ssh_key_path.expanduser()
    if args.target_channel:
        config.target_channel = args.target_channel
    if args.max_concurrency is not None:
        if args.max_concurrency < 0:
            raise SystemExit("--max-concurrency must be >= 0")
        config.max_concurrency = args.max_concurrency
    if args.transport:
        config.transport = args.transport


def _run_headless(
    config: Config, kind: CommandKind, enable_logging: bool
) -> list[SettledOutcome]:
    """Run the dispatch without the TUI dashboard."""
    # ANSI colors for different hosts
    colors = [
        "\033[36m",  # Cyan
        "\033[33m",  # Yellow
        "\033[35m",  # Magenta
        "\033[32m",  # Green
        "\033[34m",  # Blue
        "\033[91m",  # Light Red
        "\033[96m",  # Light Cyan
        "\033[93m",  # Light Yellow
    ]
    reset = "\033[0m"

    host_colors = {
        host.name: colors[i % len(colors)] for i, host in enumerate(config.hosts)
    }

    def on_output(host_name: str, line: str) -> None:
        color = host_colors.get(host_name, "")
        print(f"{color}[{host_name}]{reset} {line}")

    dispatcher = Dispatcher(
        config,
        on_output=on_output,
        enable_logging=enable_logging,
    )
    return asyncio.run(dispatcher.dispatch(kind))


def print_summary(results: list[SettledOutcome]) -> None:
    """Print one line per host with its settled outcome."""
    print()
    name_width = max((len(r.outcome.host_name) for r in results), default=4)
    for settled in results:
        outcome = settled.outcome
        mark = "OK  " if settled.succeeded else "FAIL"
        detail = ""
        if outcome.command is CommandKind.GET_STATUS and outcome.succeeded:
            detail = " ".join(
                str(v)
                for v in (
                    outcome.network,
                    outcome.channel,
                    outcome.hosting_info,
                    outcome.holoport_model,
                )
            )
        elif not settled.succeeded:
            detail = outcome.error_detail or ""
        print(
            f"{mark} {outcome.host_name:<{name_width}} {outcome.host_address:<15} "
            f"{settled.status.value:<9} {detail}".rstrip()
        )


def write_report(path: Path, results: list[SettledOutcome]) -> None:
    """Write settled outcomes as a JSON list."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump([r.to_dict() for r in results], f, indent=2)
        f.write("\n")


if __name__ == "__main__":
    sys.exit(main())
