#!/usr/bin/env python3
"""
Command-line interface for the logistics notification core.

Usage:
    uv run python cli.py [command] [options]

Commands:
    demo         Run demo scenarios
    transitions  Print the delivery state machine
    config       Show the effective runtime settings
    test         Run the test suite
    serve        Start the API server

Examples:
    uv run python cli.py demo dispatch
    uv run python cli.py demo expired-device
    uv run python cli.py transitions --role staff
    uv run python cli.py serve
"""

import argparse
import subprocess
import sys
from typing import Optional

DEMO_SCENARIOS = ["dispatch", "receive", "wrong-staff", "delivered", "expired-device", "all"]


def run_demo(scenario: str) -> None:
    """Run a demo scenario."""
    from logistics.demo import DEMOS, run_demo as run_named_demo

    if scenario not in DEMOS:
        print(f"Unknown scenario: {scenario}")
        sys.exit(1)
    run_named_demo(scenario)


def show_transitions(role: Optional[str] = None) -> None:
    """Print every (from, to) pair and the roles allowed to request it."""
    from logistics.transitions import LOCAL_ONLY, TRANSFER_ONLY, TRANSITION_RULES

    width = max(len(source) for source, _ in TRANSITION_RULES)
    for (source, target), roles in TRANSITION_RULES.items():
        if role and role not in roles:
            continue
        scope = ""
        if (source, target) in LOCAL_ONLY:
            scope = "  [local only]"
        elif (source, target) in TRANSFER_ONLY:
            scope = "  [transfer only]"
        print(f"  {source:<{width}} -> {target:<22} {', '.join(sorted(roles))}{scope}")


def show_config() -> None:
    """Print the settings the API would start with (secrets redacted)."""
    from shared.config import get_settings

    settings = get_settings()
    print(f"  data_dir:                {settings.data_dir}")
    print(f"  log_level:               {settings.log_level}")
    print(f"  notification_list_limit: {settings.notification_list_limit}")
    print(f"  push_enabled:            {settings.push_enabled}")
    print(f"  push_timeout_seconds:    {settings.push_timeout_seconds}")
    print(f"  vapid_subject:           {settings.vapid_subject or '-'}")
    print(f"  vapid_private_key:       {'set' if settings.vapid_private_key else '-'}")


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    cmd = ["uv", "run", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Logistics Notification Core CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo dispatch
  %(prog)s demo all
  %(prog)s transitions --role admin
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    demo_parser = subparsers.add_parser("demo", help="Run demo scenarios")
    demo_parser.add_argument(
        "scenario",
        choices=DEMO_SCENARIOS,
        nargs="?",
        default="all",
        help="Which scenario to run",
    )

    transitions_parser = subparsers.add_parser("transitions", help="Print the delivery state machine")
    transitions_parser.add_argument("--role", help="Only show transitions this role may request")

    subparsers.add_parser("config", help="Show the effective runtime settings")

    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "transitions":
        show_transitions(args.role)
    elif args.command == "config":
        show_config()
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
