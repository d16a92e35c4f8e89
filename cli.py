#!/usr/bin/env python3
"""
Command-line interface for the event notifier.

Usage:
    uv run python cli.py [command] [options]

Commands:
    emit        Emit an event (and dispatch it right away)
    seed        Load fixture recipients, preferences and templates into the store
    dispatch    Process one batch of pending deliveries
    events      Show recent events and their deliveries
    serve       Start the API server
    test        Run the test suite

Examples:
    uv run python cli.py emit PAYMENT_SUCCESS "Payment received" --meta amount=50 --meta phone=+254700000001
    uv run python cli.py dispatch
    uv run python cli.py events --limit 10
    uv run python cli.py serve
"""

import argparse
import subprocess
import sys
from pathlib import Path

from notifier.channels import NotificationChannels
from notifier.config import configure_logging, get_settings
from notifier.data_store import DataStore, NotificationStore, get_data_store
from notifier.dispatcher import Dispatcher, RetryPolicy
from notifier.emitter import Emitter
from notifier.models import EventType, summarize_deliveries
from notifier.scheduler import ImmediateScheduler


def build_dispatcher(store: NotificationStore) -> Dispatcher:
    settings = get_settings()
    return Dispatcher(
        store=store,
        channels=NotificationChannels.from_settings(settings),
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            backoff_seconds=settings.retry_backoff_seconds,
        ),
        batch_size=settings.batch_size,
    )


def parse_metadata(pairs: list[str]) -> dict[str, str]:
    """Turn ["key=value", ...] into a dict."""
    metadata = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Metadata must be key=value, got: {pair}")
        metadata[key.strip()] = value
    return metadata


def run_emit(args: argparse.Namespace) -> None:
    """Emit an event and, unless --no-dispatch, send it in the foreground."""
    store = get_data_store()
    scheduler = None if args.no_dispatch else ImmediateScheduler(build_dispatcher(store))
    emitter = Emitter(store, scheduler)

    try:
        metadata = parse_metadata(args.meta)
    except ValueError as e:
        print(e)
        sys.exit(1)

    emitter.emit(
        args.type,
        actor={"type": args.actor_type, "identifier": args.actor},
        summary=args.summary,
        metadata=metadata,
    )

    if scheduler is not None:
        for summary in scheduler.runs:
            print(f"Dispatch: {summary}")


def run_seed(data_dir: str | None) -> None:
    """Copy recipients, preferences and templates from JSON fixtures into the store."""
    store = get_data_store()
    fixtures = DataStore(data_dir=Path(data_dir) if data_dir else get_settings().data_dir)
    for recipient in fixtures.list_recipients():
        store.save_recipient(recipient)
    for preference in fixtures.list_preferences():
        store.save_preference(preference)
    for template in fixtures.list_templates():
        store.save_template(template)
    print(
        f"Seeded {len(fixtures.list_recipients())} recipients, "
        f"{len(fixtures.list_preferences())} preferences, {len(fixtures.list_templates())} templates"
    )


def run_dispatch() -> None:
    summary = build_dispatcher(get_data_store()).dispatch_pending()
    print(f"Dispatch: {summary}")


def run_events(limit: int, event_type: str | None) -> None:
    """Print recent events with per-status delivery counts."""
    store = get_data_store()
    for event in store.list_events(limit=limit, event_type=EventType(event_type) if event_type else None):
        deliveries = store.list_deliveries(event_id=event.id)
        counts = summarize_deliveries(deliveries)
        print(
            f"{event.created_at:%Y-%m-%d %H:%M:%S} {event.type.value:<26} "
            f"sent={counts.sent} failed={counts.failed} pending={counts.pending} | {event.summary}"
        )
        for delivery in deliveries:
            print(f"    {delivery.channel.value:<5} {delivery.recipient_id} {delivery.status.value}"
                  f" {delivery.provider_response or ''}")


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


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Event Notifier CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s emit PAYMENT_SUCCESS "Payment received" --meta amount=50
  %(prog)s emit ADMIN_LOGIN "Admin signed in" --actor-type admin --actor ops@example.com
  %(prog)s dispatch
  %(prog)s events --type PAYMENT_FAILED
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Emit command
    emit_parser = subparsers.add_parser("emit", help="Emit an event")
    emit_parser.add_argument("type", choices=[t.value for t in EventType], help="Event type")
    emit_parser.add_argument("summary", help="One-line description of what happened")
    emit_parser.add_argument("--meta", action="append", default=[], help="Metadata as key=value (repeatable)")
    emit_parser.add_argument("--actor-type", choices=["admin", "user", "system"], default="system")
    emit_parser.add_argument("--actor", default="system", help="Actor identifier (email, phone, 'system')")
    emit_parser.add_argument("--no-dispatch", action="store_true", help="Only create pending deliveries")

    # Seed command
    seed_parser = subparsers.add_parser("seed", help="Load fixture recipients, preferences and templates")
    seed_parser.add_argument("--data-dir", default=None, help="Directory with the JSON fixtures")

    # Dispatch command
    subparsers.add_parser("dispatch", help="Process one batch of pending deliveries")

    # Events command
    events_parser = subparsers.add_parser("events", help="Show recent events")
    events_parser.add_argument("--limit", type=int, default=20)
    events_parser.add_argument("--type", choices=[t.value for t in EventType], default=None)

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    configure_logging(get_settings().log_level)

    if args.command == "emit":
        run_emit(args)
    elif args.command == "seed":
        run_seed(args.data_dir)
    elif args.command == "dispatch":
        run_dispatch()
    elif args.command == "events":
        run_events(args.limit, args.type)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
