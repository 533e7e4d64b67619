import argparse
import json
import sys

from .config import load_settings
from .errors import FeederError
from .ingest.client import test_search_connection
from .ingest.sink import bulk_ingest_factory
from .pipeline.context import RunContext
from .pipeline.contract import State
from .source.source import Source, test_source_connection


def cmd_test_connection(args):
    """Handle test-connection subcommand."""
    try:
        settings = load_settings(file_path=args.settings)
    except (FeederError, FileNotFoundError) as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        sys.exit(1)

    if args.target == "source":
        if settings.source is None:
            print("Error: settings have no 'source' section", file=sys.stderr)
            sys.exit(2)
        success = test_source_connection(settings.source)
        label = f"Source ({settings.source.sqlalchemy_url().get_backend_name()})"
    else:
        success = test_search_connection(settings.ingest)
        label = f"Search backend ({settings.ingest.url})"

    print(json.dumps({"success": success, "label": label}))

    if success:
        print(f"Connection to {label} successful.", file=sys.stderr)
        sys.exit(0)
    else:
        print(f"Connection to {label} failed.", file=sys.stderr)
        sys.exit(1)


def cmd_run(args):
    """Handle run subcommand."""
    try:
        settings = load_settings(file_path=args.settings)
    except (FeederError, FileNotFoundError) as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        sys.exit(1)

    if settings.source is None:
        print("Error: settings have no 'source' section", file=sys.stderr)
        sys.exit(2)

    try:
        with Source(settings.source) as source:
            context = RunContext(
                source,
                settings,
                bulk_ingest_factory(settings.ingest),
                counter=args.counter,
            )
            statistics = context.execute()

        print(statistics.model_dump_json())

        if statistics.state is State.IDLE:
            print(f"Run finished. Documents submitted: {statistics.submitted}", file=sys.stderr)
            sys.exit(0)
        else:
            print(f"Run aborted: {statistics.error_message}", file=sys.stderr)
            sys.exit(1)

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(description="Feed SQL query results into a search index")
    subparsers = parser.add_subparsers(dest="command", help="Subcommand to run")

    run_parser = subparsers.add_parser("run", help="Run one synchronization pass")
    run_parser.add_argument("--settings", required=True, help="Path to JSON/YAML run settings")
    run_parser.add_argument("--counter", type=int, default=0, help="Run counter to start from (default: 0)")

    test_parser = subparsers.add_parser("test-connection", help="Test a connection")
    test_parser.add_argument("--settings", required=True, help="Path to JSON/YAML run settings")
    test_parser.add_argument(
        "--target",
        choices=["source", "search"],
        default="source",
        help="Which endpoint to test (default: source)",
    )

    args = parser.parse_args()

    if args.command == "run":
        cmd_run(args)
    elif args.command == "test-connection":
        cmd_test_connection(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
