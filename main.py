#!/usr/bin/env python3
"""
Main entry point for the timetable core.
Provides options to run it in different modes:
- CLI mode: Run a command from the command line
- API mode: Start a REST API server
"""
import sys
import argparse


def parse_args():
    """Parse command-line arguments for the main entry point."""
    parser = argparse.ArgumentParser(
        description='Timetable Synchronization Core',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        '--mode',
        type=str,
        choices=['cli', 'api'],
        default='cli',
        help='Mode to run in'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=5000,
        help='Port to run the API server on (only in API mode)'
    )

    parser.add_argument(
        '--host',
        type=str,
        default='0.0.0.0',
        help='Host to bind the API server to (only in API mode)'
    )

    # Parse known args and pass the rest to the appropriate mode
    return parser.parse_known_args()


def main():
    """Main entry point."""
    args, remaining = parse_args()

    if args.mode == 'cli':
        from timetable_sync.cli import main as cli_main
        cli_main(remaining)

    elif args.mode == 'api':
        from timetable_sync.api import create_app
        print(f"Starting API server on {args.host}:{args.port}")
        create_app().run(host=args.host, port=args.port)

    else:
        print(f"Invalid mode: {args.mode}")
        sys.exit(1)


if __name__ == '__main__':
    main()
