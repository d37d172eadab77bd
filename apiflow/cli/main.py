"""Main CLI entry point for apiflow."""

import argparse
import sys
from typing import Optional

from .commands import run_workflow


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the apiflow CLI."""
    parser = argparse.ArgumentParser(
        prog='apiflow',
        description='Declarative API workflow runner'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser('run', help='Run a workflow')
    run_parser.add_argument(
        'document',
        type=str,
        help='Path to workflow document (YAML or JSON)'
    )
    run_parser.add_argument(
        '--workflow-id',
        type=str,
        help='Workflow to run (default: first workflow in the document)'
    )
    run_parser.add_argument(
        '--input',
        action='append',
        metavar='KEY=VALUE',
        help='Workflow input (can be specified multiple times; VALUE is read as a YAML scalar)'
    )
    run_parser.add_argument(
        '--inputs-file',
        type=str,
        help='Path to JSON or YAML file containing workflow inputs'
    )
    run_parser.add_argument(
        '--timeout',
        type=float,
        metavar='SECONDS',
        help='Cancel the run after this many seconds'
    )
    run_parser.add_argument(
        '--request-timeout',
        type=int,
        default=30000,
        metavar='MS',
        help='Per-request timeout in milliseconds for operations that declare none'
    )
    run_parser.add_argument(
        '--retry-count',
        type=int,
        default=1,
        help='Transport retries for operations that declare none'
    )
    run_parser.add_argument(
        '--retry-delay',
        type=int,
        default=1000,
        metavar='MS',
        help='Transport retry delay in milliseconds'
    )
    run_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate without execution'
    )
    run_parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    run_parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress non-error output'
    )
    run_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    run_parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warn', 'error'],
        default='info',
        help='Set log level'
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.command == 'run':
        return run_workflow(parsed_args)

    parser.print_help()
    return 2


if __name__ == '__main__':
    sys.exit(main())
