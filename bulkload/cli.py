#!/usr/bin/env python3
"""
Command-line entry point for the bulk loader.
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

import psycopg2

from .config import (
    ERR_LOAD_FAILED,
    MSG_LOADING_ENV,
    ON_DUPLICATE_SUFFIX,
    TUNING_PROFILES,
    LoadConfig,
)
from .database import DatabaseManager
from .errors import LoadError
from .logger import LogLevel, StructuredLogger, get_logger, set_logger
from .processor import default_relation_name, process
from .relation import count_rows


def load_command(args) -> int:
    """Load a CSV file into a fresh table."""
    logger = get_logger()
    logger.section("CSV BULK LOAD")

    logger.info(MSG_LOADING_ENV)
    try:
        config = LoadConfig.from_env(use_production=args.production, profile=args.profile)
    except ValueError as e:
        logger.error("Configuration error", error=str(e))
        return 1

    if args.no_restore:
        config.restore_settings = False
    if args.dedupe_columns:
        config.on_duplicate_columns = ON_DUPLICATE_SUFFIX
    if args.progress_interval:
        config.progress_interval = args.progress_interval

    csv_path = Path(args.file)
    table = args.table or default_relation_name(csv_path)
    logger.info("Target", file=csv_path.name, table=table, profile=config.tuning_profile)

    database = DatabaseManager(config)
    try:
        if not database.test_connection():
            return 1

        report = process(database.connection, csv_path, table, config)

        logger.success(
            "Load completed successfully",
            table=table,
            rows=report.record_count,
            duration=report.format_duration(report.elapsed),
        )
        return 0

    except KeyboardInterrupt:
        logger.warning("Operation cancelled by user")
        return 130
    except (LoadError, ValueError) as e:
        logger.error(ERR_LOAD_FAILED, error=str(e))
        return 1
    except psycopg2.Error as e:
        logger.error(ERR_LOAD_FAILED, error=str(e).strip())
        return 1
    finally:
        database.close()


def status_command(args) -> int:
    """Show whether a table exists and how many rows it holds."""
    logger = get_logger()
    logger.section("TABLE STATUS")

    try:
        config = LoadConfig.from_env(use_production=args.production)
    except ValueError as e:
        logger.error("Configuration error", error=str(e))
        return 1

    database = DatabaseManager(config)
    try:
        if not database.test_connection():
            return 1

        rows = count_rows(database.connection, args.table)
        if rows is None:
            logger.warning("Table does not exist", table=args.table)
            return 1

        logger.info(f"  {args.table}: {rows:,} rows")
        return 0

    except psycopg2.Error as e:
        logger.error("Status check failed", error=str(e).strip())
        return 1
    finally:
        database.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulkload",
        description="Stream a CSV file into PostgreSQL with COPY",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global options
    parser.add_argument(
        '--production',
        action='store_true',
        help='Use production environment (.env.production)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Load
    load_parser = subparsers.add_parser('load', help='Load a CSV file into a fresh UNLOGGED table')
    load_parser.add_argument('file', type=str, help='CSV file path')
    load_parser.add_argument(
        '--table',
        type=str,
        help='Target table (defaults to the file name)'
    )
    load_parser.add_argument(
        '--profile',
        choices=TUNING_PROFILES,
        help='Session tuning profile'
    )
    load_parser.add_argument(
        '--no-restore',
        action='store_true',
        help='Leave tuned session settings in place after the load'
    )
    load_parser.add_argument(
        '--dedupe-columns',
        action='store_true',
        help='Suffix duplicate column names instead of failing'
    )
    load_parser.add_argument(
        '--progress-interval',
        type=int,
        help='Records between progress lines'
    )

    # Status
    status_parser = subparsers.add_parser('status', help='Show row count of a table')
    status_parser.add_argument('--table', type=str, required=True, help='Table name')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = LogLevel.DEBUG if args.verbose else LogLevel.INFO
    set_logger(StructuredLogger(min_level=log_level))

    if args.command == 'load':
        return load_command(args)
    elif args.command == 'status':
        return status_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
