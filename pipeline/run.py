#!/usr/bin/env python3
"""
Pipeline runner CLI - makes the panel_metrics pipeline human-visible.
Usage: python pipeline/run.py [PANEL.csv] [options]
"""

import os
import sys
import logging
import argparse
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pipeline.panel_metrics_dag import run_panel_metrics, PanelMetricsConfig
from storage.loaders import init_database, get_connection


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description='Compute returns, periodic bars, rolling stats and correlation for a price panel',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python pipeline/run.py data/raw/panel.csv
  python pipeline/run.py data/raw/panel.csv --symbols AAPL MSFT --window 30
  python pipeline/run.py --start 2020-01-01 --end 2023-12-31 --export-dir ./exports
        """
    )

    parser.add_argument('input', nargs='?',
                        help='Panel CSV (omit to recompute from stored prices)')
    parser.add_argument('--db-path',
                        default=os.getenv('METRICS_DB_PATH', './data/metrics.db'),
                        help='Path to SQLite database (default: $METRICS_DB_PATH or ./data/metrics.db)')
    parser.add_argument('--window', type=int,
                        default=int(os.getenv('ROLLING_WINDOW', '30')),
                        help='Rolling window width in rows (default: 30)')
    parser.add_argument('--symbols', nargs='+',
                        help='Only analyze these symbols')
    parser.add_argument('--start', type=date.fromisoformat,
                        help='Start date filter (YYYY-MM-DD)')
    parser.add_argument('--end', type=date.fromisoformat,
                        help='End date filter (YYYY-MM-DD)')
    parser.add_argument('--export-dir',
                        default=os.getenv('METRICS_EXPORT_DIR'),
                        help='Write CSV tables under this directory')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Minimal output (just success/failure)')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'WARNING' if args.quiet else 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    try:
        config = PanelMetricsConfig(
            input_path=Path(args.input) if args.input else None,
            window=args.window,
            symbols=args.symbols,
            start_date=args.start,
            end_date=args.end,
            export_dir=Path(args.export_dir) if args.export_dir else None
        )
    except ValueError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 2

    db_path = Path(args.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(str(db_path))
    try:
        init_database(conn)
        result = run_panel_metrics(config, conn)
    finally:
        conn.close()

    if result['status'] != 'completed':
        print(f"Pipeline failed: {result['error_message']}", file=sys.stderr)
        return 1

    if args.quiet:
        print(f"Run {result['run_id']} completed")
        return 0

    _display_results(result, db_path)
    return 0


def _display_results(result: dict, db_path: Path) -> None:
    """Display run results."""
    summary = result['summary']

    print("Pipeline Results:")
    print(f"   Run ID: {result['run_id']}")
    print(f"   Duration: {result['duration_seconds']:.1f}s")
    print(f"   Rows loaded: {result['rows_loaded']}")
    print(f"   Rows with metrics: {result['rows_stored']}")
    print(f"   Rows rejected: {result['rows_rejected']}")
    print()

    if summary.get('date_range'):
        dr = summary['date_range']
        print(f"Symbols: {', '.join(summary['symbols'])}")
        print(f"Dates: {dr['start_date']} to {dr['end_date']} ({dr['trading_days']} days)")
        print()

    print("Tables:")
    for name, rows in result['tables_written'].items():
        print(f"   {name}: {rows} rows")
    print()

    warnings = (result.get('guardrails') or {}).get('warnings', [])
    if warnings:
        print("Data quality warnings:")
        for message in warnings:
            print(f"   - {message}")
        print()

    if result.get('export'):
        print(f"CSV export: {result['export']['run_dir']}")
    print(f"Data stored in: {db_path}")


if __name__ == '__main__':
    sys.exit(main())
