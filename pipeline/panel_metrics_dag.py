"""
Panel metrics DAG - orchestrates the complete metrics pipeline.
Composes: Load → Normalize → Validate → Store → Compute → Persist → Export → Track.
"""

import os
import logging
import sqlite3
import pandas as pd
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Import all pipeline components
from ingestion.transforms.normalizers import normalize_panel
from ingestion.transforms.validators import validate_panel_schema, check_price_date_monotonicity
from analysis.metrics_aggregator import compose_metrics, summarize_tables
from analysis.guardrails import run_all_guardrails
from storage.loaders import upsert_prices, load_prices, replace_metric_tables, METRIC_TABLE_SCHEMAS
from storage.run_registry import start_run, finish_run, RunStatus
from reports.atomic_writer import export_tables
from reports.path_policy import create_export_paths

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DAG_NAME = 'panel_metrics'


class PipelineError(Exception):
    """Raised when pipeline execution fails."""
    pass


def _default_window() -> int:
    return int(os.getenv('ROLLING_WINDOW', '30'))


@dataclass
class PanelMetricsConfig:
    """Configuration for the panel metrics pipeline."""
    input_path: Optional[Path] = None
    window: int = field(default_factory=_default_window)
    symbols: Optional[List[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    export_dir: Optional[Path] = None

    def __post_init__(self):
        """Validate and set defaults."""
        if self.input_path is not None:
            self.input_path = Path(self.input_path)
            if self.input_path.suffix.lower() != '.csv':
                raise ValueError(f"input_path must be a .csv file, got {self.input_path}")

        if not isinstance(self.window, int) or self.window < 2:
            raise ValueError("window must be an integer >= 2")

        if self.symbols is not None:
            self.symbols = [s.strip().upper() for s in self.symbols if s and s.strip()]
            if not self.symbols:
                raise ValueError("symbols must contain at least one non-empty symbol")

        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be <= end_date")

        if self.export_dir is not None:
            self.export_dir = Path(self.export_dir)


def read_panel_csv(path: Path) -> pd.DataFrame:
    """
    Read a raw price panel CSV.

    Args:
        path: CSV file path

    Returns:
        Raw DataFrame (not yet normalized)

    Raises:
        PipelineError: If the file does not exist
    """
    if not Path(path).exists():
        raise PipelineError(f"Input file not found: {path}")
    return pd.read_csv(path)


def _filter_dates(panel: pd.DataFrame, config: PanelMetricsConfig) -> pd.DataFrame:
    if config.start_date is not None:
        panel = panel[panel['date'] >= pd.Timestamp(config.start_date)]
    if config.end_date is not None:
        panel = panel[panel['date'] <= pd.Timestamp(config.end_date)]
    return panel.reset_index(drop=True)


def run_panel_metrics(config: PanelMetricsConfig, conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Run the complete panel metrics pipeline.

    Pipeline stages:
    1. Start run tracking
    2. Load the panel (CSV file, or the stored prices table)
    3. Normalize and validate the schema (fail fast)
    4. Store the raw panel (CSV input only)
    5. Compose metric tables
    6. Run guardrails and persist tables
    7. Export CSVs (optional)
    8. Finish run tracking

    Args:
        config: Pipeline configuration
        conn: SQLite database connection (schema already initialized)

    Returns:
        Dictionary with run results and metrics
    """
    run_id = start_run(conn, DAG_NAME)
    start_time = datetime.now()

    result = {
        'run_id': run_id,
        'status': 'running',
        'input_path': str(config.input_path) if config.input_path else None,
        'window': config.window,
        'rows_loaded': 0,
        'rows_stored': 0,
        'rows_rejected': 0,
        'tables_written': {},
        'export': None,
        'guardrails': None,
        'error_message': None
    }

    try:
        # Stage 1: Load
        if config.input_path is not None:
            logger.info(f"Loading panel from {config.input_path}")
            panel = normalize_panel(read_panel_csv(config.input_path))
        else:
            logger.info("Loading panel from stored prices")
            panel = load_prices(conn, symbols=config.symbols)
            check_price_date_monotonicity(panel)

        panel = _filter_dates(panel, config)
        result['rows_loaded'] = len(panel)

        # Stage 2: Schema validation aborts before anything is written
        validate_panel_schema(panel)

        # Stage 3: Keep the raw panel alongside its metrics
        if config.input_path is not None:
            inserted, updated = upsert_prices(conn, panel)
            result['rows_inserted'] = inserted
            result['rows_updated'] = updated

        # Stage 4: Compute
        tables = compose_metrics(panel, window=config.window, symbols=config.symbols)
        summary = summarize_tables(tables)
        result['summary'] = summary
        result['rows_rejected'] = summary['rows_rejected']

        for row in tables['rejected_rows'].itertuples(index=False):
            logger.warning(f"Rejected {row.symbol} {pd.Timestamp(row.date).date()}: {row.reason}")

        # Stage 5: Guardrails (raise when no valid rows remain), then persist
        analyzed = panel
        if config.symbols:
            analyzed = panel[panel['symbol'].isin(config.symbols)]
        result['guardrails'] = run_all_guardrails(
            analyzed, tables['daily_returns'], tables['rejected_rows'], config.window
        )
        for message in result['guardrails']['warnings']:
            logger.warning(message)

        result['tables_written'] = replace_metric_tables(
            conn, {name: tables[name] for name in METRIC_TABLE_SCHEMAS}
        )
        result['rows_stored'] = len(tables['daily_returns'])

        # Stage 6: Export
        if config.export_dir is not None:
            paths = create_export_paths(list(tables), start_time, base_dir=config.export_dir)
            export_result = export_tables(tables, paths)
            result['export'] = export_result

            if export_result['status'] != 'completed':
                raise PipelineError(f"Export failed: {export_result['error']}")
            result['export']['run_dir'] = str(paths['run_dir'])

        # Stage 7: Finish run tracking
        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.COMPLETED,
            finished_at=datetime.now(),
            rows_in=result['rows_loaded'],
            rows_out=result['rows_stored'],
            rows_rejected=result['rows_rejected']
        )

        result['status'] = 'completed'
        result['duration_seconds'] = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Run {run_id} completed: {result['rows_stored']} rows, "
            f"{result['rows_rejected']} rejected"
        )

        return result

    except Exception as e:
        # Pipeline failed - record failure
        error_message = str(e)
        logger.error(f"Run {run_id} failed: {error_message}")

        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.FAILED,
            finished_at=datetime.now(),
            rows_in=result['rows_loaded'],
            rows_out=result['rows_stored'],
            rows_rejected=result['rows_rejected'],
            error_message=error_message
        )

        result['status'] = 'failed'
        result['error_message'] = error_message
        result['duration_seconds'] = (datetime.now() - start_time).total_seconds()

        return result
