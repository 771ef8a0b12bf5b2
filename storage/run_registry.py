"""
Run registry - track pipeline execution with status, row counts, and timing.
Thin IO layer for run lifecycle management.
"""

import sqlite3
from datetime import datetime
from typing import Dict, Any, List, Optional
from enum import Enum


class RunStatus(str, Enum):
    """Enumeration of run statuses."""
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class RunNotFoundError(Exception):
    """Raised when run ID is not found."""
    pass


_RUN_COLUMNS = """
    run_id, dag_name, started_at, finished_at, status,
    rows_in, rows_out, rows_rejected, error_message
"""


def _format_ts(value: datetime) -> str:
    return value.isoformat(sep=' ')


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value.replace(' ', 'T')) if value else None


def _row_to_run(row: tuple) -> Dict[str, Any]:
    run_info = {
        'run_id': row[0],
        'dag_name': row[1],
        'started_at': _parse_ts(row[2]),
        'finished_at': _parse_ts(row[3]),
        'status': RunStatus(row[4]),
        'rows_in': row[5],
        'rows_out': row[6],
        'rows_rejected': row[7],
        'error_message': row[8]
    }

    if run_info['started_at'] and run_info['finished_at']:
        duration = run_info['finished_at'] - run_info['started_at']
        run_info['duration_seconds'] = duration.total_seconds()
    else:
        run_info['duration_seconds'] = None

    return run_info


def start_run(
    conn: sqlite3.Connection,
    dag_name: str,
    started_at: Optional[datetime] = None
) -> int:
    """
    Start a new pipeline run and return run ID.

    Args:
        conn: SQLite connection
        dag_name: Name of the pipeline/DAG being run
        started_at: Start timestamp (defaults to now)

    Returns:
        Run ID for tracking this execution
    """
    if started_at is None:
        started_at = datetime.now()

    cursor = conn.execute("""
        INSERT INTO runs (dag_name, started_at, status)
        VALUES (?, ?, ?)
    """, (dag_name, _format_ts(started_at), RunStatus.RUNNING.value))

    conn.commit()
    return cursor.lastrowid


def finish_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: RunStatus,
    finished_at: Optional[datetime] = None,
    rows_in: Optional[int] = None,
    rows_out: Optional[int] = None,
    rows_rejected: Optional[int] = None,
    error_message: Optional[str] = None
) -> None:
    """
    Mark a run as finished with final status and row counts.

    Args:
        conn: SQLite connection
        run_id: Run ID from start_run()
        status: Final status (COMPLETED or FAILED)
        finished_at: End timestamp (defaults to now)
        rows_in: Number of panel rows read
        rows_out: Number of rows with computed metrics
        rows_rejected: Number of rows excluded at row level
        error_message: Error message if failed

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    if finished_at is None:
        finished_at = datetime.now()

    cursor = conn.execute("SELECT run_id FROM runs WHERE run_id = ?", (run_id,))
    if cursor.fetchone() is None:
        raise RunNotFoundError(f"Run ID {run_id} not found")

    conn.execute("""
        UPDATE runs SET
            status = ?,
            finished_at = ?,
            rows_in = ?,
            rows_out = ?,
            rows_rejected = ?,
            error_message = ?
        WHERE run_id = ?
    """, (
        RunStatus(status).value, _format_ts(finished_at),
        rows_in, rows_out, rows_rejected, error_message, run_id
    ))

    conn.commit()


def get_run_status(conn: sqlite3.Connection, run_id: int) -> Dict[str, Any]:
    """
    Get details for a single run.

    Args:
        conn: SQLite connection
        run_id: Run ID to query

    Returns:
        Dictionary with run details, duration and rejection rate

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    cursor = conn.execute(f"SELECT {_RUN_COLUMNS} FROM runs WHERE run_id = ?", (run_id,))

    row = cursor.fetchone()
    if row is None:
        raise RunNotFoundError(f"Run ID {run_id} not found")

    run_info = _row_to_run(row)

    if run_info['rows_in']:
        run_info['rejection_rate'] = (run_info['rows_rejected'] or 0) / run_info['rows_in']
    else:
        run_info['rejection_rate'] = None

    return run_info


def list_recent_runs(
    conn: sqlite3.Connection,
    limit: int = 50,
    dag_name: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    List recent runs, most recent first.

    Args:
        conn: SQLite connection
        limit: Maximum number of runs to return
        dag_name: Filter by specific DAG name (optional)

    Returns:
        List of run dictionaries
    """
    if dag_name:
        query = f"SELECT {_RUN_COLUMNS} FROM runs WHERE dag_name = ? ORDER BY started_at DESC, run_id DESC LIMIT ?"
        params = (dag_name, limit)
    else:
        query = f"SELECT {_RUN_COLUMNS} FROM runs ORDER BY started_at DESC, run_id DESC LIMIT ?"
        params = (limit,)

    return [_row_to_run(row) for row in conn.execute(query, params).fetchall()]
