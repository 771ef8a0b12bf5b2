"""
Filename and path policy for exported metric tables.
Deterministic path generation per run timestamp.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable


class PathPolicyError(Exception):
    """Raised when path policy validation fails."""
    pass


_TABLE_NAME = re.compile(r'^[a-z][a-z0-9_]*$')
_RUN_DIR = re.compile(r'^(\d{4})-(\d{2})-(\d{2})_(\d{2})(\d{2})(\d{2})$')


def create_export_paths(
    table_names: Iterable[str],
    timestamp: datetime,
    base_dir: Path = Path('./data/processed/metrics')
) -> Dict[str, Path]:
    """
    Create one CSV path per table under a timestamped run directory.

    Layout: base_dir/YYYY-MM-DD_HHMMSS/<table>.csv

    Args:
        table_names: Tables to export
        timestamp: Run timestamp (naive local time)
        base_dir: Base export directory

    Returns:
        Dictionary table name -> path, plus 'run_dir'

    Raises:
        PathPolicyError: If a table name is not filesystem-safe
    """
    # Sortable, no colons for Windows
    run_dir = Path(base_dir) / timestamp.strftime('%Y-%m-%d_%H%M%S')

    paths = {'run_dir': run_dir}
    for name in table_names:
        if not _TABLE_NAME.match(name):
            raise PathPolicyError(f"Invalid table name: {name!r}")
        if name == 'run_dir':
            raise PathPolicyError("'run_dir' is reserved")
        paths[name] = run_dir / f'{name}.csv'

    return paths


def parse_run_dir_timestamp(dirname: str) -> datetime:
    """
    Parse the timestamp encoded in a run directory name.

    Args:
        dirname: Directory name (e.g., '2025-09-06_143000')

    Returns:
        Naive datetime

    Raises:
        PathPolicyError: If the name does not follow the layout
    """
    match = _RUN_DIR.match(dirname)
    if not match:
        raise PathPolicyError(f"Invalid run directory name: {dirname}")

    try:
        return datetime(*map(int, match.groups()))
    except ValueError as e:
        raise PathPolicyError(f"Invalid date/time in run directory {dirname}: {e}")


def latest_run_dir(base_dir: Path) -> Path:
    """
    Find the most recent run directory under base_dir.

    Args:
        base_dir: Base export directory

    Returns:
        Path of the newest run directory

    Raises:
        PathPolicyError: If no run directory exists
    """
    base_dir = Path(base_dir)
    runs = [p for p in base_dir.iterdir() if p.is_dir() and _RUN_DIR.match(p.name)] if base_dir.exists() else []

    if not runs:
        raise PathPolicyError(f"No exported runs under {base_dir}")

    return max(runs, key=lambda p: parse_run_dir_timestamp(p.name))
