"""
Atomic file writer - ensures no partial writes or corrupted output tables.
Implements temp-write → fsync → rename pattern for durability.
"""

import os
import logging
import tempfile
import pandas as pd
from pathlib import Path
from typing import Dict, Any


logger = logging.getLogger(__name__)


class AtomicWriteError(Exception):
    """Raised when atomic write operations fail."""
    pass


def write_text_atomic(content: str, output_path: Path) -> int:
    """
    Write text content atomically to prevent partial files.

    Args:
        content: Text to write
        output_path: Final path for the file

    Returns:
        Number of bytes written

    Raises:
        AtomicWriteError: If the write or rename fails
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the same directory so the rename stays on one filesystem
    temp_fd, temp_name = tempfile.mkstemp(
        suffix='.tmp',
        prefix=f'{output_path.stem}_',
        dir=output_path.parent
    )
    temp_path = Path(temp_name)

    try:
        data = content.encode('utf-8')
        with os.fdopen(temp_fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())  # Force write to disk

        os.replace(temp_path, output_path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise AtomicWriteError(f"Failed to write {output_path}: {e}") from e

    return len(data)


def write_table_csv(df: pd.DataFrame, output_path: Path, index: bool = False) -> Dict[str, Any]:
    """
    Write a table as CSV atomically.

    Args:
        df: Table to write
        output_path: Destination .csv path
        index: Whether to write the index (True for square matrices)

    Returns:
        Dictionary with output_path, rows and bytes_written
    """
    content = df.to_csv(index=index, date_format='%Y-%m-%d')
    bytes_written = write_text_atomic(content, output_path)

    return {
        'output_path': str(output_path),
        'rows': len(df),
        'bytes_written': bytes_written
    }


def export_tables(tables: Dict[str, pd.DataFrame], paths: Dict[str, Path]) -> Dict[str, Any]:
    """
    Export several tables; all-or-nothing.

    If any table fails to write, tables already written in this call are
    removed so the export directory never holds a mixed set.

    Args:
        tables: Table name -> DataFrame
        paths: Table name -> destination path (must cover every table)

    Returns:
        Dictionary with status, per-table results and an error if failed
    """
    missing = sorted(set(tables) - set(paths))
    if missing:
        return {'status': 'failed', 'error': f"No output path for tables: {missing}", 'tables': {}}

    written = {}
    try:
        for name, df in tables.items():
            # Square matrices keep their feature labels as the first column
            keep_index = df.index.name is not None
            written[name] = write_table_csv(df, paths[name], index=keep_index)
    except AtomicWriteError as e:
        logger.error(f"Export failed, rolling back {len(written)} tables: {e}")
        for result in written.values():
            Path(result['output_path']).unlink(missing_ok=True)

        return {'status': 'failed', 'error': str(e), 'tables': {}}

    logger.info(f"Exported {len(written)} tables")
    return {'status': 'completed', 'error': None, 'tables': written}
