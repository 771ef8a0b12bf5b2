"""
Database loaders - idempotent writes and reads for SQLite.
Thin IO layer with focus on data integrity and idempotence.
"""

import math
import sqlite3
import pandas as pd
from datetime import date, datetime
from typing import Dict, Any, List, Tuple, Optional


class LoaderError(Exception):
    """Raised when a table write or read fails."""
    pass


# Output tables: column name -> SQLite type, in storage order
METRIC_TABLE_SCHEMAS: Dict[str, List[Tuple[str, str]]] = {
    'daily_returns': [
        ('symbol', 'TEXT NOT NULL'), ('date', 'DATE NOT NULL'),
        ('open', 'REAL'), ('high', 'REAL'), ('low', 'REAL'), ('close', 'REAL'),
        ('adjusted', 'REAL NOT NULL'), ('volume', 'REAL'),
        ('previous_adjusted', 'REAL'), ('daily_return', 'REAL'),
    ],
    'rejected_rows': [
        ('symbol', 'TEXT NOT NULL'), ('date', 'DATE NOT NULL'),
        ('open', 'REAL'), ('high', 'REAL'), ('low', 'REAL'), ('close', 'REAL'),
        ('adjusted', 'REAL'), ('volume', 'REAL'), ('reason', 'TEXT NOT NULL'),
    ],
    'monthly_bars': [
        ('symbol', 'TEXT NOT NULL'), ('year', 'INTEGER NOT NULL'), ('month', 'INTEGER NOT NULL'),
        ('monthly_open', 'REAL'), ('monthly_close', 'REAL'), ('monthly_return', 'REAL'),
    ],
    'yearly_bars': [
        ('symbol', 'TEXT NOT NULL'), ('year', 'INTEGER NOT NULL'),
        ('yearly_open', 'REAL'), ('yearly_close', 'REAL'),
        ('previous_close', 'REAL'), ('yearly_return', 'REAL'),
    ],
    'rolling_stats': [
        ('symbol', 'TEXT NOT NULL'), ('date', 'DATE NOT NULL'),
        ('rolling_volatility', 'REAL'), ('rolling_volume', 'REAL'),
    ],
    'rolling_stats_centered': [
        ('symbol', 'TEXT NOT NULL'), ('date', 'DATE NOT NULL'),
        ('rolling_volatility', 'REAL'), ('rolling_volume', 'REAL'),
    ],
    'volatility_summary': [
        ('symbol', 'TEXT NOT NULL'), ('year', 'INTEGER NOT NULL'),
        ('avg_volatility', 'REAL'), ('max_volatility', 'REAL'),
    ],
    'volume_summary': [
        ('symbol', 'TEXT NOT NULL'), ('year', 'INTEGER NOT NULL'),
        ('avg_volume', 'REAL'), ('max_volume', 'REAL'),
    ],
    'correlation_long': [
        ('row_feature', 'TEXT NOT NULL'), ('col_feature', 'TEXT NOT NULL'), ('value', 'REAL'),
    ],
}


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with required tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    # Raw panel
    conn.execute("""
        CREATE TABLE IF NOT EXISTS prices (
            symbol TEXT NOT NULL,
            date DATE NOT NULL,
            open REAL,
            high REAL,
            low REAL,
            close REAL,
            adjusted REAL,
            volume REAL,
            ingested_at DATETIME NOT NULL,
            PRIMARY KEY (symbol, date)
        )
    """)

    # Run tracking
    conn.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            dag_name TEXT NOT NULL,
            started_at DATETIME NOT NULL,
            finished_at DATETIME,
            status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
            rows_in INTEGER,
            rows_out INTEGER,
            rows_rejected INTEGER,
            error_message TEXT
        )
    """)

    # Output tables
    for table_name, columns in METRIC_TABLE_SCHEMAS.items():
        column_sql = ',\n            '.join(f'{name} {sql_type}' for name, sql_type in columns)
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table_name} (\n            {column_sql}\n        )")

    # Create indices for performance
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prices_symbol ON prices(symbol)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prices_date ON prices(date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_daily_returns_symbol ON daily_returns(symbol, date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")

    conn.commit()


def get_connection(db_path: str = './data/metrics.db') -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode = WAL")  # Better concurrency
    return conn


def _to_sql_value(value: Any) -> Any:
    """Convert pandas/numpy scalars to values sqlite3 can bind."""
    if value is None or value is pd.NaT:
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()

    if isinstance(value, date):
        return value.isoformat()

    if hasattr(value, 'item'):  # numpy scalar
        value = value.item()

    if isinstance(value, float) and not math.isfinite(value):
        return None

    return value


def upsert_prices(
    conn: sqlite3.Connection,
    panel: pd.DataFrame,
    ingested_at: Optional[datetime] = None
) -> Tuple[int, int]:
    """
    Upsert canonical panel rows into the prices table.
    Idempotent - can be called multiple times with same data.

    Args:
        conn: SQLite connection
        panel: Canonical price panel
        ingested_at: Load timestamp (defaults to now)

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if panel.empty:
        return (0, 0)

    if ingested_at is None:
        ingested_at = datetime.now()
    loaded_at = ingested_at.isoformat(sep=' ')

    inserted = 0
    updated = 0

    for row in panel.itertuples(index=False):
        key = (_to_sql_value(row.symbol), _to_sql_value(row.date))
        values = tuple(
            _to_sql_value(v)
            for v in (row.open, row.high, row.low, row.close, row.adjusted, row.volume)
        )

        # Check if row exists (by primary key)
        cursor = conn.execute(
            "SELECT COUNT(*) FROM prices WHERE symbol = ? AND date = ?",
            key
        )
        exists = cursor.fetchone()[0] > 0

        if exists:
            conn.execute("""
                UPDATE prices SET
                    open = ?, high = ?, low = ?, close = ?, adjusted = ?,
                    volume = ?, ingested_at = ?
                WHERE symbol = ? AND date = ?
            """, values + (loaded_at,) + key)
            updated += 1
        else:
            conn.execute("""
                INSERT INTO prices (
                    symbol, date, open, high, low, close, adjusted, volume, ingested_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, key + values + (loaded_at,))
            inserted += 1

    conn.commit()
    return (inserted, updated)


def load_prices(
    conn: sqlite3.Connection,
    symbols: Optional[List[str]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> pd.DataFrame:
    """
    Read the stored panel back into a canonical DataFrame.

    Args:
        conn: SQLite connection
        symbols: Optional symbol filter
        start_date: Optional inclusive start date
        end_date: Optional inclusive end date

    Returns:
        DataFrame sorted by (symbol, date) with datetime64 dates
    """
    query = """
        SELECT symbol, date, open, high, low, close, adjusted, volume
        FROM prices
        WHERE 1 = 1
    """
    params: List[Any] = []

    if symbols:
        query += f" AND symbol IN ({', '.join('?' for _ in symbols)})"
        params.extend(s.upper() for s in symbols)

    if start_date is not None:
        query += " AND date >= ?"
        params.append(start_date.isoformat())

    if end_date is not None:
        query += " AND date <= ?"
        params.append(end_date.isoformat())

    query += " ORDER BY symbol ASC, date ASC"

    df = pd.read_sql_query(query, conn, params=params)
    df['date'] = pd.to_datetime(df['date'])
    return df


def _metric_table_rows(table_name: str, df: pd.DataFrame) -> Tuple[List[str], List[tuple]]:
    if table_name not in METRIC_TABLE_SCHEMAS:
        raise LoaderError(f"Unknown metric table: {table_name}")

    columns = [name for name, _ in METRIC_TABLE_SCHEMAS[table_name]]
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise LoaderError(f"{table_name} is missing columns: {missing}")

    rows = [
        tuple(_to_sql_value(v) for v in record)
        for record in df[columns].itertuples(index=False, name=None)
    ]
    return columns, rows


def _write_metric_rows(
    conn: sqlite3.Connection,
    table_name: str,
    columns: List[str],
    rows: List[tuple]
) -> None:
    # Caller owns the transaction
    placeholders = ', '.join('?' for _ in columns)
    conn.execute(f"DELETE FROM {table_name}")
    conn.executemany(
        f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})",
        rows
    )


def replace_metric_table(conn: sqlite3.Connection, table_name: str, df: pd.DataFrame) -> int:
    """
    Replace the full contents of an output table.
    Idempotent - rerunning with the same frame yields the same table.

    Args:
        conn: SQLite connection
        table_name: One of METRIC_TABLE_SCHEMAS
        df: Frame holding at least the table's columns

    Returns:
        Number of rows written

    Raises:
        LoaderError: If the table is unknown or columns are missing
    """
    columns, rows = _metric_table_rows(table_name, df)

    # Single transaction: readers never see a half-replaced table
    with conn:
        _write_metric_rows(conn, table_name, columns, rows)

    return len(rows)


def replace_metric_tables(conn: sqlite3.Connection, tables: Dict[str, pd.DataFrame]) -> Dict[str, int]:
    """
    Replace several output tables in one transaction.

    Every table is checked before anything is deleted. A failing insert
    rolls back all of them, so the stored outputs always come from a
    single run.

    Args:
        conn: SQLite connection
        tables: Mapping table name -> frame, names from METRIC_TABLE_SCHEMAS

    Returns:
        Dictionary table name -> rows written

    Raises:
        LoaderError: If any table is unknown or missing columns
    """
    prepared = {name: _metric_table_rows(name, df) for name, df in tables.items()}

    with conn:
        for name, (columns, rows) in prepared.items():
            _write_metric_rows(conn, name, columns, rows)

    return {name: len(rows) for name, (_, rows) in prepared.items()}


def load_metric_table(conn: sqlite3.Connection, table_name: str) -> pd.DataFrame:
    """
    Read an output table back into a DataFrame.

    Args:
        conn: SQLite connection
        table_name: One of METRIC_TABLE_SCHEMAS

    Returns:
        DataFrame with the table's columns; 'date' parsed when present
    """
    if table_name not in METRIC_TABLE_SCHEMAS:
        raise LoaderError(f"Unknown metric table: {table_name}")

    df = pd.read_sql_query(f"SELECT * FROM {table_name}", conn)
    if 'date' in df.columns:
        df['date'] = pd.to_datetime(df['date'])
    return df
