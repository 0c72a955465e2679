import threading
import structlog
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional
from psycopg2 import extras, sql
from psycopg2.pool import ThreadedConnectionPool

from memetrace import config
from memetrace.models.media import DatasetRecord

logger = structlog.get_logger()

# Connection pool configuration
MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 10

# Global connection pool, created on first use
_connection_pool = None
_pool_lock = threading.Lock()

DATASET_COLUMNS = (
    "id",
    "creator_username",
    "upload_date",
    "image_url",
    "post_link",
    "description",
    "created_at",
)

def initialize_connection_pool() -> ThreadedConnectionPool:
    """Initialize the dataset database connection pool; only one is ever created."""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is None:
            try:
                _connection_pool = ThreadedConnectionPool(
                    MIN_CONNECTIONS,
                    MAX_CONNECTIONS,
                    config.DATASET_DB_DSN
                )
                logger.info("Dataset connection pool initialized",
                           min_connections=MIN_CONNECTIONS,
                           max_connections=MAX_CONNECTIONS)
            except Exception as e:
                logger.error("Failed to initialize dataset connection pool", error=str(e))
                raise
        return _connection_pool

@contextmanager
def get_db_connection():
    """Context manager for dataset database connections with automatic cleanup."""
    pool = _connection_pool or initialize_connection_pool()

    conn = None
    try:
        conn = pool.getconn()
        yield conn
    except Exception as e:
        if conn:
            conn.rollback()
        logger.error("Database operation failed", error=str(e))
        raise
    finally:
        if conn:
            pool.putconn(conn)

def close_connection_pool():
    """Close every pooled connection; the pool is recreated on next use."""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            _connection_pool.closeall()
            _connection_pool = None
            logger.info("Dataset connection pool closed")

def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)

def row_to_record(row: Mapping[str, Any]) -> DatasetRecord:
    """Convert a dataset row into a DatasetRecord; dates become ISO strings."""
    return DatasetRecord(
        id=int(row["id"]),
        creator_username=_as_text(row.get("creator_username")),
        upload_date=_as_text(row.get("upload_date")),
        image_url=_as_text(row.get("image_url")),
        post_link=_as_text(row.get("post_link")),
        description=_as_text(row.get("description")),
        created_at=_as_text(row.get("created_at")),
    )

def fetch_dataset(limit: Optional[int] = None) -> List[DatasetRecord]:
    """
    Load the dataset of known posts, ordered by id.

    Args:
        limit: Maximum number of records, defaults to DATASET_MAX_RECORDS
    """
    limit = limit if limit is not None else config.DATASET_MAX_RECORDS
    query = sql.SQL("SELECT {columns} FROM {table} ORDER BY id LIMIT %s").format(
        columns=sql.SQL(", ").join(sql.Identifier(column) for column in DATASET_COLUMNS),
        table=sql.Identifier(config.DATASET_TABLE),
    )
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(query, (limit,))
                rows = cur.fetchall()

        records = [row_to_record(row) for row in rows]
        logger.debug("Dataset loaded", records=len(records), limit=limit)
        return records

    except Exception as e:
        logger.error("Failed to load dataset", table=config.DATASET_TABLE, error=str(e))
        raise

# Database utility functions
def check_database_connection() -> bool:
    """Check if the dataset database connection is working."""
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                result = cur.fetchone()

        logger.info("Dataset database connection check successful")
        return result[0] == 1

    except Exception as e:
        logger.error("Dataset database connection check failed", error=str(e))
        return False

def get_database_stats() -> Dict:
    """Get dataset statistics."""
    query = sql.SQL("SELECT COUNT(*), MAX(created_at) FROM {table}").format(
        table=sql.Identifier(config.DATASET_TABLE),
    )
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query)
                result = cur.fetchone()

        return {
            "dataset_records": result[0],
            "latest_record_at": _as_text(result[1]),
            "records_per_request": config.DATASET_MAX_RECORDS,
            "dataset_table": config.DATASET_TABLE,
            "connection_pool_size": len(_connection_pool._pool) if _connection_pool else 0,
        }

    except Exception as e:
        logger.error("Failed to get database stats", error=str(e))
        return {"error": str(e)}
