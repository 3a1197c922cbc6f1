import logging
from typing import Optional

import duckdb
import pandas as pd

logger = logging.getLogger(__name__)


class VoteDatabase:
    """
    In-memory DuckDB workspace for vote extraction queries.
    Frames are registered as views and queried with SQL, results come back
    as pandas DataFrames.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to DuckDB file. If None, uses in-memory database.
        """
        self.db_path = db_path or ":memory:"
        self._conn = None  # Will be created on-demand

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create a database connection on-demand."""
        if self._conn is None:
            self._conn = duckdb.connect(self.db_path)
            logger.debug(f"Opened connection to {self.db_path}")
        return self._conn

    def register(self, name: str, frame: pd.DataFrame):
        """Expose a DataFrame to SQL under the given view name."""
        self.conn.register(name, frame)

    def query(self, sql: str, params: Optional[list] = None) -> pd.DataFrame:
        """
        Execute a SQL query and return results as DataFrame.

        Args:
            sql: SQL query to execute
            params: Positional parameters bound to ``?`` placeholders
        """
        try:
            if params:
                return self.conn.execute(sql, params).fetchdf()
            return self.conn.execute(sql).fetchdf()
        except duckdb.Error as e:
            logger.error(f"Query failed: {e}")
            raise

    def close(self):
        """Close database connection."""
        if self._conn:
            try:
                self._conn.close()
                logger.debug(f"Closed database connection to {self.db_path}")
            except duckdb.Error as e:
                logger.warning(f"Error closing database connection: {e}")
            finally:
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
