"""
SQLite connection management for the calibration engine.

Provides a single shared connection with explicit write transactions. Each
``transaction()`` block runs under ``BEGIN IMMEDIATE`` and an in-process
re-entrant lock, so read-modify-write sequences against one calibration
state row or one score cannot interleave with another writer.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..config import StoreConfig
from ..exceptions import PersistenceError


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS scores (
    id TEXT PRIMARY KEY,
    evaluation_id TEXT NOT NULL,
    parameter_id TEXT NOT NULL,
    value INTEGER NOT NULL CHECK (value BETWEEN 1 AND 5),
    note TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT,
    UNIQUE (evaluation_id, parameter_id)
);

CREATE TABLE IF NOT EXISTS voice_metric_snapshots (
    evaluation_id TEXT PRIMARY KEY,
    clarity REAL,
    volume REAL,
    pace REAL,
    tone REAL,
    overall REAL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS feedback_records (
    id TEXT PRIMARY KEY,
    evaluation_id TEXT NOT NULL,
    evaluator_id TEXT NOT NULL,
    feedback_type TEXT NOT NULL CHECK (feedback_type IN ('score', 'voice_quality')),
    score_ref TEXT REFERENCES scores (id),
    voice_metric TEXT,
    original_score REAL,
    adjusted_score REAL,
    comment TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS calibration_states (
    parameter_id TEXT PRIMARY KEY,
    adjustment REAL NOT NULL CHECK (adjustment BETWEEN -2.0 AND 2.0),
    guidance TEXT NOT NULL DEFAULT '',
    total_feedback_count INTEGER NOT NULL DEFAULT 0,
    last_batch_avg_adjustment REAL NOT NULL DEFAULT 0,
    last_analyzed_at TEXT
);

CREATE TABLE IF NOT EXISTS calibration_history (
    id TEXT PRIMARY KEY,
    parameter_id TEXT NOT NULL,
    previous_adjustment REAL NOT NULL,
    new_adjustment REAL NOT NULL,
    previous_guidance TEXT NOT NULL DEFAULT '',
    new_guidance TEXT NOT NULL DEFAULT '',
    feedback_count INTEGER NOT NULL,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    evaluator_ids TEXT NOT NULL DEFAULT '[]',  -- JSON array
    summary TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS calibration_runs (
    id TEXT PRIMARY KEY,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    total_feedbacks INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_feedback_created_at ON feedback_records (created_at);
CREATE INDEX IF NOT EXISTS idx_feedback_evaluation ON feedback_records (evaluation_id);
CREATE INDEX IF NOT EXISTS idx_feedback_score_ref ON feedback_records (score_ref);
CREATE INDEX IF NOT EXISTS idx_history_parameter ON calibration_history (parameter_id, created_at);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """
    Serialize a datetime for storage.

    Naive datetimes are taken to be UTC. The fixed-width format keeps
    lexical ordering equal to chronological ordering in SQL comparisons.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """
    SQLite database handle with transactional access.

    Usage:
        db = Database(StoreConfig(db_path=":memory:"))
        db.initialize()
        with db.transaction() as conn:
            conn.execute("INSERT ...")
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0

    def initialize(self) -> None:
        """Open the connection and create tables if needed."""
        if self._conn is not None:
            return

        db_path = self.config.db_path
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                db_path,
                timeout=self.config.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize database at {db_path}: {e}")
            raise PersistenceError(f"Failed to open store at {db_path}: {e}") from e

        self._conn = conn
        logger.info(f"Calibration store initialized at {db_path}")

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Calibration store closed")

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("Database not initialized")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one atomic write transaction.

        Nested blocks join the outermost transaction. Any exception rolls the
        whole transaction back; sqlite errors surface as PersistenceError.
        """
        with self._lock:
            conn = self._connection()

            if self._depth > 0:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                logger.error(f"Failed to begin transaction: {e}")
                raise PersistenceError(f"Failed to begin transaction: {e}") from e

            self._depth = 1
            try:
                yield conn
            except sqlite3.Error as e:
                self._rollback(conn)
                logger.error(f"Transaction failed: {e}")
                raise PersistenceError(f"Store write failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback(conn)
                    logger.error(f"Commit failed: {e}")
                    raise PersistenceError(f"Store commit failed: {e}") from e
            finally:
                self._depth = 0

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Run read-only queries; sqlite errors surface as PersistenceError."""
        with self._lock:
            conn = self._connection()
            try:
                yield conn
            except sqlite3.Error as e:
                logger.error(f"Query failed: {e}")
                raise PersistenceError(f"Store read failed: {e}") from e

    def _rollback(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning(f"Error rolling back transaction: {e}")

    def health_check(self) -> bool:
        """Perform a health check on the database connection."""
        try:
            with self.read() as conn:
                row = conn.execute("SELECT 1 AS health_check").fetchone()
            return row is not None and row["health_check"] == 1
        except PersistenceError as e:
            logger.error(f"Health check failed: {e}")
            return False


def create_database(config: Optional[StoreConfig] = None) -> Database:
    """Create and initialize a database from configuration (environment by default)."""
    db = Database(config or StoreConfig())
    db.initialize()
    return db
