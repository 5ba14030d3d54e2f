"""Tests for the SQLite store connection and transactions."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from feedback_calibration.config import StoreConfig
from feedback_calibration.database import Database, from_db_timestamp, to_db_timestamp
from feedback_calibration.database.queries import CalibrationQueries
from feedback_calibration.exceptions import PersistenceError
from feedback_calibration.models import CalibrationState


def count_states(db):
    with db.read() as conn:
        return conn.execute("SELECT COUNT(*) AS n FROM calibration_states").fetchone()["n"]


def test_tables_created(database):
    """Test schema creation."""
    with database.read() as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    tables = {row["name"] for row in rows}
    assert {"scores", "voice_metric_snapshots", "feedback_records",
            "calibration_states", "calibration_history", "calibration_runs"} <= tables


def test_initialize_creates_parent_directory(tmp_path):
    db = Database(StoreConfig(db_path=str(tmp_path / "nested" / "dir" / "store.sqlite")))
    db.initialize()
    try:
        assert db.health_check()
    finally:
        db.close()


def test_transaction_commits(database):
    with database.transaction() as conn:
        CalibrationQueries.upsert_state(conn, CalibrationState(parameter_id="empathy", adjustment=0.5))
    assert count_states(database) == 1


def test_transaction_rolls_back_on_error(database):
    """Test any exception undoes the whole block."""
    with pytest.raises(RuntimeError):
        with database.transaction() as conn:
            CalibrationQueries.upsert_state(conn, CalibrationState(parameter_id="empathy"))
            raise RuntimeError("boom")
    assert count_states(database) == 0


def test_sqlite_errors_become_persistence_errors(database):
    """Test constraint violations surface as PersistenceError and roll back."""
    with pytest.raises(PersistenceError):
        with database.transaction() as conn:
            CalibrationQueries.upsert_state(conn, CalibrationState(parameter_id="empathy"))
            conn.execute(
                "INSERT INTO calibration_states (parameter_id, adjustment) VALUES ('confidence', 9.0)"
            )
    assert count_states(database) == 0


def test_nested_transactions_join_outer(database):
    """Test an inner block failing rolls back the outer block's writes too."""
    with pytest.raises(PersistenceError):
        with database.transaction() as outer:
            CalibrationQueries.upsert_state(outer, CalibrationState(parameter_id="empathy"))
            with database.transaction() as inner:
                assert inner is outer
                raise sqlite3.OperationalError("disk full")
    assert count_states(database) == 0


def test_uninitialized_database(tmp_path):
    db = Database(StoreConfig(db_path=str(tmp_path / "never.sqlite")))
    assert not db.is_initialized
    with pytest.raises(PersistenceError, match="not initialized"):
        with db.transaction():
            pass
    assert not db.health_check()


def test_close(database):
    database.close()
    assert not database.is_initialized
    assert not database.health_check()


def test_timestamp_round_trip_is_utc():
    local = datetime(2024, 6, 10, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    stamp = to_db_timestamp(local)

    assert stamp == "2024-06-10T12:00:00.000000+00:00"
    assert from_db_timestamp(stamp) == local
    assert from_db_timestamp(None) is None
