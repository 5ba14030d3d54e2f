"""Shared fixtures for calibration engine tests."""

from datetime import datetime, timedelta, timezone

import pytest

from feedback_calibration.config import CalibrationSettings, StoreConfig
from feedback_calibration.database import Database, InMemoryEvaluatorDirectory
from feedback_calibration.engine import CalibrationEngine
from feedback_calibration.models import Evaluator, ScoringParameter


class FakeClock:
    """Controllable replacement for utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 10, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def database(tmp_path):
    db = Database(StoreConfig(db_path=str(tmp_path / "calibration.sqlite")))
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def directory():
    return InMemoryEvaluatorDirectory([
        Evaluator(id="eval-alice", name="Alice", email="alice@example.com"),
        Evaluator(id="eval-bob", name=None, email="bob@example.com"),
        Evaluator(id="eval-carol", name="Carol"),
        Evaluator(id="admin-1", name="Admin", is_admin=True),
    ])


@pytest.fixture
def parameters():
    return [
        ScoringParameter(id="empathy"),
        ScoringParameter(id="confidence"),
        ScoringParameter(id="clarity_pace", label="clarity and pace"),
    ]


@pytest.fixture
def settings():
    """Default thresholds with auto-calibration off so tests control analysis runs."""
    return CalibrationSettings(auto_calibration_threshold=0)


@pytest.fixture
def engine(database, directory, settings, parameters, clock):
    return CalibrationEngine(database, directory=directory, settings=settings,
                             parameters=parameters, clock=clock)
