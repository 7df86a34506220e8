from datetime import datetime, timedelta

import pytest
from PySide6.QtCore import QCoreApplication

from BackEnd.core.config import SchedulerConfig
from BackEnd.repos.state_repo import StateRepo
from BackEnd.services.timer_service import SessionScheduler


class FakeClock:
    """Callable wall clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("POMER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("SYNC_URL", raising=False)
    monkeypatch.delenv("SYNC_TOKEN", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 1, 12, 0, 0))


@pytest.fixture
def config() -> SchedulerConfig:
    return SchedulerConfig(work_minutes=25, short_break_minutes=5, long_break_minutes=15, cycles_before_long_break=4)


@pytest.fixture
def repo(tmp_path) -> StateRepo:
    return StateRepo(tmp_path / "state.db")


@pytest.fixture
def scheduler(repo, config, clock):
    sched = SessionScheduler(repo, config, now=clock)
    sched.load()
    yield sched
    sched._timer.stop()


def run_ticks(scheduler, clock, count: int):
    for _ in range(count):
        clock.advance(1)
        scheduler.tick()
