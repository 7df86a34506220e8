"""Tests for SessionScheduler: transitions, cycle counting, rollover, gaps, load."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from BackEnd.core.config import SchedulerConfig
from BackEnd.core.models import GENERAL_TASK_ID, GENERAL_TASK_NAME, SessionType, TimerState
from BackEnd.repos.state_repo import Keys
from BackEnd.services.timer_service import SessionScheduler
from conftest import FakeClock, run_ticks


def record(signal) -> list:
    seen = []
    signal.connect(lambda value: seen.append(value))
    return seen


class ZonedClock:
    """Real instant kept in UTC; hands out naive local wall time like datetime.now()."""

    def __init__(self, start_utc: datetime, zone: str):
        self.current = start_utc
        self.zone = ZoneInfo(zone)

    def __call__(self) -> datetime:
        return self.current.astimezone(self.zone).replace(tzinfo=None)

    def epoch(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float = 1):
        self.current += timedelta(seconds=seconds)


# ---- Load ----

class TestLoad:
    def test_fresh_store_starts_stopped_work(self, scheduler, repo):
        assert scheduler.state == TimerState.STOPPED
        assert scheduler.session_type == SessionType.WORK
        assert scheduler.time_left == 25 * 60
        assert scheduler.work_cycle_count == 0
        assert scheduler.last_date == "2024-06-01"
        assert repo.get_int(Keys.TIME_LEFT) == 25 * 60

    def test_running_snapshot_loads_paused(self, repo, config, clock):
        first = SessionScheduler(repo, config, now=clock)
        first.load()
        first.start()
        run_ticks(first, clock, 10)
        first.shutdown()

        second = SessionScheduler(repo, config, now=clock)
        second.load()
        assert second.state == TimerState.PAUSED
        assert second.time_left == 25 * 60 - 10
        assert repo.get_int(Keys.TIMER_STATE) == int(TimerState.PAUSED)

    def test_paused_snapshot_restores_fields(self, repo, config, clock):
        repo.set_int(Keys.TIMER_STATE, int(TimerState.PAUSED))
        repo.set_int(Keys.TIME_LEFT, 200)
        repo.set_int(Keys.WORK_CYCLE_COUNT, 3)
        repo.set_string(Keys.SESSION_TYPE, "Short Break")
        repo.set_int(Keys.CYCLES_TODAY, 7)
        repo.set_string(Keys.LAST_CYCLE_DATE, "2024-06-01")

        sched = SessionScheduler(repo, config, now=clock)
        sched.load()
        assert sched.state == TimerState.PAUSED
        assert sched.session_type == SessionType.SHORT_BREAK
        assert sched.time_left == 200
        assert sched.work_cycle_count == 3
        assert sched.cycles_today == 7

    def test_corrupt_values_fall_back(self, repo, config, clock):
        repo.set_int(Keys.TIMER_STATE, int(TimerState.PAUSED))
        repo.set_string(Keys.TIME_LEFT, "not-a-number")
        repo.set_int(Keys.WORK_CYCLE_COUNT, 99)
        repo.set_string(Keys.SESSION_TYPE, "Siesta")
        repo.set_int(Keys.CYCLES_TODAY, -3)
        repo.set_string(Keys.ACTIVE_TASK_ID, "missing-task")
        repo.set_string(Keys.TASKS, "{{{")
        repo.set_string(Keys.COMPLETION_HISTORY, "[not json")

        sched = SessionScheduler(repo, config, now=clock)
        sched.load()
        assert sched.state == TimerState.PAUSED
        assert sched.session_type == SessionType.WORK
        assert sched.time_left == 25 * 60
        assert sched.work_cycle_count == 0
        assert sched.cycles_today == 0
        assert sched.active_task_id is None
        assert len(sched.tasks) == 0
        assert sched.history.dates() == []

    def test_unknown_state_code_is_stopped(self, repo, config, clock):
        repo.set_int(Keys.TIMER_STATE, 7)
        repo.set_int(Keys.TIME_LEFT, 42)
        sched = SessionScheduler(repo, config, now=clock)
        sched.load()
        assert sched.state == TimerState.STOPPED
        assert sched.time_left == 25 * 60

    def test_load_on_a_new_day_resets_daily_progress(self, repo, config, clock):
        repo.set_int(Keys.CYCLES_TODAY, 5)
        repo.set_string(Keys.LAST_CYCLE_DATE, "2024-05-30")
        sched = SessionScheduler(repo, config, now=clock)
        sched.load()
        assert sched.cycles_today == 0
        assert sched.last_date == "2024-06-01"


# ---- Start / pause / reset ----

class TestTransitions:
    def test_start_runs(self, scheduler):
        changes = record(scheduler.state_changed)
        assert scheduler.start() is True
        assert scheduler.state == TimerState.RUNNING
        assert changes[-1]["state"] == "running"

    def test_pause_then_start_keeps_time(self, scheduler, clock):
        scheduler.start()
        run_ticks(scheduler, clock, 30)
        scheduler.pause()
        before = scheduler.time_left
        scheduler.start()
        assert scheduler.time_left == before
        assert scheduler.state == TimerState.RUNNING

    def test_pause_when_not_running_is_noop(self, scheduler):
        changes = record(scheduler.state_changed)
        scheduler.pause()
        assert scheduler.state == TimerState.STOPPED
        assert changes == []

    def test_toggle(self, scheduler):
        scheduler.toggle()
        assert scheduler.state == TimerState.RUNNING
        scheduler.toggle()
        assert scheduler.state == TimerState.PAUSED

    def test_reset_keeps_daily_counters(self, scheduler):
        scheduler.add_task("Write report", 3)
        scheduler.skip()  # work -> short break
        scheduler.skip()  # short break -> work
        scheduler.skip()  # work -> short break
        scheduler.reset()
        assert scheduler.state == TimerState.STOPPED
        assert scheduler.session_type == SessionType.WORK
        assert scheduler.time_left == 25 * 60
        assert scheduler.work_cycle_count == 0
        assert scheduler.cycles_today == 2
        assert scheduler.tasks.tasks[0].completed == 2
        assert len(scheduler.history.entries("2024-06-01")) == 2

    def test_tick_ignored_when_not_running(self, scheduler, clock):
        clock.advance(1)
        scheduler.tick()
        assert scheduler.time_left == 25 * 60


# ---- Ticking and session completion ----

class TestTick:
    def test_each_tick_decrements_by_one(self, scheduler, clock):
        scheduler.start()
        seen = []
        for _ in range(5):
            clock.advance(1)
            scheduler.tick()
            seen.append(scheduler.time_left)
        assert seen == [1499, 1498, 1497, 1496, 1495]

    def test_session_finishes_exactly_once_at_zero(self, repo, clock):
        sched = SessionScheduler(repo, SchedulerConfig(work_minutes=1, short_break_minutes=2), now=clock)
        sched.load()
        finished = record(sched.session_finished)
        sched.start()
        run_ticks(sched, clock, 59)
        assert finished == []
        assert sched.time_left == 1
        run_ticks(sched, clock, 1)
        assert finished == ["Work"]
        assert sched.session_type == SessionType.SHORT_BREAK
        assert sched.time_left == 120
        assert sched.state == TimerState.RUNNING

    def test_work_completion_records_history(self, scheduler):
        scheduler.start()
        scheduler.skip()
        assert scheduler.cycles_today == 1
        assert scheduler.work_cycle_count == 1
        [entry] = scheduler.history.entries("2024-06-01")
        assert entry.task_id == GENERAL_TASK_ID
        assert entry.task_name == GENERAL_TASK_NAME
        assert entry.duration_minutes == 25

    def test_active_task_completion_counted(self, scheduler):
        task = scheduler.add_task("Thesis", 4)
        scheduler.skip()
        assert scheduler.tasks.find(task.id).completed == 1
        [entry] = scheduler.history.entries("2024-06-01")
        assert (entry.task_id, entry.task_name) == (task.id, "Thesis")

    def test_break_completion_returns_to_work(self, scheduler):
        scheduler.skip()
        scheduler.skip()
        assert scheduler.session_type == SessionType.WORK
        assert scheduler.time_left == 25 * 60
        assert scheduler.work_cycle_count == 1
        assert scheduler.cycles_today == 1

    def test_fourth_work_session_starts_long_break(self, scheduler):
        kinds = []
        for _ in range(4):
            scheduler.skip()  # work
            kinds.append(scheduler.session_type)
            if scheduler.session_type == SessionType.SHORT_BREAK:
                scheduler.skip()
        assert kinds == [SessionType.SHORT_BREAK] * 3 + [SessionType.LONG_BREAK]
        assert scheduler.work_cycle_count == 0
        assert scheduler.time_left == 15 * 60
        assert scheduler.cycles_today == 4

    def test_work_cycle_count_stays_in_range(self, scheduler, config):
        for _ in range(20):
            scheduler.skip()
            assert 0 <= scheduler.work_cycle_count < config.cycles_before_long_break

    def test_skip_from_stopped_chains_into_next_session(self, scheduler):
        scheduler.skip()
        assert scheduler.state == TimerState.RUNNING
        assert scheduler.session_type == SessionType.SHORT_BREAK

    def test_completion_is_persisted(self, scheduler, repo):
        scheduler.skip()
        assert repo.get_int(Keys.CYCLES_TODAY) == 1
        assert repo.get_string(Keys.SESSION_TYPE) == "Short Break"
        assert list(repo.load_history()) == ["2024-06-01"]


class TestConfigReload:
    def test_new_durations_apply_at_next_transition(self, scheduler):
        scheduler.start()
        scheduler.reload_config(SchedulerConfig(work_minutes=50, short_break_minutes=10))
        assert scheduler.time_left == 25 * 60
        scheduler.skip()
        assert scheduler.time_left == 10 * 60
        assert scheduler.history.entries("2024-06-01")[0].duration_minutes == 50

    def test_history_keeps_duration_snapshot(self, scheduler):
        scheduler.skip()
        scheduler.reload_config(SchedulerConfig(work_minutes=45))
        assert scheduler.history.entries("2024-06-01")[0].duration_minutes == 25

    def test_lowered_threshold_forces_long_break(self, scheduler):
        scheduler.skip()
        scheduler.skip()
        scheduler.skip()  # work_cycle_count == 2
        scheduler.skip()
        scheduler.reload_config(SchedulerConfig(cycles_before_long_break=2))
        scheduler.skip()
        assert scheduler.session_type == SessionType.LONG_BREAK
        assert scheduler.work_cycle_count == 0


# ---- Gap detection ----

class TestGap:
    def test_gap_pauses_without_fast_forward(self, scheduler, clock):
        gaps = record(scheduler.paused_due_to_gap)
        scheduler.start()
        run_ticks(scheduler, clock, 3)
        clock.advance(600)
        scheduler.tick()
        assert scheduler.state == TimerState.PAUSED
        assert scheduler.time_left == 25 * 60 - 3
        assert gaps == [600]

    def test_five_second_delay_is_not_a_gap(self, scheduler, clock):
        scheduler.start()
        clock.advance(5)
        scheduler.tick()
        assert scheduler.state == TimerState.RUNNING
        assert scheduler.time_left == 25 * 60 - 1

    def test_resume_after_gap_continues(self, scheduler, clock):
        scheduler.start()
        clock.advance(30)
        scheduler.tick()
        scheduler.start()
        run_ticks(scheduler, clock, 2)
        assert scheduler.time_left == 25 * 60 - 2

    def test_dst_jump_is_not_a_gap(self, repo, config):
        # 01:59:58 EST; the wall clock jumps from 01:59:59 to 03:00:00
        clock = ZonedClock(datetime(2024, 3, 10, 6, 59, 58, tzinfo=timezone.utc), "America/New_York")
        sched = SessionScheduler(repo, config, now=clock, epoch=clock.epoch)
        sched.load()
        gaps = record(sched.paused_due_to_gap)
        sched.start()
        run_ticks(sched, clock, 3)
        assert clock() == datetime(2024, 3, 10, 3, 0, 1)
        assert sched.state == TimerState.RUNNING
        assert gaps == []
        assert sched.time_left == 25 * 60 - 3
        assert sched.last_date == "2024-03-09"
        sched._timer.stop()


# ---- Daily rollover ----

class TestRollover:
    def test_rollover_inside_tick(self, repo, config):
        clock = FakeClock(datetime(2024, 6, 2, 3, 59, 58))
        sched = SessionScheduler(repo, config, now=clock)
        sched.load()
        task = sched.add_task("Read", 2)
        sched.skip()
        sched.skip()  # back to work, running
        assert sched.last_date == "2024-06-01"
        assert sched.cycles_today == 1

        days = record(sched.day_rolled_over)
        run_ticks(sched, clock, 2)  # crosses 04:00
        assert days == ["2024-06-02"]
        assert sched.cycles_today == 0
        assert sched.tasks.find(task.id).completed == 0
        assert repo.get_string(Keys.LAST_CYCLE_DATE) == "2024-06-02"
        assert sched.history.entries("2024-06-01")  # history is kept

    def test_rollover_is_idempotent(self, scheduler, clock):
        scheduler.skip()
        clock.advance(24 * 3600)
        assert scheduler.check_rollover() is True
        assert scheduler.check_rollover() is False
        assert scheduler.cycles_today == 0

    def test_late_night_work_counts_for_previous_day(self, repo, config):
        clock = FakeClock(datetime(2024, 6, 2, 1, 30))
        sched = SessionScheduler(repo, config, now=clock)
        sched.load()
        sched.skip()
        assert sched.history.entries("2024-06-01")
        assert "2024-06-02" not in sched.history

    def test_reset_daily_progress(self, scheduler):
        task = scheduler.add_task("Read", 2)
        scheduler.skip()
        scheduler.reset_daily_progress()
        assert scheduler.cycles_today == 0
        assert scheduler.tasks.find(task.id).completed == 0
        assert scheduler.state == TimerState.STOPPED


# ---- Blocking ----

class TestBlocked:
    def test_start_refused_while_blocked(self, repo, config, clock):
        locked = [True]
        sched = SessionScheduler(repo, config, now=clock, is_blocked=lambda: locked[0])
        sched.load()
        blocked = record(sched.timer_blocked)
        assert sched.start() is False
        assert sched.state == TimerState.STOPPED
        assert len(blocked) == 1

        locked[0] = False
        assert sched.start() is True

    def test_blocked_auto_chain_parks_paused(self, repo, config, clock):
        locked = [False]
        sched = SessionScheduler(repo, config, now=clock, is_blocked=lambda: locked[0])
        sched.load()
        sched.start()
        locked[0] = True
        sched.skip()
        assert sched.state == TimerState.PAUSED
        assert sched.session_type == SessionType.SHORT_BREAK
        assert sched.cycles_today == 1

    def test_blocked_skip_from_stopped_survives_reload(self, repo, config, clock):
        sched = SessionScheduler(repo, config, now=clock, is_blocked=lambda: True)
        sched.load()
        sched.skip()
        assert sched.state == TimerState.PAUSED
        assert sched.session_type == SessionType.SHORT_BREAK

        restored = SessionScheduler(repo, config, now=clock)
        restored.load()
        assert restored.state == TimerState.PAUSED
        assert restored.session_type == SessionType.SHORT_BREAK
        assert restored.time_left == 5 * 60
        assert restored.cycles_today == 1

    def test_lock_pauses_running_timer(self, scheduler):
        scheduler.start()
        scheduler.on_lock_changed(True)
        assert scheduler.state == TimerState.PAUSED


# ---- Tasks through the scheduler ----

class TestTasks:
    def test_added_task_becomes_active(self, scheduler, repo):
        task = scheduler.add_task("  Essay ", 3)
        assert task.name == "Essay"
        assert scheduler.active_task_id == task.id
        assert repo.get_string(Keys.ACTIVE_TASK_ID) == task.id
        assert [t.id for t in repo.load_tasks()] == [task.id]

    def test_invalid_task_signals_and_keeps_state(self, scheduler):
        invalid = record(scheduler.invalid_task_input)
        assert scheduler.add_task("", 2) is None
        assert scheduler.add_task("Essay", 0) is None
        assert len(invalid) == 2
        assert len(scheduler.tasks) == 0

    def test_deleting_active_task_clears_reference(self, scheduler, repo):
        task = scheduler.add_task("Essay", 3)
        assert scheduler.delete_task(task.id) is True
        assert scheduler.active_task_id is None
        assert repo.get_string(Keys.ACTIVE_TASK_ID) == ""

    def test_deleting_other_task_keeps_active(self, scheduler):
        first = scheduler.add_task("Essay", 3)
        second = scheduler.add_task("Slides", 2)
        scheduler.delete_task(first.id)
        assert scheduler.active_task_id == second.id

    def test_set_active_unknown_task_refused(self, scheduler):
        task = scheduler.add_task("Essay", 3)
        assert scheduler.set_active_task("nope") is False
        assert scheduler.active_task_id == task.id
        assert scheduler.set_active_task(None) is True
        assert scheduler.active_task_id is None

    def test_view_describes_active_task(self, scheduler):
        changes = record(scheduler.state_changed)
        scheduler.add_task("Essay", 3)
        scheduler.skip()
        view = changes[-1]
        assert view["active_task"]["completed"] == 1
        assert view["today_minutes"] == 25
        assert view["today_per_task"] == {"Essay": 25}
        assert view["time_left_text"] == "05:00"


def test_snapshot_is_detached(scheduler):
    scheduler.add_task("Essay", 3)
    snap = scheduler.snapshot()
    scheduler.skip()
    assert snap.tasks[0].completed == 0
    assert snap.history == {}
    assert snap.timer.session_type == SessionType.WORK
    assert snap.updated_at > 0


def test_stamps_come_from_the_injected_clock(repo, config, clock):
    sched = SessionScheduler(repo, config, now=clock, epoch=lambda: 1_700_000_000.0)
    sched.load()
    sched.add_task("Read", 2)
    assert repo.last_updated == 1_700_000_000_000
    assert repo.get_int(Keys.QUIT_TIME) == 1_700_000_000_000
    assert sched.snapshot().updated_at == 1_700_000_000_000


def test_snapshot_without_stored_stamp_uses_the_injected_clock(repo, config, clock):
    sched = SessionScheduler(repo, config, now=clock, epoch=lambda: 1_700_000_000.5)
    assert sched.snapshot().updated_at == 1_700_000_000_500


@pytest.mark.parametrize("hour,expected", [(3, "2024-06-01"), (4, "2024-06-02"), (23, "2024-06-02")])
def test_logical_day_boundary(repo, config, hour, expected):
    sched = SessionScheduler(repo, config, now=FakeClock(datetime(2024, 6, 2, hour, 0)))
    sched.load()
    assert sched.last_date == expected
