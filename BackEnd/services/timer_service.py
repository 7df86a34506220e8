import logging
import time
from dataclasses import replace
from datetime import datetime

from PySide6.QtCore import QObject, QTimer, Signal

from BackEnd.core.clock import fmt_mmss, logical_date
from BackEnd.core.config import SchedulerConfig
from BackEnd.core.models import (
	GENERAL_TASK_ID, GENERAL_TASK_NAME, HistoryEntry, SessionType, SyncSnapshot,
	TimerSnapshot, TimerState,
)
from BackEnd.services.history_log import HistoryLog
from BackEnd.services.task_ledger import TaskLedger

logger = logging.getLogger(__name__)

# A tick arriving later than this after the previous one means the machine slept.
STALE_TICK_SECONDS = 5


class SessionScheduler(QObject):
	"""Work / short break / long break cycler.

	Owns the timer fields, drives the one-second QTimer and persists through
	`repo` after every mutation. Tasks and history live in a TaskLedger and a
	HistoryLog that are only mutated through this class.
	"""

	state_changed = Signal(dict)  # emits view()
	paused_due_to_gap = Signal(int)  # emits gap length in seconds
	timer_blocked = Signal(str)
	invalid_task_input = Signal(str)
	session_finished = Signal(str)  # emits the session type that ended
	day_rolled_over = Signal(str)  # emits the new logical date

	def __init__(self, repo, config: SchedulerConfig | None = None, now=None, is_blocked=None, epoch=None, parent=None):
		super().__init__(parent)
		self.repo = repo
		self.config = config or SchedulerConfig()
		self._now = now or datetime.now
		# local wall time is only used for the logical day; gaps and stamps use epoch seconds
		if epoch is None:
			epoch = time.time if now is None else (lambda: self._now().timestamp())
		self._epoch = epoch
		self._is_blocked = is_blocked or (lambda: False)

		self.state = TimerState.STOPPED
		self.session_type = SessionType.WORK
		self.time_left = self.config.duration_seconds(SessionType.WORK)
		self.work_cycle_count = 0
		self.cycles_today = 0
		self.active_task_id = None
		self.last_date = self._today()
		self._last_tick = None

		self.tasks = TaskLedger(
			active_task=lambda: self.active_task_id,
			on_active_changed=self._set_active_task_id,
			on_invalid_input=self._on_invalid_input,
		)
		self.history = HistoryLog()

		self._timer = QTimer(self)
		self._timer.setInterval(1000)
		self._timer.timeout.connect(self.tick)

	@property
	def running(self) -> bool:
		return self.state == TimerState.RUNNING

	def _today(self) -> str:
		return logical_date(self._now())

	def _stamp(self) -> int:
		return int(self._epoch() * 1000)

	# ---- loading / persistence ----

	def load(self):
		"""Restore state from the store. A timer that was running comes back paused."""
		self._halt(self.state)
		tasks = self.repo.load_tasks()
		self.tasks.replace_all(tasks)
		self.history.replace_all(self.repo.load_history())

		stored = self.repo.load_timer()
		timer = stored.normalized(self.config, {t.id for t in tasks}, self._today())
		self.last_date = timer.last_date
		self.cycles_today = timer.cycles_today
		self.active_task_id = timer.active_task_id
		if timer.state == TimerState.STOPPED:
			self._reset_fields()
		else:
			self.state = TimerState.PAUSED
			self.time_left = timer.time_left
			self.work_cycle_count = timer.work_cycle_count
			self.session_type = timer.session_type

		if not self.check_rollover() and self._timer_snapshot() != stored:
			self._save_timer()
		logger.info(
			"Loaded %s %s with %s left, %d cycles today, %d tasks",
			self.state.name.lower(), self.session_type.value, fmt_mmss(self.time_left),
			self.cycles_today, len(self.tasks),
		)
		self._emit_state()

	def _timer_snapshot(self) -> TimerSnapshot:
		return TimerSnapshot(
			state=self.state,
			time_left=self.time_left,
			work_cycle_count=self.work_cycle_count,
			session_type=self.session_type,
			active_task_id=self.active_task_id,
			cycles_today=self.cycles_today,
			last_date=self.last_date,
		)

	def _save(self):
		self.repo.save_state(self._timer_snapshot(), self.tasks.tasks, self.history.snapshot(), stamp=self._stamp())

	def _save_timer(self):
		self.repo.save_timer(self._timer_snapshot(), stamp=self._stamp())

	def snapshot(self) -> SyncSnapshot:
		"""Detached copy of the full state, for a sync exchange."""
		return SyncSnapshot(
			timer=self._timer_snapshot(),
			tasks=[replace(t) for t in self.tasks],
			history=self.history.snapshot(),
			updated_at=self.repo.last_updated or self._stamp(),
		)

	def reload_config(self, config: SchedulerConfig):
		"""Use new durations from the next transition on."""
		self.config = config
		logger.info("Config reloaded: %s", config)
		self._emit_state()

	# ---- state machine ----

	def start(self) -> bool:
		"""Start or resume. Returns False if the timer is blocked."""
		if self.state == TimerState.RUNNING:
			return True
		if not self._run():
			return False
		self._save_timer()
		self._emit_state()
		return True

	def _run(self) -> bool:
		if self._is_blocked():
			logger.info("Timer start blocked")
			self.timer_blocked.emit("Cannot start timer while the screen is locked.")
			return False
		self.state = TimerState.RUNNING
		self._last_tick = self._epoch()
		self._timer.start()
		return True

	def _halt(self, state: TimerState):
		self._timer.stop()
		self._last_tick = None
		self.state = state

	def pause(self):
		if self.state != TimerState.RUNNING:
			return
		self._halt(TimerState.PAUSED)
		self._save_timer()
		self._emit_state()

	def toggle(self):
		if self.state == TimerState.RUNNING:
			self.pause()
		else:
			self.start()

	def _reset_fields(self):
		self._halt(TimerState.STOPPED)
		self.session_type = SessionType.WORK
		self.time_left = self.config.duration_seconds(SessionType.WORK)
		self.work_cycle_count = 0

	def reset(self):
		"""Back to a stopped Work session. Daily counters, tasks and history stay."""
		self._reset_fields()
		self._save()
		self._emit_state()

	def tick(self):
		if self.state != TimerState.RUNNING:
			return
		now = self._epoch()
		if self._last_tick is not None:
			gap = now - self._last_tick
			if gap > STALE_TICK_SECONDS:
				logger.info("Tick gap of %.0fs, pausing (system sleep?)", gap)
				self.pause()
				self.paused_due_to_gap.emit(int(gap))
				return
		self._last_tick = now

		self.check_rollover()
		self.time_left = max(self.time_left - 1, 0)
		if self.time_left == 0:
			self._session_finished()
			return
		self._save_timer()
		self._emit_state()

	def skip(self):
		"""End the current interval now, whatever the state."""
		self.time_left = 0
		self._session_finished()

	def _session_finished(self):
		finished = self.session_type
		logger.info("%s session finished", finished.value)
		if finished == SessionType.WORK:
			self._complete_work_session()
		else:
			self.session_type = SessionType.WORK
			self.time_left = self.config.duration_seconds(SessionType.WORK)
		self.session_finished.emit(finished.value)

		# sessions chain; if the start is refused, park the next one paused
		if not self._run():
			self._halt(TimerState.PAUSED)
		self._save()
		self._emit_state()

	def _complete_work_session(self):
		self.check_rollover()
		self.work_cycle_count += 1
		self.cycles_today += 1

		task = self.tasks.increment_completion(self.active_task_id)
		if task is not None:
			entry = HistoryEntry(task.id, task.name, self.config.work_minutes)
		else:
			entry = HistoryEntry(GENERAL_TASK_ID, GENERAL_TASK_NAME, self.config.work_minutes)
		self.history.append(self.last_date, entry)

		if self.work_cycle_count >= self.config.cycles_before_long_break:
			self.session_type = SessionType.LONG_BREAK
			self.work_cycle_count = 0
		else:
			self.session_type = SessionType.SHORT_BREAK
		self.time_left = self.config.duration_seconds(self.session_type)

	def check_rollover(self) -> bool:
		"""Reset daily counters if the logical day changed. Returns True if it did."""
		today = self._today()
		if today == self.last_date:
			return False
		logger.info("New logical day %s (was %s), resetting daily progress", today, self.last_date)
		self.cycles_today = 0
		self.tasks.reset_completions()
		self.last_date = today
		self._save()
		self.day_rolled_over.emit(today)
		return True

	def reset_daily_progress(self):
		"""Zero today's counters and stop the timer."""
		self.cycles_today = 0
		self.tasks.reset_completions()
		self.last_date = self._today()
		self.reset()

	def on_lock_changed(self, locked: bool):
		if locked and self.state == TimerState.RUNNING:
			self.pause()
			self.timer_blocked.emit("Timer paused (session locked)")

	def shutdown(self):
		"""Stop ticking and persist; a running timer is restored paused next time."""
		self._timer.stop()
		self._save()

	# ---- tasks ----

	def _set_active_task_id(self, task_id):
		self.active_task_id = task_id

	def _on_invalid_input(self, message):
		logger.info("Rejected task input: %s", message)
		self.invalid_task_input.emit(message)

	def add_task(self, name, target):
		"""Add a task and make it the active one."""
		task = self.tasks.add(name, target)
		if task is None:
			return None
		self.tasks.set_active(task.id)
		self._save()
		self._emit_state()
		return task

	def delete_task(self, task_id) -> bool:
		if not self.tasks.delete(task_id):
			return False
		self._save()
		self._emit_state()
		return True

	def set_active_task(self, task_id) -> bool:
		if not self.tasks.set_active(task_id):
			return False
		self._save()
		self._emit_state()
		return True

	# ---- signals ----

	def view(self) -> dict:
		"""Everything a UI needs to render the timer without querying back."""
		active = self.tasks.find(self.active_task_id)
		today = self.history.aggregate(self.last_date, self.config.work_minutes)
		return {
			"state": self.state.name.lower(),
			"session_type": self.session_type.value,
			"time_left": self.time_left,
			"time_left_text": fmt_mmss(self.time_left),
			"work_cycle_count": self.work_cycle_count,
			"cycles_before_long_break": self.config.cycles_before_long_break,
			"cycles_today": self.cycles_today,
			"logical_date": self.last_date,
			"active_task": active.to_dict() if active else None,
			"tasks": [t.to_dict() for t in self.tasks],
			"today_minutes": today.total_minutes,
			"today_per_task": dict(today.per_task_minutes),
		}

	def _emit_state(self):
		self.state_changed.emit(self.view())
