"""Record types shared by the scheduler, the persisted store and sync.

Everything read back from storage or from the sync endpoint goes through the
`from_dict` / `from_payload` constructors here. They coerce what they can and
drop or default what they cannot, so corrupt data never reaches the scheduler.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum, IntEnum

logger = logging.getLogger(__name__)

GENERAL_TASK_ID = "general"
GENERAL_TASK_NAME = "General Work"


class TimerState(IntEnum):
	STOPPED = 0
	RUNNING = 1
	PAUSED = 2


class SessionType(str, Enum):
	WORK = "Work"
	SHORT_BREAK = "Short Break"
	LONG_BREAK = "Long Break"


def as_int(value, default=None):
	"""Return `value` as an int, or `default` if it is not a whole number."""
	if isinstance(value, bool):
		return default
	if isinstance(value, int):
		return value
	if isinstance(value, float) and value.is_integer():
		return int(value)
	if isinstance(value, str):
		try:
			return int(value.strip())
		except ValueError:
			return default
	return default

def is_date_key(value) -> bool:
	"""True for a YYYY-MM-DD string."""
	if not isinstance(value, str) or len(value) != 10:
		return False
	try:
		date.fromisoformat(value)
	except ValueError:
		return False
	return True


@dataclass
class Task:
	id: str
	name: str
	target: int
	completed: int = 0

	@classmethod
	def from_dict(cls, data):
		"""Build a Task from its stored dict, or return None if it is unusable."""
		if not isinstance(data, dict):
			return None
		task_id = data.get("id")
		name = data.get("name")
		if not isinstance(task_id, str) or not task_id:
			return None
		if not isinstance(name, str) or not name.strip():
			return None
		target = as_int(data.get("target"))
		if target is None or target <= 0:
			return None
		completed = as_int(data.get("completed"), 0)
		return cls(id=task_id, name=name, target=target, completed=max(completed, 0))

	def to_dict(self):
		return {"id": self.id, "name": self.name, "target": self.target, "completed": self.completed}


@dataclass(frozen=True)
class HistoryEntry:
	task_id: str
	task_name: str
	# None for entries written before durations were recorded
	duration_minutes: int | None = None

	def minutes(self, fallback_minutes: int) -> int:
		if self.duration_minutes is None:
			return fallback_minutes
		return self.duration_minutes

	@classmethod
	def from_dict(cls, data):
		if not isinstance(data, dict):
			return None
		name = data.get("taskName")
		if not isinstance(name, str):
			return None
		task_id = data.get("taskId")
		if not isinstance(task_id, str) or not task_id:
			task_id = GENERAL_TASK_ID
		duration = as_int(data.get("duration"))
		if duration is not None and duration < 0:
			duration = None
		return cls(task_id=task_id, task_name=name, duration_minutes=duration)

	def to_dict(self):
		data = {"taskId": self.task_id, "taskName": self.task_name}
		if self.duration_minutes is not None:
			data["duration"] = self.duration_minutes
		return data


def parse_tasks(items) -> list[Task]:
	"""Parse a sequence of task dicts, skipping the ones that do not validate."""
	if not isinstance(items, (list, tuple)):
		logger.warning("Ignoring task list of type %s", type(items).__name__)
		return []
	tasks = []
	seen = set()
	for item in items:
		task = Task.from_dict(item)
		if task is None or task.id in seen:
			logger.warning("Dropping unusable task record: %r", item)
			continue
		seen.add(task.id)
		tasks.append(task)
	return tasks

def parse_history(data) -> dict[str, list[HistoryEntry]]:
	"""Parse a {date: [entry, ...]} mapping, dropping malformed days and entries."""
	if not isinstance(data, dict):
		logger.warning("Ignoring history of type %s", type(data).__name__)
		return {}
	history = {}
	for day, items in data.items():
		if not is_date_key(day) or not isinstance(items, list):
			logger.warning("Dropping history bucket %r", day)
			continue
		entries = [e for e in (HistoryEntry.from_dict(i) for i in items) if e is not None]
		if len(entries) != len(items):
			logger.warning("Dropped %d malformed history entries on %s", len(items) - len(entries), day)
		history[day] = entries
	return history


@dataclass
class TimerSnapshot:
	"""The persisted timer fields, in the scheduler's own types."""

	state: TimerState = TimerState.STOPPED
	time_left: int = 0
	work_cycle_count: int = 0
	session_type: SessionType = SessionType.WORK
	active_task_id: str | None = None
	cycles_today: int = 0
	last_date: str = ""

	@classmethod
	def from_dict(cls, data):
		"""Coerce a raw wire/storage dict; unknown codes fall back to defaults."""
		if not isinstance(data, dict):
			data = {}
		code = as_int(data.get("state"), 0)
		try:
			state = TimerState(code)
		except ValueError:
			logger.warning("Unknown timer state code %r, treating as stopped", code)
			state = TimerState.STOPPED
		try:
			session_type = SessionType(data.get("sessionType"))
		except ValueError:
			session_type = SessionType.WORK
		active = data.get("activeTaskId")
		last_date = data.get("lastDate")
		return cls(
			state=state,
			time_left=as_int(data.get("timeLeft"), 0),
			work_cycle_count=as_int(data.get("workCycleCount"), 0),
			session_type=session_type,
			active_task_id=active if isinstance(active, str) and active else None,
			cycles_today=as_int(data.get("cyclesToday"), 0),
			last_date=last_date if is_date_key(last_date) else "",
		)

	def to_dict(self):
		return {
			"state": int(self.state),
			"timeLeft": self.time_left,
			"workCycleCount": self.work_cycle_count,
			"sessionType": self.session_type.value,
			"activeTaskId": self.active_task_id or "",
			"cyclesToday": self.cycles_today,
			"lastDate": self.last_date,
		}

	def normalized(self, config, task_ids, today: str) -> "TimerSnapshot":
		"""Return a copy with every out-of-range field replaced by a safe value."""
		fixed = replace(self)
		if not fixed.last_date:
			fixed.last_date = today
		if fixed.cycles_today < 0:
			logger.warning("Negative cycles_today %d reset to 0", fixed.cycles_today)
			fixed.cycles_today = 0
		if not 0 <= fixed.work_cycle_count < config.cycles_before_long_break:
			logger.warning("work_cycle_count %d out of range, reset to 0", fixed.work_cycle_count)
			fixed.work_cycle_count = 0
		if fixed.active_task_id is not None and fixed.active_task_id not in task_ids:
			logger.warning("Active task %s no longer exists", fixed.active_task_id)
			fixed.active_task_id = None
		if fixed.time_left <= 0 and fixed.state != TimerState.STOPPED:
			logger.warning("time_left %d invalid, restarting %s", fixed.time_left, fixed.session_type.value)
			fixed.time_left = config.duration_seconds(fixed.session_type)
		return fixed


@dataclass
class SyncSnapshot:
	"""Full exportable state exchanged with the sync endpoint."""

	timer: TimerSnapshot
	tasks: list[Task] = field(default_factory=list)
	history: dict[str, list[HistoryEntry]] = field(default_factory=dict)
	updated_at: int = 0

	def to_payload(self):
		return {
			"timerState": self.timer.to_dict(),
			"tasks": [t.to_dict() for t in self.tasks],
			"history": {day: [e.to_dict() for e in entries] for day, entries in self.history.items()},
			"updatedAt": self.updated_at,
		}

	@classmethod
	def from_payload(cls, payload, updated_at=None):
		"""Parse a snapshot payload; raises ValueError if it cannot be adopted."""
		if not isinstance(payload, dict):
			raise ValueError("snapshot payload is not an object")
		timer = payload.get("timerState")
		if not isinstance(timer, dict):
			raise ValueError("snapshot payload has no timerState")
		stamp = as_int(updated_at if updated_at is not None else payload.get("updatedAt"))
		if stamp is None:
			raise ValueError("snapshot payload has no usable updatedAt")
		return cls(
			timer=TimerSnapshot.from_dict(timer),
			tasks=parse_tasks(payload.get("tasks") or []),
			history=parse_history(payload.get("history") or {}),
			updated_at=stamp,
		)
