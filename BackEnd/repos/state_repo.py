import json
import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path

from BackEnd.core.clock import epoch_ms
from BackEnd.core.models import (
	SyncSnapshot, TimerSnapshot, as_int, parse_history, parse_tasks,
)
from BackEnd.core.paths import db_path

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent.parent / "SQL" / "schema.sql"


class Keys:
	TIMER_STATE = "timer-state"
	TIME_LEFT = "time-left"
	WORK_CYCLE_COUNT = "work-cycle-count"
	SESSION_TYPE = "session-type"
	ACTIVE_TASK_ID = "active-task-id"
	CYCLES_TODAY = "cycles-today"
	LAST_CYCLE_DATE = "last-cycle-date"
	TASKS = "tasks"
	COMPLETION_HISTORY = "completion-history"
	LAST_UPDATED = "last-updated"
	QUIT_TIME = "quit-time"


def _utc_now_iso():
	return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class StateRepo:
	"""Typed get/set over a sqlite key/value table.

	Reads of unset or malformed keys return the default (0, "" or []) instead
	of raising. Every multi-key write happens in a single transaction.
	"""

	def __init__(self, db_file=None):
		self.db_file = Path(db_file) if db_file else db_path()

	def connect(self):
		"""Open SQLite connection and ensure schema is applied."""
		conn = sqlite3.connect(self.db_file)
		conn.row_factory = sqlite3.Row
		with open(SCHEMA_PATH, encoding="utf-8") as f:
			conn.executescript(f.read())
		return conn

	@contextmanager
	def _transaction(self):
		with closing(self.connect()) as conn:
			with conn:
				yield conn

	def _read(self, key):
		with self._transaction() as conn:
			row = conn.execute("SELECT value FROM state WHERE key=?", (key,)).fetchone()
			return row["value"] if row else None

	def _write(self, values: dict):
		now = _utc_now_iso()
		with self._transaction() as conn:
			conn.executemany(
				"""
				INSERT INTO state (key, value, updated_at) VALUES (?, ?, ?)
				ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
				""",
				[(key, value, now) for key, value in values.items()]
			)

	# ---- primitive typed access ----

	def get_int(self, key, default: int = 0) -> int:
		raw = self._read(key)
		if raw is None:
			return default
		value = as_int(raw)
		if value is None:
			logger.warning("Stored %s=%r is not an integer", key, raw)
			return default
		return value

	def set_int(self, key, value: int):
		self._write({key: str(int(value))})

	def get_string(self, key, default: str = "") -> str:
		raw = self._read(key)
		return default if raw is None else raw

	def set_string(self, key, value: str):
		self._write({key: value or ""})

	def get_strv(self, key) -> list[str]:
		raw = self._read(key)
		if not raw:
			return []
		try:
			items = json.loads(raw)
		except ValueError:
			logger.warning("Stored %s is not valid JSON", key)
			return []
		if not isinstance(items, list):
			return []
		return [i for i in items if isinstance(i, str)]

	def set_strv(self, key, values):
		self._write({key: json.dumps(list(values))})

	# ---- encoding of the scheduler's records ----

	@staticmethod
	def _encode_timer(timer: TimerSnapshot) -> dict:
		return {
			Keys.TIMER_STATE: str(int(timer.state)),
			Keys.TIME_LEFT: str(timer.time_left),
			Keys.WORK_CYCLE_COUNT: str(timer.work_cycle_count),
			Keys.SESSION_TYPE: timer.session_type.value,
			Keys.ACTIVE_TASK_ID: timer.active_task_id or "",
			Keys.CYCLES_TODAY: str(timer.cycles_today),
			Keys.LAST_CYCLE_DATE: timer.last_date,
		}

	@staticmethod
	def _encode_tasks(tasks) -> dict:
		return {Keys.TASKS: json.dumps([json.dumps(t.to_dict()) for t in tasks])}

	@staticmethod
	def _encode_history(history) -> dict:
		data = {day: [e.to_dict() for e in entries] for day, entries in history.items()}
		return {Keys.COMPLETION_HISTORY: json.dumps(data)}

	def load_timer(self) -> TimerSnapshot:
		return TimerSnapshot.from_dict({
			"state": self.get_int(Keys.TIMER_STATE),
			"timeLeft": self.get_int(Keys.TIME_LEFT),
			"workCycleCount": self.get_int(Keys.WORK_CYCLE_COUNT),
			"sessionType": self.get_string(Keys.SESSION_TYPE),
			"activeTaskId": self.get_string(Keys.ACTIVE_TASK_ID),
			"cyclesToday": self.get_int(Keys.CYCLES_TODAY),
			"lastDate": self.get_string(Keys.LAST_CYCLE_DATE),
		})

	def load_tasks(self):
		"""Return stored tasks; items that fail to parse are dropped."""
		items = []
		for raw in self.get_strv(Keys.TASKS):
			try:
				items.append(json.loads(raw))
			except ValueError:
				logger.warning("Dropping unparseable task record")
		return parse_tasks(items)

	def load_history(self):
		"""Return the stored history mapping, or {} when it is corrupt."""
		raw = self.get_string(Keys.COMPLETION_HISTORY)
		if not raw:
			return {}
		try:
			data = json.loads(raw)
		except ValueError:
			logger.warning("Stored completion history is not valid JSON, starting empty")
			return {}
		return parse_history(data)

	@property
	def last_updated(self) -> int:
		return self.get_int(Keys.LAST_UPDATED)

	def save_timer(self, timer: TimerSnapshot, stamp: int | None = None):
		values = self._encode_timer(timer)
		stamp = str(stamp or epoch_ms())
		values[Keys.QUIT_TIME] = stamp
		values[Keys.LAST_UPDATED] = stamp
		self._write(values)

	def save_tasks(self, tasks, stamp: int | None = None):
		values = self._encode_tasks(tasks)
		values[Keys.LAST_UPDATED] = str(stamp or epoch_ms())
		self._write(values)

	def save_history(self, history, stamp: int | None = None):
		values = self._encode_history(history)
		values[Keys.LAST_UPDATED] = str(stamp or epoch_ms())
		self._write(values)

	def save_state(self, timer: TimerSnapshot, tasks, history, stamp: int | None = None):
		"""Persist timer, tasks and history together, stamped with `stamp` (epoch ms)."""
		values = self._encode_timer(timer)
		values.update(self._encode_tasks(tasks))
		values.update(self._encode_history(history))
		stamp = str(stamp or epoch_ms())
		values[Keys.QUIT_TIME] = stamp
		values[Keys.LAST_UPDATED] = stamp
		self._write(values)

	def save_snapshot(self, snapshot: SyncSnapshot):
		"""Overwrite all three stores with `snapshot` in one transaction."""
		values = self._encode_timer(snapshot.timer)
		values.update(self._encode_tasks(snapshot.tasks))
		values.update(self._encode_history(snapshot.history))
		values[Keys.LAST_UPDATED] = str(snapshot.updated_at)
		self._write(values)

	def clear(self):
		"""Delete every stored key."""
		with self._transaction() as conn:
			conn.execute("DELETE FROM state")
