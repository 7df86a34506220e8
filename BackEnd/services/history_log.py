from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, timedelta

from BackEnd.core.models import HistoryEntry, parse_history


@dataclass
class HistoryAggregate:
	total_minutes: int = 0
	per_task_minutes: dict[str, int] = field(default_factory=dict)
	session_count: int = 0


class HistoryLog:
	"""Append-only log of finished work sessions, bucketed by logical day."""

	def __init__(self, history=None):
		self._days: dict[str, list[HistoryEntry]] = {}
		if history:
			self.replace_all(history)

	def __contains__(self, date_key):
		return bool(self._days.get(date_key))

	def dates(self) -> list[str]:
		return sorted(day for day, entries in self._days.items() if entries)

	def append(self, date_key: str, entry: HistoryEntry):
		self._days.setdefault(date_key, []).append(entry)

	def entries(self, date_key: str) -> list[HistoryEntry]:
		return list(self._days.get(date_key, []))

	def aggregate(self, date_key: str, fallback_minutes: int) -> HistoryAggregate:
		"""Total minutes for a day, and minutes per task name."""
		result = HistoryAggregate()
		for entry in self._days.get(date_key, []):
			minutes = entry.minutes(fallback_minutes)
			result.total_minutes += minutes
			result.per_task_minutes[entry.task_name] = result.per_task_minutes.get(entry.task_name, 0) + minutes
			result.session_count += 1
		return result

	def month_summary(self, year: int, month: int, fallback_minutes: int) -> dict[str, int]:
		"""Return {date_key: total_minutes} for the days of a month that have sessions."""
		summary = {}
		for day in range(1, monthrange(year, month)[1] + 1):
			key = date(year, month, day).isoformat()
			if key in self:
				summary[key] = self.aggregate(key, fallback_minutes).total_minutes
		return summary

	def daily_streak(self, today_key: str) -> int:
		"""
		Count consecutive days with sessions, going back from `today_key`.
		Returns 0 if today has no sessions yet.
		"""
		if today_key not in self:
			return 0
		streak = 0
		current = date.fromisoformat(today_key)
		while current.isoformat() in self:
			streak += 1
			current -= timedelta(days=1)
		return streak

	def total_days(self) -> int:
		"""Number of distinct days with at least one session."""
		return len(self.dates())

	def total_minutes(self, fallback_minutes: int) -> int:
		return sum(self.aggregate(day, fallback_minutes).total_minutes for day in self.dates())

	def snapshot(self):
		"""Copy of the log as {date_key: [HistoryEntry, ...]}."""
		return {day: list(entries) for day, entries in self._days.items()}

	@classmethod
	def from_dict(cls, data):
		return cls(parse_history(data))

	def replace_all(self, history):
		self._days = {day: list(entries) for day, entries in history.items()}
