import json
import logging
import os
from dataclasses import asdict, dataclass, fields

from dotenv import dotenv_values

from BackEnd.core.models import SessionType, as_int
from BackEnd.core.paths import env_path, settings_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
	"""Durations (minutes) and the number of work sessions before a long break."""

	work_minutes: int = 25
	short_break_minutes: int = 5
	long_break_minutes: int = 15
	cycles_before_long_break: int = 4

	@classmethod
	def from_mapping(cls, data):
		"""Keep the positive integers in `data`; anything else gets the default."""
		if not isinstance(data, dict):
			data = {}
		values = {}
		for f in fields(cls):
			if f.name not in data:
				continue
			value = as_int(data[f.name])
			if value is None or value <= 0:
				logger.warning("Invalid setting %s=%r, using default %d", f.name, data[f.name], f.default)
				continue
			values[f.name] = value
		return cls(**values)

	def duration_minutes(self, session_type: SessionType) -> int:
		if session_type == SessionType.SHORT_BREAK:
			return self.short_break_minutes
		if session_type == SessionType.LONG_BREAK:
			return self.long_break_minutes
		return self.work_minutes

	def duration_seconds(self, session_type: SessionType) -> int:
		return self.duration_minutes(session_type) * 60


def load_scheduler_config(path=None) -> SchedulerConfig:
	"""Read settings.json; a missing or unreadable file yields the defaults."""
	path = path or settings_path()
	try:
		with open(path, encoding="utf-8") as f:
			data = json.load(f)
	except FileNotFoundError:
		return SchedulerConfig()
	except (OSError, ValueError) as exc:
		logger.warning("Could not read settings from %s: %s", path, exc)
		return SchedulerConfig()
	return SchedulerConfig.from_mapping(data)

def save_scheduler_config(config: SchedulerConfig, path=None):
	path = path or settings_path()
	with open(path, "w", encoding="utf-8") as f:
		json.dump(asdict(config), f, indent=2)


@dataclass(frozen=True)
class SyncConfig:
	url: str = ""
	token: str = ""

	@property
	def is_complete(self) -> bool:
		return bool(self.url and self.token)


def load_sync_config(path=None) -> SyncConfig:
	"""Read SYNC_URL / SYNC_TOKEN from the .env file; the environment wins."""
	path = path or env_path()
	values = dotenv_values(path) if os.path.exists(path) else {}
	url = os.environ.get("SYNC_URL") or values.get("SYNC_URL") or ""
	token = os.environ.get("SYNC_TOKEN") or values.get("SYNC_TOKEN") or ""
	return SyncConfig(url=url.strip(), token=token.strip())
