from datetime import datetime, timedelta

LOGICAL_DAY_OFFSET_HOURS = 4


def logical_date(now: datetime | None = None, offset_hours: int = LOGICAL_DAY_OFFSET_HOURS) -> str:
	"""Return the logical day for `now` as YYYY-MM-DD.

	The day boundary is shifted back by `offset_hours`, so a session at 1 AM
	still counts toward the previous day.
	"""
	if now is None:
		now = datetime.now()
	return (now - timedelta(hours=offset_hours)).date().isoformat()

def epoch_ms(now: datetime | None = None) -> int:
	"""Return `now` (default: current time) as integer milliseconds since the epoch."""
	if now is None:
		now = datetime.now()
	return int(now.timestamp() * 1000)

def fmt_mmss(seconds: int) -> str:
	"""Format seconds as MM:SS."""
	m = seconds // 60
	s = seconds % 60
	return f"{m:02}:{s:02}"
