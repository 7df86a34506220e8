import os
from pathlib import Path

APP_NAME = "Pomer"

def user_data_dir(app_name=APP_NAME):
	"""Return per-user data dir (Windows/macOS/Linux)."""
	override = os.environ.get("POMER_DATA_DIR")
	if override:
		base, app_name = override, ""
	elif os.name == "nt":
		base = os.environ.get("LOCALAPPDATA", os.path.expanduser("~\\AppData\\Local"))
	elif os.name == "posix":
		base = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
	else:
		base = os.path.expanduser("~")
	path = Path(base) / app_name
	path.mkdir(parents=True, exist_ok=True)
	return path

def db_path():
	"""Return Path to state.db inside user data dir."""
	return user_data_dir() / "state.db"

def settings_path():
	"""Return Path to the timer settings file (durations, cycles)."""
	return user_data_dir() / "settings.json"

def env_path():
	"""Return Path to the .env file holding SYNC_URL / SYNC_TOKEN."""
	return user_data_dir() / ".env"
