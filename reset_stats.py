"""
Reset Pomodoro progress.
Either zero today's counters (cycles and task completions), or wipe all
stored state: timer, tasks and history.
"""

import os
from PySide6.QtCore import QCoreApplication
from BackEnd.core.config import load_scheduler_config
from BackEnd.core.paths import settings_path
from BackEnd.repos.state_repo import StateRepo
from BackEnd.services.timer_service import SessionScheduler

def reset_daily_progress(repo=None):
    """Zero today's cycle count and task completions, keep history."""
    app = QCoreApplication.instance() or QCoreApplication([])
    scheduler = SessionScheduler(repo or StateRepo(), load_scheduler_config())
    scheduler.load()
    scheduler.reset_daily_progress()
    print("✓ Daily progress has been reset.")

def reset_all_stats(repo=None):
    """Delete all stored timer state, tasks and history."""
    repo = repo or StateRepo()
    confirm = input("Are you sure you want to delete all tasks and history? This cannot be undone. (yes/no): ")
    if confirm.lower() not in ['yes', 'y']:
        print("Reset cancelled.")
        return
    repo.clear()
    print("✓ All timer state, tasks and history deleted.")

    settings_file = settings_path()
    if settings_file.exists():
        confirm_settings = input("\nAlso restore default durations? (yes/no): ")
        if confirm_settings.lower() in ['yes', 'y']:
            os.remove(settings_file)
            print("✓ Settings restored to defaults.")

if __name__ == "__main__":
    print("=" * 50)
    print("Pomodoro - Reset Progress")
    print("=" * 50)
    choice = input("Reset [d]aily progress or [a]ll data? ")
    if choice.lower().startswith("a"):
        reset_all_stats()
    else:
        reset_daily_progress()
