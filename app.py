import argparse
import logging
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from BackEnd.core.config import load_scheduler_config, load_sync_config
from BackEnd.repos.state_repo import StateRepo
from BackEnd.services.sync_service import SyncReconciler, SyncService
from BackEnd.services.timer_service import SessionScheduler

logger = logging.getLogger("pomer")


def build_scheduler(db_file=None):
    repo = StateRepo(db_file)
    scheduler = SessionScheduler(repo, load_scheduler_config())
    scheduler.load()
    return repo, scheduler


def print_status(view):
    task = view["active_task"]
    task_text = f"{task['name']} ({task['completed']}/{task['target']})" if task else "No Active Task"
    print(f"{view['session_type']} {view['state']} {view['time_left_text']}")
    print(f"Until Long Break: {view['work_cycle_count']}/{view['cycles_before_long_break']} | Today: {view['cycles_today']}")
    print(f"Active: {task_text} | Today: {view['today_minutes']}m")


def run(scheduler):
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    scheduler.session_finished.connect(lambda kind: logger.info("%s session is over!", kind))
    scheduler.paused_due_to_gap.connect(lambda gap: logger.info("Timer paused (system sleep detected, %ss)", gap))
    scheduler.timer_blocked.connect(logger.info)
    scheduler.day_rolled_over.connect(lambda day: logger.info("New day! Daily progress reset (%s)", day))
    app.aboutToQuit.connect(scheduler.shutdown)

    # report once a minute rather than on every tick
    reporter = QTimer()
    reporter.setInterval(60 * 1000)
    reporter.timeout.connect(lambda: print_status(scheduler.view()))
    reporter.start()

    scheduler.start()
    print_status(scheduler.view())
    return app.exec()


def sync(repo, scheduler):
    service = SyncService(load_sync_config())
    reconciler = SyncReconciler(scheduler, repo, service)
    reconciler.sync_succeeded.connect(
        lambda how: print("Data downloaded from Server" if how == "downloaded" else "Upload Successful"))
    reconciler.sync_failed.connect(lambda kind, message: print(f"Sync Error ({kind}): {message}"))
    return 0 if reconciler.sync() is not None else 1


def main(argv=None):
    parser = argparse.ArgumentParser(description="Pomodoro work/break timer")
    parser.add_argument("command", nargs="?", default="run", choices=["run", "status", "sync", "skip", "reset"])
    parser.add_argument("--db", help="state database (default: per-user data dir)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    repo, scheduler = build_scheduler(args.db)

    if args.command == "run":
        return run(scheduler)
    if args.command == "sync":
        return sync(repo, scheduler)
    if args.command == "skip":
        scheduler.skip()
        scheduler.pause()
    elif args.command == "reset":
        scheduler.reset()
    print_status(scheduler.view())
    return 0


if __name__ == "__main__":
    sys.exit(main())
