import logging
import uuid

from BackEnd.core.models import Task, as_int

logger = logging.getLogger(__name__)


class TaskLedger:
	"""User tasks and their daily completion counters.

	The ledger does not persist anything and does not keep its own copy of the
	active task id: it reads it through `active_task` and reports changes
	through `on_active_changed`, both supplied by the owning scheduler.
	"""

	def __init__(self, active_task=None, on_active_changed=None, on_invalid_input=None):
		self._tasks: list[Task] = []
		self._active_task = active_task or (lambda: None)
		self._on_active_changed = on_active_changed or (lambda task_id: None)
		self._on_invalid_input = on_invalid_input or (lambda message: None)

	def __len__(self):
		return len(self._tasks)

	def __iter__(self):
		return iter(list(self._tasks))

	@property
	def tasks(self) -> list[Task]:
		return list(self._tasks)

	def find(self, task_id):
		if not task_id:
			return None
		for task in self._tasks:
			if task.id == task_id:
				return task
		return None

	def add(self, name, target):
		"""Create a task; returns None (and reports why) on invalid input."""
		name = name.strip() if isinstance(name, str) else ""
		if not name:
			self._on_invalid_input("Task name must not be empty")
			return None
		target_value = as_int(target)
		if target_value is None or target_value <= 0:
			self._on_invalid_input(f"Task target must be a positive integer, got {target!r}")
			return None
		task = Task(id=str(uuid.uuid4()), name=name, target=target_value)
		self._tasks.append(task)
		logger.info("Added task %s (%s, target %d)", task.id, task.name, task.target)
		return task

	def delete(self, task_id) -> bool:
		task = self.find(task_id)
		if task is None:
			return False
		self._tasks.remove(task)
		if self._active_task() == task_id:
			self._on_active_changed(None)
		logger.info("Deleted task %s", task_id)
		return True

	def set_active(self, task_id) -> bool:
		"""Select `task_id` as the active task, or clear it with None."""
		if task_id is not None and self.find(task_id) is None:
			logger.warning("Cannot activate unknown task %s", task_id)
			return False
		self._on_active_changed(task_id)
		return True

	def increment_completion(self, task_id):
		task = self.find(task_id)
		if task is not None:
			task.completed += 1
		return task

	def reset_completions(self):
		for task in self._tasks:
			task.completed = 0

	def replace_all(self, tasks):
		self._tasks = list(tasks)
