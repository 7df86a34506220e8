"""Last-writer-wins sync of the full scheduler state with a remote endpoint.

One POST carries {"updatedAt": ms, "payload": snapshot}. The endpoint keeps
whichever copy has the greater updatedAt (ties go to the submitter) and answers
either {"status": "accepted"} or {"serverData": {"updatedAt": ms, "payload": {...}}}
when its own copy wins. A losing local copy is replaced wholesale.
"""

import logging
from dataclasses import dataclass

import requests
from PySide6.QtCore import QObject, QThreadPool, Signal

from BackEnd.core.config import SyncConfig
from BackEnd.core.models import SyncSnapshot

logger = logging.getLogger(__name__)


class SyncError(Exception):
	kind = "sync"


class SyncConfigError(SyncError):
	"""SYNC_URL or SYNC_TOKEN is missing."""
	kind = "config"


class SyncTransportError(SyncError):
	"""The request failed or the response could not be understood."""
	kind = "transport"


@dataclass
class SyncResult:
	accepted: bool
	remote_snapshot: SyncSnapshot | None = None


def resolve_submission(stored: SyncSnapshot | None, submitted: SyncSnapshot):
	"""Endpoint-side rule: returns (accepted, snapshot the endpoint now holds)."""
	if stored is None or submitted.updated_at >= stored.updated_at:
		return True, submitted
	return False, stored


class SyncService:
	def __init__(self, config: SyncConfig, session=None, timeout: float = 10):
		self.config = config
		self.session = session or requests.Session()
		self.timeout = timeout

	def sync(self, snapshot: SyncSnapshot) -> SyncResult:
		"""Exchange `snapshot` with the endpoint. Never touches local state."""
		if not self.config.is_complete:
			raise SyncConfigError("Missing SYNC_URL or SYNC_TOKEN in .env")

		body = {"updatedAt": snapshot.updated_at, "payload": snapshot.to_payload()}
		headers = {"Authorization": f"Bearer {self.config.token}"}
		try:
			resp = self.session.post(self.config.url, json=body, headers=headers, timeout=self.timeout)
		except requests.RequestException as exc:
			raise SyncTransportError(f"Could not reach sync server: {exc}") from exc
		if resp.status_code != 200:
			raise SyncTransportError(f"Server Error: {resp.status_code}")
		try:
			data = resp.json()
		except ValueError as exc:
			raise SyncTransportError("Sync server returned invalid JSON") from exc
		return self._parse_response(data)

	@staticmethod
	def _parse_response(data) -> SyncResult:
		if not isinstance(data, dict):
			raise SyncTransportError("Unexpected sync response")
		server_data = data.get("serverData")
		if server_data:
			if not isinstance(server_data, dict):
				raise SyncTransportError("Malformed serverData in sync response")
			try:
				remote = SyncSnapshot.from_payload(server_data.get("payload"), server_data.get("updatedAt"))
			except ValueError as exc:
				raise SyncTransportError(f"Unusable remote snapshot: {exc}") from exc
			return SyncResult(accepted=False, remote_snapshot=remote)
		if data.get("status") == "accepted":
			return SyncResult(accepted=True)
		raise SyncTransportError("Sync response does not say which copy won")


class SyncReconciler(QObject):
	"""Runs one sync for a scheduler and adopts the remote copy when it wins."""

	sync_started = Signal()
	sync_succeeded = Signal(str)  # "uploaded" or "downloaded"
	sync_failed = Signal(str, str)  # error kind, message
	_exchange_done = Signal(object, object)

	def __init__(self, scheduler, repo, service: SyncService, parent=None):
		super().__init__(parent)
		self.scheduler = scheduler
		self.repo = repo
		self.service = service
		self._exchange_done.connect(self._finish)

	def sync(self) -> SyncResult | None:
		"""Blocking sync. Returns None on failure (reported via sync_failed)."""
		snapshot = self.scheduler.snapshot()
		self.sync_started.emit()
		try:
			result = self.service.sync(snapshot)
		except SyncError as exc:
			self._finish(None, exc)
			return None
		self._finish(result, None)
		return result

	def sync_in_background(self):
		"""Run the exchange on the Qt thread pool; adoption happens on this object's thread."""
		snapshot = self.scheduler.snapshot()
		self.sync_started.emit()

		def exchange():
			try:
				self._exchange_done.emit(self.service.sync(snapshot), None)
			except SyncError as exc:
				self._exchange_done.emit(None, exc)

		QThreadPool.globalInstance().start(exchange)

	def _finish(self, result, error):
		if error is not None:
			logger.warning("Sync failed (%s): %s", error.kind, error)
			self.sync_failed.emit(error.kind, str(error))
			return
		if result.accepted:
			logger.info("Sync: local copy accepted by server")
			self.sync_succeeded.emit("uploaded")
			return
		self.adopt(result.remote_snapshot)
		self.sync_succeeded.emit("downloaded")

	def adopt(self, remote: SyncSnapshot):
		"""Replace local timer, tasks and history with `remote`."""
		logger.info("Sync: adopting server copy from %d", remote.updated_at)
		self.repo.save_snapshot(remote)
		self.scheduler.load()
