from __future__ import annotations

import logging

from PySide6.QtCore import QObject, QThread, Signal, Slot

from ..errors import EdgeLLMError, SessionBusy
from ..models import Turn
from ..service import EdgeLLMService
from .workers import CompletionWorker, DownloadWorker, ModelLoadWorker, RegistryWorker

logger = logging.getLogger(__name__)


class ChatController(QObject):
    """
    Bridge between UI events and the service.

    Long-running work runs on a ``QThread`` per job; results come back as
    signals on the controller's thread. Downloads, loads and completions
    share one slot because they all touch the single model session.
    """

    SESSION_JOB = "session"

    files_listed = Signal(object)
    download_progress = Signal(float)
    model_loaded = Signal(object)
    response_progress = Signal(object)
    turn_updated = Signal(int, object)
    response_finished = Signal(object)
    notification = Signal(str, str)
    busy_changed = Signal(str, bool)

    def __init__(self, service: EdgeLLMService, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._service = service
        self._jobs: dict[str, tuple[QThread, QObject]] = {}
        service.store.subscribe(self._forward_turn)

    @property
    def service(self) -> EdgeLLMService:
        return self._service

    def is_busy(self, kind: str) -> bool:
        return kind in self._jobs

    def select_model(self, display_name: str) -> None:
        worker = RegistryWorker(self._service, display_name)
        worker.finished.connect(self.files_listed.emit)
        worker.failed.connect(lambda message: self._notify("Error", message))
        self._start("registry", worker)

    def download_model(self, display_name: str, filename: str) -> None:
        worker = DownloadWorker(self._service, display_name, filename)
        worker.progress.connect(self.download_progress.emit)
        worker.finished.connect(self.model_loaded.emit)
        worker.failed.connect(lambda message: self._notify("Error", message))
        self._start(self.SESSION_JOB, worker)

    def load_model(self, display_name: str, filename: str) -> None:
        worker = ModelLoadWorker(self._service, display_name, filename)
        worker.finished.connect(self.model_loaded.emit)
        worker.failed.connect(lambda message: self._notify("Error Loading Model", message))
        self._start(self.SESSION_JOB, worker)

    def send_message(self, text: str) -> None:
        self._start(self.SESSION_JOB, self._completion_worker(text))

    def stop_generation(self) -> None:
        self._service.stop_generation()

    def toggle_thought(self, index: int) -> None:
        try:
            self._service.toggle_thought(index)
        except IndexError as exc:
            logger.warning("Cannot toggle thought: %s", exc)

    def back_to_model_selection(self) -> None:
        try:
            self._service.back_to_model_selection()
        except EdgeLLMError as exc:
            self._notify("Error", str(exc))

    def _start(self, kind: str, worker: QObject) -> None:
        if self.is_busy(kind):
            self._notify("Busy", str(SessionBusy(f"A {kind} task is already running.")))
            worker.deleteLater()
            return

        thread = QThread(self)
        thread.setObjectName(kind)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.finished.connect(thread.quit)
        worker.failed.connect(thread.quit)
        thread.finished.connect(self._on_thread_finished)
        thread.finished.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        self._jobs[kind] = (thread, worker)
        self.busy_changed.emit(kind, True)
        thread.start()

    def _completion_worker(self, text: str) -> CompletionWorker:
        worker = CompletionWorker(self._service, text)
        worker.snapshot.connect(self.response_progress.emit)
        worker.finished.connect(self.response_finished.emit)
        worker.failed.connect(lambda message: self._notify("Error During Inference", message))
        return worker

    @Slot()
    def _on_thread_finished(self) -> None:
        thread = self.sender()
        if thread is not None:
            self._finish(thread.objectName())

    def _finish(self, kind: str) -> None:
        self._jobs.pop(kind, None)
        self.busy_changed.emit(kind, False)

    def _forward_turn(self, index: int, turn: Turn) -> None:
        self.turn_updated.emit(index, turn)

    def _notify(self, title: str, message: str) -> None:
        logger.info("%s: %s", title, message)
        self.notification.emit(title, message)
