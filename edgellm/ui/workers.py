from __future__ import annotations

import logging

from PySide6.QtCore import QObject, Signal, Slot

from ..errors import EdgeLLMError
from ..service import EdgeLLMService

logger = logging.getLogger(__name__)


class RegistryWorker(QObject):
    finished = Signal(object)
    failed = Signal(str)

    def __init__(self, service: EdgeLLMService, display_name: str) -> None:
        super().__init__()
        self._service = service
        self._display_name = display_name

    @Slot()
    def run(self) -> None:
        try:
            files = self._service.list_files(self._display_name)
        except EdgeLLMError as exc:
            self.failed.emit(str(exc))
            return
        except Exception as exc:  # pragma: no cover - runtime safety
            logger.exception("Listing files for %s failed", self._display_name)
            self.failed.emit(f"Failed to fetch .gguf files: {exc}")
            return
        self.finished.emit(files)


class DownloadWorker(QObject):
    progress = Signal(float)
    finished = Signal(object)
    failed = Signal(str)

    def __init__(self, service: EdgeLLMService, display_name: str, filename: str) -> None:
        super().__init__()
        self._service = service
        self._display_name = display_name
        self._filename = filename

    @Slot()
    def run(self) -> None:
        try:
            # ダウンロード済みならそのままロードする
            model = self._service.download_and_load(
                self._display_name, self._filename, self.progress.emit
            )
        except EdgeLLMError as exc:
            self.failed.emit(str(exc))
            return
        except Exception as exc:  # pragma: no cover - runtime safety
            logger.exception("Download of %s failed", self._filename)
            self.failed.emit(f"Download failed: {exc}")
            return
        self.finished.emit(model)


class ModelLoadWorker(QObject):
    finished = Signal(object)
    failed = Signal(str)

    def __init__(self, service: EdgeLLMService, display_name: str, filename: str) -> None:
        super().__init__()
        self._service = service
        self._display_name = display_name
        self._filename = filename

    @Slot()
    def run(self) -> None:
        try:
            repo_id = self._service.registry.repo_id_for(self._display_name)
            path = self._service.fetcher.local_path(self._filename)
            model = self._service.load(self._display_name, repo_id, path)
        except EdgeLLMError as exc:
            self.failed.emit(str(exc))
            return
        except Exception as exc:  # pragma: no cover - runtime safety
            logger.exception("Loading %s failed", self._filename)
            self.failed.emit(f"Error loading model: {exc}")
            return
        self.finished.emit(model)


class CompletionWorker(QObject):
    snapshot = Signal(object)
    finished = Signal(object)
    failed = Signal(str)

    def __init__(self, service: EdgeLLMService, text: str) -> None:
        super().__init__()
        self._service = service
        self._text = text

    @Slot()
    def run(self) -> None:
        try:
            # GUI スレッドを塞がないよう別スレッドで推論を実行
            metrics = self._service.send_message(self._text, on_snapshot=self.snapshot.emit)
        except EdgeLLMError as exc:
            self.failed.emit(str(exc))
            return
        except Exception as exc:  # pragma: no cover - runtime safety
            logger.exception("Completion failed")
            self.failed.emit(f"Error during inference: {exc}")
            return
        self.finished.emit(metrics)
