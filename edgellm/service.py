from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import AppConfig
from .conversation_store import ConversationStore
from .errors import EmptyMessageError, ModelNotLoadedError, SessionBusy
from .file_fetcher import FileFetcher, ProgressCallback
from .llm_client import LlamaEngine
from .models import CompletionMetrics, ModelFile, Turn
from .registry_client import RegistryClient
from .session_manager import SessionManager
from .streaming import SnapshotCallback, StreamingResponseProcessor

logger = logging.getLogger(__name__)


class EdgeLLMService:
    """Entry point used by the UI: model selection, download, load and chat."""

    def __init__(
        self,
        config: AppConfig,
        engine: LlamaEngine | None = None,
        registry: RegistryClient | None = None,
        fetcher: FileFetcher | None = None,
    ) -> None:
        self._config = config
        self.store = ConversationStore(config.system_prompt)
        self.registry = registry or RegistryClient(
            config.repositories,
            base_url=config.registry_base_url,
            timeout=config.registry_timeout,
        )
        self.fetcher = fetcher or FileFetcher(
            config.paths.model_dir,
            chunk_size=config.download_chunk_size,
            timeout=config.download_timeout,
        )
        self.sessions = SessionManager(engine or LlamaEngine(), self.store, config.load_options())
        self.processor = StreamingResponseProcessor(self.store, config.generation_options())
        self._loaded: ModelFile | None = None
        # 読み込み・解放・生成は同じセッション枠を取り合うので、同時には一つだけ
        self._slot = threading.Lock()

    @property
    def loaded_model(self) -> ModelFile | None:
        return self._loaded if self.sessions.is_loaded else None

    def model_names(self) -> list[str]:
        return self.registry.model_names()

    def list_files(self, display_name: str) -> list[ModelFile]:
        repo_id = self.registry.repo_id_for(display_name)
        filenames = self.registry.list_gguf_files(display_name)
        return [self._model_file(display_name, repo_id, filename) for filename in filenames]

    def downloaded_files(self) -> list[str]:
        return self.fetcher.downloaded_files()

    def download_and_load(
        self,
        display_name: str,
        filename: str,
        on_progress: ProgressCallback | None = None,
    ) -> ModelFile:
        repo_id = self.registry.repo_id_for(display_name)
        local_name = local_filename(filename)
        if self.fetcher.exists(local_name):
            logger.info("File %s already exists, loading it directly", local_name)
            path = self.fetcher.local_path(local_name)
        else:
            url = self.registry.download_url(display_name, filename)
            path = self.fetcher.fetch(local_name, url, on_progress)
        return self.load(display_name, repo_id, path)

    def load(self, display_name: str, repo_id: str, path: Path) -> ModelFile:
        with self._exclusive("Wait for the current task to finish before loading another model."):
            self._loaded = None
            self.sessions.load_model(path)
            self._loaded = ModelFile(
                display_name=display_name,
                repo_id=repo_id,
                filename=Path(path).name,
                local_path=Path(path),
                downloaded=True,
            )
            return self._loaded

    def send_message(self, text: str, on_snapshot: SnapshotCallback | None = None) -> CompletionMetrics:
        with self._exclusive("A model is loading or a response is already being generated."):
            session = self.sessions.current
            if session is None:
                raise ModelNotLoadedError()
            if not text or not text.strip():
                raise EmptyMessageError()
            self.store.append(Turn(role="user", content=text))
            return self.processor.run_completion(session, on_snapshot=on_snapshot)

    def stop_generation(self) -> None:
        self.processor.stop()

    def toggle_thought(self, index: int) -> bool:
        return self.store.toggle_thought_visibility(index)

    def back_to_model_selection(self) -> None:
        if not self._slot.acquire(blocking=False):
            # 生成中のセッションは解放できないので停止だけ要求する
            self.processor.stop()
            raise SessionBusy("Wait for the current task to stop before switching models.")
        try:
            self.sessions.unload()
            self._loaded = None
        finally:
            self._slot.release()

    @contextmanager
    def _exclusive(self, busy_message: str) -> Iterator[None]:
        if not self._slot.acquire(blocking=False):
            raise SessionBusy(busy_message)
        try:
            yield
        finally:
            self._slot.release()

    def _model_file(self, display_name: str, repo_id: str, filename: str) -> ModelFile:
        local_name = local_filename(filename)
        return ModelFile(
            display_name=display_name,
            repo_id=repo_id,
            filename=filename,
            local_path=self.fetcher.local_path(local_name),
            downloaded=self.fetcher.exists(local_name),
        )


def local_filename(remote_filename: str) -> str:
    # 保存先はフラットなディレクトリなので、リポジトリ内のサブディレクトリは落とす
    return remote_filename.replace("\\", "/").rsplit("/", 1)[-1]
