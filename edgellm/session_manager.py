from __future__ import annotations

import logging
import threading
from pathlib import Path

from .config import LoadOptions
from .conversation_store import ConversationStore
from .errors import EdgeLLMError, ModelFileMissing, ModelLoadError, SessionBusy
from .llm_client import LlamaEngine, LlamaSession

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Owner of the single live inference session.

    Loading a model releases the previous session and resets the
    conversation before the new session is created, so two sessions never
    coexist. A load requested while another is pending is rejected.
    """

    def __init__(
        self,
        engine: LlamaEngine,
        store: ConversationStore,
        options: LoadOptions | None = None,
    ) -> None:
        self._engine = engine
        self._store = store
        self._options = options or LoadOptions()
        self._current: LlamaSession | None = None
        self._load_lock = threading.Lock()

    @property
    def current(self) -> LlamaSession | None:
        return self._current

    @property
    def is_loaded(self) -> bool:
        return self._current is not None

    @property
    def loading(self) -> bool:
        return self._load_lock.locked()

    def load_model(self, local_path: Path) -> LlamaSession:
        if not self._load_lock.acquire(blocking=False):
            raise SessionBusy("A model is already being loaded.")
        try:
            path = Path(local_path)
            if not path.is_file():
                raise ModelFileMissing(path)

            if self._current is not None:
                self._release_current()
                self._store.reset()

            logger.info("Loading model %s", path)
            try:
                session = self._engine.load(path, self._options)
            except EdgeLLMError:
                raise
            except Exception as exc:
                raise ModelLoadError(str(exc) or f"Failed to load {path.name}") from exc
            self._current = session
            return session
        finally:
            self._load_lock.release()

    def unload(self) -> None:
        """Release the live session and return to the initial conversation."""

        if self._load_lock.locked():
            raise SessionBusy("A model is being loaded.")
        self._release_current()
        self._store.reset()

    def _release_current(self) -> None:
        session, self._current = self._current, None
        if session is None:
            return
        try:
            session.release()
        except Exception as exc:  # pragma: no cover - native cleanup
            logger.warning("Failed to release model session: %s", exc)
