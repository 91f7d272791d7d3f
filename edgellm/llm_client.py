from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .config import LoadOptions
from .errors import InferenceError, ModelLoadError

try:
    import llama_cpp  # type: ignore
except ImportError:  # pragma: no cover - optional runtime dependency
    llama_cpp = None

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


@dataclass(frozen=True)
class CompletionResult:
    text: str
    tokens_predicted: int
    predicted_ms: float
    interrupted: bool = False

    @property
    def predicted_per_second(self) -> float | None:
        if self.tokens_predicted <= 0 or self.predicted_ms <= 0:
            return None
        return self.tokens_predicted / (self.predicted_ms / 1000.0)


class LlamaSession:
    """
    A loaded GGUF model.

    ``completion`` blocks the calling thread and reports every streamed piece
    of text through ``on_token``. ``stop`` may be called from another thread;
    the running completion then returns early with ``interrupted=True``.
    """

    def __init__(self, llama: object, model_path: Path) -> None:
        self._llama = llama
        self._model_path = model_path
        self._stop_event = threading.Event()
        self._released = False

    @property
    def model_path(self) -> Path:
        return self._model_path

    @property
    def active(self) -> bool:
        return not self._released

    def completion(
        self,
        messages: Iterable[dict],
        stop: Sequence[str],
        n_predict: int,
        on_token: TokenCallback,
    ) -> CompletionResult:
        if self._released:
            raise InferenceError("The model session has been released.")
        self._stop_event.clear()

        pieces: list[str] = []
        tokens = 0
        started: float | None = None
        interrupted = False
        try:
            stream = self._llama.create_chat_completion(
                messages=list(messages),
                max_tokens=n_predict,
                stop=list(stop),
                stream=True,
            )
            try:
                for chunk in stream:
                    if self._stop_event.is_set():
                        interrupted = True
                        break
                    text = _delta_text(chunk)
                    if not text:
                        continue
                    if started is None:
                        started = time.perf_counter()
                    tokens += 1
                    pieces.append(text)
                    on_token(text)
            finally:
                close = getattr(stream, "close", None)
                if callable(close):
                    close()
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(str(exc) or exc.__class__.__name__) from exc

        elapsed_ms = (time.perf_counter() - started) * 1000.0 if started is not None else 0.0
        return CompletionResult(
            text="".join(pieces),
            tokens_predicted=tokens,
            predicted_ms=elapsed_ms,
            interrupted=interrupted,
        )

    def stop(self) -> None:
        self._stop_event.set()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._stop_event.set()
        close = getattr(self._llama, "close", None)
        if callable(close):
            try:
                close()
            except Exception as exc:  # pragma: no cover - native cleanup
                logger.warning("Failed to close model %s: %s", self._model_path, exc)
        self._llama = None
        logger.info("Released model session for %s", self._model_path)


class LlamaEngine:
    """Thin loader around llama-cpp-python."""

    def availability_error(self) -> str | None:
        if llama_cpp is None:
            return "llama-cpp-python is not available. Run `pip install llama-cpp-python`."
        return None

    def load(self, path: Path, options: LoadOptions) -> LlamaSession:
        error = self.availability_error()
        if error:
            raise ModelLoadError(error)
        try:
            llama = llama_cpp.Llama(
                model_path=str(path),
                n_ctx=options.context_size,
                n_gpu_layers=options.gpu_layers,
                use_mlock=options.use_mlock,
                n_threads=options.threads,
                verbose=False,
            )
        except Exception as exc:
            raise ModelLoadError(str(exc) or f"Failed to load {path.name}") from exc
        return LlamaSession(llama, Path(path))


def _delta_text(chunk: object) -> str:
    if not isinstance(chunk, dict):
        return ""
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""
