from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from .config import GenerationOptions
from .conversation_store import ConversationStore
from .errors import EdgeLLMError, InferenceError, SessionBusy
from .llm_client import LlamaSession
from .models import CompletionMetrics, Turn, TurnSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[TurnSnapshot], None]

IDLE = "idle"
IN_THOUGHT = "in_thought"


@dataclass
class StreamState:
    """Per-completion parsing state; lives exactly as long as one completion call."""

    open_marker: str = "<think>"
    close_marker: str = "</think>"
    accumulated_text: str = ""
    thought_buffer: str = ""
    thought: str | None = None
    mode: str = IDLE
    token_count: int = 0
    start_time: float = field(default_factory=time.perf_counter)
    _open_at: int = field(default=-1, repr=False)
    _scan_from: int = field(default=0, repr=False)

    @property
    def in_thought_block(self) -> bool:
        return self.mode == IN_THOUGHT

    def feed(self, token: str) -> None:
        """Apply one token. Markers may straddle token boundaries."""

        self.token_count += 1
        self.accumulated_text += token
        # 1 トークンに開始・終了の両方が含まれる場合もあるので、進展がなくなるまで走査する
        while self._advance():
            pass
        if self.mode == IN_THOUGHT:
            self.thought_buffer = self.accumulated_text[self._open_at + len(self.open_marker):]

    def _advance(self) -> bool:
        text = self.accumulated_text
        if self.mode == IDLE:
            index = text.find(self.open_marker, self._scan_from)
            if index < 0:
                self._scan_from = max(self._scan_from, len(text) - len(self.open_marker) + 1)
                return False
            self.mode = IN_THOUGHT
            self._open_at = index
            self._scan_from = index + len(self.open_marker)
            self.thought_buffer = ""
            return True

        index = text.find(self.close_marker, self._scan_from)
        if index < 0:
            self._scan_from = max(self._scan_from, len(text) - len(self.close_marker) + 1)
            return False
        body = text[self._open_at + len(self.open_marker):index]
        self._finish_thought(body.strip())
        # 思考ブロック全体（開始〜終了マーカー）を本文から切り取る
        end = index + len(self.close_marker)
        self.accumulated_text = text[: self._open_at] + text[end:]
        self._scan_from = self._open_at
        self._open_at = -1
        self.thought_buffer = ""
        self.mode = IDLE
        return True

    def _finish_thought(self, body: str) -> None:
        # 空の思考ブロックでも閉じた時点で "" を記録する
        if not self.thought:
            self.thought = body
        elif body:
            self.thought = f"{self.thought}\n\n{body}"

    def visible_content(self, final: bool = False) -> str:
        """
        Return the user-facing text.

        While streaming, a trailing fragment that could still become an open
        marker is held back so the visible text only ever grows.
        """

        text = self.accumulated_text
        if self.mode == IN_THOUGHT:
            text = text[: self._open_at]
        elif not final:
            text = text[: len(text) - _marker_prefix_len(text, self.open_marker)]
        return _strip_thought_spans(text, self.open_marker, self.close_marker).strip()

    def snapshot(self, final: bool = False) -> TurnSnapshot:
        return TurnSnapshot(
            content=self.visible_content(final=final),
            thought=self.thought,
            in_thought=self.in_thought_block,
            token_count=self.token_count,
            partial_thought=self.thought_buffer if self.in_thought_block else None,
        )


class StreamingResponseProcessor:
    """
    Drive one completion call at a time and mirror it into the conversation.

    Every token updates the in-progress assistant turn in arrival order.
    ``stop`` ends the stream as a normal outcome; the turn keeps what was
    produced so far plus a single cancellation marker.
    """

    def __init__(self, store: ConversationStore, options: GenerationOptions | None = None) -> None:
        self._store = store
        self._options = options or GenerationOptions()
        self._lock = threading.Lock()
        self._session: LlamaSession | None = None
        self._state: StreamState | None = None
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self._state is not None

    def run_completion(
        self,
        session: LlamaSession,
        messages: Iterable[dict] | None = None,
        stop_sequences: Sequence[str] | None = None,
        on_snapshot: SnapshotCallback | None = None,
    ) -> CompletionMetrics:
        with self._lock:
            if self._state is not None:
                raise SessionBusy("A response is already being generated.")
            state = StreamState(
                open_marker=self._options.thought_open,
                close_marker=self._options.thought_close,
            )
            self._state = state
            self._session = session
            self._stop_requested = False

        try:
            chat = list(messages) if messages is not None else self._store.messages()
            stop = list(stop_sequences) if stop_sequences is not None else list(self._options.stop_words)
            index = self._store.append(Turn(role="assistant", content="", thought=None))
            self._store.begin_stream()

            def handle_token(token: str) -> None:
                if self._stop_requested:
                    # 停止要求後に届いたトークンは反映しない
                    session.stop()
                    return
                state.feed(token)
                snapshot = state.snapshot()
                self._store.amend_last(content=snapshot.content, thought=snapshot.thought)
                if on_snapshot is not None:
                    on_snapshot(snapshot)

            try:
                result = session.completion(
                    chat, stop, self._options.max_response_tokens, handle_token
                )
            except EdgeLLMError:
                raise
            except Exception as exc:
                raise InferenceError(str(exc) or exc.__class__.__name__) from exc

            elapsed = time.perf_counter() - state.start_time
            if result.interrupted:
                final = state.snapshot()
                self._store.amend_last(content=final.content + self._options.cancellation_marker)
                logger.info("Generation stopped by user after %d tokens", state.token_count)
                return CompletionMetrics(
                    tokens_per_second=None,
                    token_count=state.token_count,
                    elapsed_sec=elapsed,
                    cancelled=True,
                )

            final = state.snapshot(final=True)
            self._store.amend_last(content=final.content, thought=final.thought)
            if state.in_thought_block:
                logger.info("Thought block was not closed before the end of the stream")

            tokens_per_second = result.predicted_per_second
            if tokens_per_second is None and elapsed > 0 and state.token_count:
                tokens_per_second = state.token_count / elapsed
            if tokens_per_second is not None:
                self._store.record_throughput(index, tokens_per_second)
            return CompletionMetrics(
                tokens_per_second=round(tokens_per_second, 2) if tokens_per_second is not None else None,
                token_count=state.token_count,
                elapsed_sec=elapsed,
            )
        finally:
            self._store.end_stream()
            with self._lock:
                self._state = None
                self._session = None

    def stop(self) -> None:
        """Request cancellation of the running completion; repeated calls are no-ops."""

        with self._lock:
            if self._state is None or self._stop_requested:
                return
            self._stop_requested = True
            session = self._session
        if session is not None:
            session.stop()


def _marker_prefix_len(text: str, marker: str) -> int:
    for size in range(min(len(marker) - 1, len(text)), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


def _strip_thought_spans(text: str, open_marker: str, close_marker: str) -> str:
    while True:
        start = text.find(open_marker)
        if start < 0:
            return text
        end = text.find(close_marker, start + len(open_marker))
        if end < 0:
            return text
        text = text[:start] + text[end + len(close_marker):]
