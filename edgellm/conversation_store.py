from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from .models import Turn

logger = logging.getLogger(__name__)

TurnListener = Callable[[int, Turn], None]


class ConversationStore:
    """
    Ordered log of chat turns.

    Turns are only ever appended; the sole in-place mutation is ``amend_last``
    which the streaming processor uses to grow the in-progress assistant turn.
    The first turn is always the system prompt.
    """

    def __init__(self, system_prompt: str) -> None:
        self._initial = [Turn(role="system", content=system_prompt)]
        self._turns: list[Turn] = [turn.copy() for turn in self._initial]
        self._throughput: dict[int, float] = {}
        self._streaming = False
        self._listeners: list[TurnListener] = []
        self._lock = threading.RLock()

    # Queries ------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)

    @property
    def turns(self) -> list[Turn]:
        with self._lock:
            return [turn.copy() for turn in self._turns]

    @property
    def last(self) -> Turn | None:
        with self._lock:
            return self._turns[-1].copy() if self._turns else None

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def throughput_samples(self) -> list[float]:
        with self._lock:
            return [self._throughput[index] for index in sorted(self._throughput)]

    def messages(self) -> list[dict]:
        with self._lock:
            return [turn.to_message() for turn in self._turns]

    def throughput_for(self, index: int) -> float | None:
        """Return the tokens/s sample recorded for the assistant turn at ``index``."""

        with self._lock:
            return self._throughput.get(index)

    # Mutations ----------------------------------------------------------

    def subscribe(self, listener: TurnListener) -> None:
        self._listeners.append(listener)

    def append(self, turn: Turn) -> int:
        with self._lock:
            self._turns.append(turn.copy())
            index = len(self._turns) - 1
            snapshot = self._turns[index].copy()
        self._notify(index, snapshot)
        return index

    def amend_last(
        self,
        *,
        content: str | None = None,
        thought: str | None = None,
    ) -> bool:
        """
        Update the last assistant turn in place.

        Returns False without touching anything when the store is empty or the
        last turn does not belong to the assistant.
        """

        with self._lock:
            if not self._turns or self._turns[-1].role != "assistant":
                logger.debug("amend_last ignored: no assistant turn at the tail")
                return False
            target = self._turns[-1]
            if content is not None:
                target.content = content
            if thought is not None:
                target.thought = thought
            index = len(self._turns) - 1
            snapshot = target.copy()
        self._notify(index, snapshot)
        return True

    def toggle_thought_visibility(self, index: int) -> bool:
        with self._lock:
            if not 0 <= index < len(self._turns):
                raise IndexError(f"No turn at index {index}")
            target = self._turns[index]
            target.thought_visible = not target.thought_visible
            snapshot = target.copy()
        self._notify(index, snapshot)
        return snapshot.thought_visible

    def record_throughput(self, index: int, tokens_per_second: float) -> None:
        with self._lock:
            self._throughput[index] = round(tokens_per_second, 2)

    def begin_stream(self) -> None:
        self._streaming = True

    def end_stream(self) -> None:
        self._streaming = False

    def reset(self, initial: Iterable[Turn] | None = None) -> None:
        with self._lock:
            if initial is not None:
                turns = [turn.copy() for turn in initial]
                if not turns or turns[0].role != "system":
                    raise ValueError("A conversation must start with the system prompt.")
                self._initial = turns
            self._turns = [turn.copy() for turn in self._initial]
            self._throughput = {}
            self._streaming = False

    def _notify(self, index: int, turn: Turn) -> None:
        for listener in list(self._listeners):
            listener(index, turn)
