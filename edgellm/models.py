from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Literal


ChatRole = Literal["system", "user", "assistant"]


@dataclass
class Turn:
    role: ChatRole
    content: str
    thought: str | None = None
    thought_visible: bool = False

    def copy(self) -> "Turn":
        return replace(self)

    def to_message(self) -> dict:
        # 推論エンジンへ渡すのは役割と本文のみ（思考ブロックは含めない）
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ModelFile:
    display_name: str
    repo_id: str
    filename: str
    local_path: Path
    downloaded: bool = False


@dataclass(frozen=True)
class CompletionMetrics:
    """Outcome of one completion call."""

    tokens_per_second: float | None
    token_count: int
    elapsed_sec: float
    cancelled: bool = False


@dataclass(frozen=True)
class TurnSnapshot:
    """Partial view of the in-progress assistant turn, pushed once per token."""

    content: str
    thought: str | None
    in_thought: bool
    token_count: int
    partial_thought: str | None = None
