"""Shared fakes for the inference engine and helpers for HTTP mocking."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from edgellm.config import AppConfig, LoadOptions
from edgellm.errors import ModelLoadError
from edgellm.llm_client import CompletionResult


class FakeSession:
    def __init__(
        self,
        path: Path,
        tokens: list[str] | None = None,
        predicted_per_second: float = 12.5,
        error: Exception | None = None,
    ) -> None:
        self.model_path = Path(path)
        self.tokens = list(tokens or [])
        self.predicted_per_second = predicted_per_second
        self.error = error
        self.active = True
        self.stop_calls = 0
        self.release_calls = 0
        self.received_messages: list[dict] = []
        self.received_stop: list[str] = []
        self._stopped = False

    def completion(self, messages, stop, n_predict, on_token):
        self.received_messages = list(messages)
        self.received_stop = list(stop)
        self._stopped = False
        produced = 0
        for token in self.tokens:
            if self._stopped:
                break
            on_token(token)
            produced += 1
        if self.error is not None:
            raise self.error
        predicted_ms = produced / self.predicted_per_second * 1000.0 if produced else 0.0
        return CompletionResult(
            text="".join(self.tokens[:produced]),
            tokens_predicted=produced,
            predicted_ms=predicted_ms,
            interrupted=self._stopped,
        )

    def stop(self) -> None:
        self.stop_calls += 1
        self._stopped = True

    def release(self) -> None:
        self.release_calls += 1
        self.active = False


class FakeEngine:
    def __init__(self, tokens: list[str] | None = None, fail_with: str | None = None) -> None:
        self.tokens = tokens or []
        self.fail_with = fail_with
        self.sessions: list[FakeSession] = []
        self.load_calls: list[tuple[Path, LoadOptions]] = []

    def load(self, path: Path, options: LoadOptions) -> FakeSession:
        self.load_calls.append((Path(path), options))
        # 新しいセッションを作る時点で前のセッションが解放済みであることを確認する
        assert all(not session.active for session in self.sessions), "previous session still live"
        if self.fail_with:
            raise ModelLoadError(self.fail_with)
        session = FakeSession(path, tokens=self.tokens)
        self.sessions.append(session)
        return session

    @property
    def live_sessions(self) -> list[FakeSession]:
        return [session for session in self.sessions if session.active]


class FakeResponse(io.BytesIO):
    def __init__(self, body: bytes, headers: dict | None = None) -> None:
        super().__init__(body)
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}


@pytest.fixture
def config(tmp_path, monkeypatch) -> AppConfig:
    monkeypatch.delenv("EDGELLM_HOME", raising=False)
    monkeypatch.delenv("EDGELLM_MODEL_DIR", raising=False)
    return AppConfig(root=tmp_path)


@pytest.fixture
def model_file(config) -> Path:
    config.paths.model_dir.mkdir(parents=True, exist_ok=True)
    path = config.paths.model_dir / "a.Q4_K_S.gguf"
    path.write_bytes(b"GGUF")
    return path
