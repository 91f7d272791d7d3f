from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .settings import (
    get_bool_setting,
    get_int_setting,
    get_list_setting,
    get_mapping_setting,
    get_str_setting,
    load_settings,
    resolve_path_setting,
    DEFAULT_SETTINGS,
    DEFAULT_STOP_WORDS,
)

HOME_ENV_VAR = "EDGELLM_HOME"
MODEL_DIR_ENV_VAR = "EDGELLM_MODEL_DIR"


def _default_root() -> Path:
    override = os.getenv(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    return Path.home() / ".edgellm"


@dataclass(frozen=True)
class AppPaths:
    root: Path
    model_dir: Path

    @classmethod
    def from_root(cls, root: Path, settings: dict[str, Any]) -> "AppPaths":
        env_override = os.getenv(MODEL_DIR_ENV_VAR)
        if env_override:
            model_dir = Path(env_override).expanduser().resolve()
        else:
            model_dir = resolve_path_setting(settings, "download.model_dir", root) or root / "models"
        return cls(root=root, model_dir=model_dir)


@dataclass(frozen=True)
class LoadOptions:
    """Fixed runtime parameters handed to the inference engine on load."""

    context_size: int = 2048
    use_mlock: bool = True
    gpu_layers: int = 1
    threads: int | None = None


@dataclass(frozen=True)
class GenerationOptions:
    max_response_tokens: int = 10000
    stop_words: tuple[str, ...] = tuple(DEFAULT_STOP_WORDS)
    thought_open: str = "<think>"
    thought_close: str = "</think>"
    cancellation_marker: str = "\n\n*Generation stopped by user*"


@dataclass
class AppConfig:
    root: Path = field(default_factory=_default_root)
    settings: dict[str, Any] = field(default_factory=dict)
    paths: AppPaths = field(init=False)

    def __post_init__(self) -> None:
        if not self.settings:
            self.settings = load_settings(self.root)
        self.paths = AppPaths.from_root(self.root, self.settings)

    @property
    def system_prompt(self) -> str:
        return get_str_setting(
            self.settings, "app.system_prompt", DEFAULT_SETTINGS["app"]["system_prompt"]
        )

    @property
    def registry_base_url(self) -> str:
        return get_str_setting(self.settings, "registry.base_url", "https://huggingface.co")

    @property
    def registry_timeout(self) -> int:
        return get_int_setting(self.settings, "registry.timeout_sec", 30) or 30

    @property
    def repositories(self) -> dict[str, str]:
        return get_mapping_setting(
            self.settings, "registry.repositories", DEFAULT_SETTINGS["registry"]["repositories"]
        )

    @property
    def download_chunk_size(self) -> int:
        size = get_int_setting(self.settings, "download.chunk_size", 1024 * 1024) or 0
        return size if size > 0 else 1024 * 1024

    @property
    def download_timeout(self) -> int:
        return get_int_setting(self.settings, "download.timeout_sec", 60) or 60

    def load_options(self) -> LoadOptions:
        return LoadOptions(
            context_size=get_int_setting(self.settings, "llm.context_size", 2048) or 2048,
            use_mlock=get_bool_setting(self.settings, "llm.use_mlock", True),
            gpu_layers=get_int_setting(self.settings, "llm.gpu_layers", 1) or 0,
            threads=get_int_setting(self.settings, "llm.threads", None),
        )

    def generation_options(self) -> GenerationOptions:
        return GenerationOptions(
            max_response_tokens=get_int_setting(self.settings, "llm.max_response_tokens", 10000)
            or 10000,
            stop_words=tuple(get_list_setting(self.settings, "llm.stop_words", DEFAULT_STOP_WORDS)),
            thought_open=get_str_setting(self.settings, "llm.thought_open", "<think>"),
            thought_close=get_str_setting(self.settings, "llm.thought_close", "</think>"),
            cancellation_marker=get_str_setting(
                self.settings,
                "app.cancellation_marker",
                DEFAULT_SETTINGS["app"]["cancellation_marker"],
            ),
        )
