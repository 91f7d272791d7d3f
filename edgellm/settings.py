from __future__ import annotations

import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "edgellm_settings.json"

DEFAULT_STOP_WORDS: list[str] = [
    "</s>",
    "<|end|>",
    "user:",
    "assistant:",
    "<|im_end|>",
    "<|eot_id|>",
    "<|end▁of▁sentence|>",
    "<|end_of_text|>",
    "<｜end▁of▁sentence｜>",
]

DEFAULT_SETTINGS: dict[str, Any] = {
    "app": {
        "system_prompt": "This is a conversation between user and assistant, a friendly chatbot.",
        "cancellation_marker": "\n\n*Generation stopped by user*",
    },
    "registry": {
        "base_url": "https://huggingface.co",
        "timeout_sec": 30,
        "repositories": {
            "Llama-3.2-1B-Instruct": "bartowski/Llama-3.2-1B-Instruct-GGUF",
            "Qwen2-0.5B-Instruct": "Qwen/Qwen2-0.5B-Instruct-GGUF",
            "DeepSeek-R1-Distill-Qwen-1.5B": "bartowski/DeepSeek-R1-Distill-Qwen-1.5B-GGUF",
            "SmolLM2-1.7B-Instruct": "bartowski/SmolLM2-1.7B-Instruct-GGUF",
        },
    },
    "download": {
        "model_dir": None,
        "chunk_size": 1024 * 1024,
        "timeout_sec": 60,
    },
    "llm": {
        "context_size": 2048,
        "use_mlock": True,
        "gpu_layers": 1,
        "threads": None,
        "max_response_tokens": 10000,
        "stop_words": DEFAULT_STOP_WORDS,
        "thought_open": "<think>",
        "thought_close": "</think>",
    },
}


def settings_path(root: Path) -> Path:
    return root / SETTINGS_FILENAME


def load_settings(root: Path) -> dict[str, Any]:
    path = settings_path(root)
    if not path.exists():
        return deepcopy(DEFAULT_SETTINGS)

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return deepcopy(DEFAULT_SETTINGS)

    if not isinstance(payload, Mapping):
        return deepcopy(DEFAULT_SETTINGS)
    return _deep_merge(DEFAULT_SETTINGS, payload)


def get_setting(settings: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    current: Any = settings
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def get_bool_setting(settings: Mapping[str, Any], dotted_key: str, default: bool) -> bool:
    value = get_setting(settings, dotted_key, default)
    return value if isinstance(value, bool) else default


def get_int_setting(settings: Mapping[str, Any], dotted_key: str, default: int | None) -> int | None:
    value = get_setting(settings, dotted_key, default)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_str_setting(settings: Mapping[str, Any], dotted_key: str, default: str) -> str:
    value = get_setting(settings, dotted_key, default)
    if not isinstance(value, str) or not value.strip():
        return default
    return value


def get_list_setting(settings: Mapping[str, Any], dotted_key: str, default: list[str]) -> list[str]:
    value = get_setting(settings, dotted_key, default)
    if not isinstance(value, list):
        return list(default)
    return [item for item in value if isinstance(item, str) and item]


def get_mapping_setting(
    settings: Mapping[str, Any], dotted_key: str, default: Mapping[str, str]
) -> dict[str, str]:
    value = get_setting(settings, dotted_key, default)
    if not isinstance(value, Mapping):
        return dict(default)
    # 文字列同士の組だけを採用する
    return {
        key: item
        for key, item in value.items()
        if isinstance(key, str) and isinstance(item, str) and item.strip()
    }


def resolve_path_setting(settings: Mapping[str, Any], dotted_key: str, root: Path) -> Path | None:
    value = get_setting(settings, dotted_key)
    if not isinstance(value, str) or not value.strip():
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (root / path).resolve()
    else:
        path = path.resolve()
    return path


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            # リポジトリ表は丸ごと差し替える（名前の対応は設定側が正）
            if key == "repositories":
                merged[key] = dict(value)
            else:
                merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
