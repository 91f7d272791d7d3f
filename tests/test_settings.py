from __future__ import annotations

import json

import pytest

from edgellm.config import AppConfig, LoadOptions
from edgellm.settings import (
    DEFAULT_SETTINGS,
    DEFAULT_STOP_WORDS,
    get_list_setting,
    get_mapping_setting,
    get_setting,
    load_settings,
    settings_path,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv("EDGELLM_HOME", raising=False)
    monkeypatch.delenv("EDGELLM_MODEL_DIR", raising=False)


def _write(root, payload) -> None:
    settings_path(root).write_text(json.dumps(payload), encoding="utf-8")


def test_defaults_when_file_missing(tmp_path):
    assert load_settings(tmp_path) == DEFAULT_SETTINGS


def test_defaults_when_file_is_broken(tmp_path):
    settings_path(tmp_path).write_text("{not json", encoding="utf-8")
    assert load_settings(tmp_path) == DEFAULT_SETTINGS


def test_nested_values_are_merged(tmp_path):
    _write(tmp_path, {"llm": {"gpu_layers": 0}})
    settings = load_settings(tmp_path)
    assert get_setting(settings, "llm.gpu_layers") == 0
    assert get_setting(settings, "llm.context_size") == 2048


def test_repository_table_is_replaced_not_merged(tmp_path):
    _write(
        tmp_path,
        {"registry": {"repositories": {"Llama-3.2-1B-Instruct": "medmekk/Llama-3.2-1B-Instruct.GGUF"}}},
    )
    config = AppConfig(root=tmp_path)
    assert config.repositories == {"Llama-3.2-1B-Instruct": "medmekk/Llama-3.2-1B-Instruct.GGUF"}


def test_list_and_mapping_getters_filter_bad_items():
    settings = {"a": {"list": ["x", 3, "", "y"], "map": {"k": "v", "n": 1, "e": " "}}}
    assert get_list_setting(settings, "a.list", []) == ["x", "y"]
    assert get_mapping_setting(settings, "a.map", {}) == {"k": "v"}
    assert get_list_setting(settings, "a.missing", ["d"]) == ["d"]


def test_config_defaults(tmp_path):
    config = AppConfig(root=tmp_path)

    assert config.paths.model_dir == tmp_path / "models"
    assert config.load_options() == LoadOptions(context_size=2048, use_mlock=True, gpu_layers=1)
    options = config.generation_options()
    assert options.stop_words == tuple(DEFAULT_STOP_WORDS)
    assert options.max_response_tokens == 10000
    assert options.thought_open == "<think>"
    assert options.cancellation_marker == "\n\n*Generation stopped by user*"
    assert config.registry_base_url == "https://huggingface.co"
    assert "DeepSeek-R1-Distill-Qwen-1.5B" in config.repositories


def test_model_dir_from_settings_and_env(tmp_path, monkeypatch):
    _write(tmp_path, {"download": {"model_dir": "weights"}})
    assert AppConfig(root=tmp_path).paths.model_dir == (tmp_path / "weights").resolve()

    monkeypatch.setenv("EDGELLM_MODEL_DIR", str(tmp_path / "elsewhere"))
    assert AppConfig(root=tmp_path).paths.model_dir == (tmp_path / "elsewhere").resolve()


def test_home_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("EDGELLM_HOME", str(tmp_path))
    assert AppConfig().root == tmp_path.resolve()
