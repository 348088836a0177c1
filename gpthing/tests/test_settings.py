import json

import pytest

from gpthing.agents.session import SessionConfig
from gpthing.config.settings import DEFAULT_PERSONA_NAME, load_config_file, load_settings, normalise_keys
from gpthing.domain.exceptions import ConfigurationError

_ENV_VARS = [
    "OPENAI_API_KEY",
    "GPTHING_CONFIG_FILE",
    "PERSONA_NAME",
    "MAX_TOKENS",
    "TEMPERATURE",
    "MODEL",
    "CONTEXT_CEILING",
    "DEBUG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_config():
    s = load_settings()
    assert s.openai_api_key is None
    assert s.persona_name == DEFAULT_PERSONA_NAME
    assert s.max_tokens == 512
    assert s.effective_ceiling == 2730
    assert s.safety_margin == 350


def test_legacy_config_json_keys(tmp_path):
    (tmp_path / "config.json").write_text(
        json.dumps({"ApiKey": "sk-file", "Name": "Ava", "MaxTokens": 300, "Temperature": 0.5, "Debug": None}),
        encoding="utf-8",
    )
    s = load_settings()
    assert s.openai_api_key == "sk-file"
    assert s.persona_name == "Ava"
    assert s.max_tokens == 300
    assert s.temperature == 0.5
    assert s.debug is False


def test_env_overrides_file_and_cli_overrides_env(tmp_path, monkeypatch):
    (tmp_path / "config.json").write_text(json.dumps({"ApiKey": "sk-file", "Name": "Ava"}), encoding="utf-8")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    s = load_settings(persona_name="Zoe", max_tokens=None)
    assert s.openai_api_key == "sk-env"
    assert s.persona_name == "Zoe"
    assert s.max_tokens == 512


def test_explicit_yaml_file(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("persona_name: Mia\ncontext_ceiling: 1000\nmodel: gpt-4\n", encoding="utf-8")
    s = load_settings(str(path))
    assert s.persona_name == "Mia"
    assert s.effective_ceiling == 1000
    assert s.model == "gpt-4"


def test_ceiling_follows_model(tmp_path):
    s = load_settings(model="gpt-4")
    assert s.effective_ceiling == 8192 * 2 // 3


def test_broken_config_file_is_ignored_with_warning(tmp_path):
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")
    with pytest.warns(UserWarning):
        assert load_config_file() == {}


def test_normalise_keys_unknown_key_warns():
    with pytest.warns(UserWarning):
        out = normalise_keys({"Prompt": "p", "Colour": "red"})
    assert out == {"prompt_template": "p"}


def test_settings_are_frozen():
    s = load_settings()
    with pytest.raises(Exception):
        s.persona_name = "x"


def test_session_config_from_settings():
    s = load_settings(persona_name="Ava", max_tokens=256, temperature=0.3)
    cfg = SessionConfig.from_settings(s)
    assert cfg.persona_name == "Ava"
    assert cfg.max_tokens == 256
    assert cfg.temperature == 0.3
    assert cfg.context_ceiling == 2730
    assert cfg.base_url == "https://api.openai.com/v1"


def test_out_of_range_cli_value_is_configuration_error():
    with pytest.raises(ConfigurationError) as exc:
        load_settings(temperature=5.0)
    assert exc.value.code == "INVALID_SETTINGS"
    assert "temperature" in exc.value.message


def test_out_of_range_file_value_is_configuration_error(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps({"MaxTokens": -1}), encoding="utf-8")
    with pytest.raises(ConfigurationError) as exc:
        load_settings()
    assert "max_tokens" in exc.value.message
