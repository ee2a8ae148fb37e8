from __future__ import annotations

import pytest
import yaml

from localfm.config import settings as settings_module
from localfm.config.settings import Settings, load_settings
from localfm.utils.exceptions import ConfigurationError


def test_from_yaml_reads_sections(sample_config_yaml):
    settings = Settings.from_yaml(str(sample_config_yaml))

    assert settings.runtime.api == "http://127.0.0.1:11434"
    assert settings.model_name == "llama3.2"
    assert settings.runtime.timeout_s == 30
    assert settings.generation.temperature == 0.5
    assert settings.generation.max_tokens == 256
    assert settings.generation.check_availability is False
    assert settings.log_level == "DEBUG"


def test_from_dict_accepts_lowercase_sections_and_base_url_alias():
    settings = Settings.from_dict(
        {"runtime": {"base_url": "http://localhost:1234/v1", "model": "qwen"}}
    )

    assert settings.runtime.api == "http://localhost:1234/v1"
    assert settings.runtime.model == "qwen"
    assert settings.generation.temperature is None


def test_defaults_without_config():
    settings = Settings()

    assert settings.runtime.api == "http://127.0.0.1:8080/v1"
    assert settings.runtime.supported_languages == ["English"]
    assert settings.generation.check_availability is True
    assert settings.log_to_file is False


def test_out_of_range_temperature_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        Settings.from_dict({"Generation": {"temperature": 1.5}})


def test_from_yaml_missing_file_raises(temp_dir):
    with pytest.raises(FileNotFoundError):
        Settings.from_yaml(str(temp_dir / "missing.yaml"))


def test_from_yaml_rejects_malformed_content(temp_dir):
    broken = temp_dir / "broken.yaml"
    broken.write_text("Runtime: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        Settings.from_yaml(str(broken))

    scalar = temp_dir / "scalar.yaml"
    scalar.write_text("just a string\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        Settings.from_yaml(str(scalar))


def test_to_yaml_round_trips(temp_dir, sample_config_yaml):
    settings = Settings.from_yaml(str(sample_config_yaml))
    out = temp_dir / "out.yaml"

    settings.to_yaml(str(out))

    data = yaml.safe_load(out.read_text(encoding="utf-8"))
    assert data["Runtime"]["model"] == "llama3.2"
    assert Settings.from_yaml(str(out)) == settings


def test_load_settings_uses_env_path_and_cache(sample_config_yaml, monkeypatch):
    monkeypatch.setenv("LOCALFM_CONFIG", str(sample_config_yaml))

    first = load_settings()
    second = load_settings()

    assert first.model_name == "llama3.2"
    assert second is first
    assert load_settings(use_cache=False) is not first


def test_load_settings_missing_file_falls_back_to_defaults(temp_dir, monkeypatch):
    monkeypatch.setattr(settings_module, "_settings_cache", None)
    monkeypatch.setattr(settings_module, "_settings_cache_key", None)

    settings = load_settings(str(temp_dir / "nope.yaml"))

    assert settings == Settings()
