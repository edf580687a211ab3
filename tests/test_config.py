"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from multiscribe.config import (
    AUTO_LANGUAGE,
    AppConfig,
    SessionConfig,
    get_default_config_path,
    load_config,
)


def test_defaults():
    """Test the default session settings."""
    config = AppConfig()
    assert config.session.model == "tiny"
    assert config.session.multilingual is False
    assert config.session.quantized is False
    assert config.session.subtask == "transcribe"
    assert config.session.language == "english"
    assert config.worker.start_method == "spawn"
    assert config.engine.log_level == "INFO"


def test_setters_update_fields():
    """Test every session field has a setter."""
    config = SessionConfig()

    config.set_model("base")
    config.set_multilingual(True)
    config.set_quantized(True)
    config.set_subtask("translate")
    config.set_language(AUTO_LANGUAGE)

    assert config == SessionConfig(
        model="base",
        multilingual=True,
        quantized=True,
        subtask="translate",
        language=AUTO_LANGUAGE,
    )


def test_empty_model_rejected():
    """Test an empty model identifier is invalid, also on assignment."""
    with pytest.raises(ValidationError):
        SessionConfig(model="")

    config = SessionConfig()
    with pytest.raises(ValueError):
        config.set_model("")
    assert config.model == "tiny"


def test_invalid_subtask_rejected():
    """Test only transcribe and translate are accepted."""
    with pytest.raises(ValueError):
        SessionConfig().set_subtask("summarize")


def test_disabling_multilingual_keeps_language():
    """Test language and subtask survive turning multilingual off."""
    config = SessionConfig(multilingual=True, subtask="translate", language="fr")

    config.set_multilingual(False)

    assert config.subtask == "translate"
    assert config.language == "fr"


def test_snapshot_is_independent():
    """Test a snapshot does not follow later changes."""
    config = SessionConfig()
    snapshot = config.snapshot()

    config.set_model("large-v3")

    assert snapshot.model == "tiny"


def test_log_level_normalized():
    """Test log levels are upper-cased and validated."""
    assert AppConfig(engine={"log_level": "debug"}).engine.log_level == "DEBUG"
    with pytest.raises(ValidationError):
        AppConfig(engine={"log_level": "chatty"})


def test_load_missing_file_returns_defaults(tmp_path):
    """Test a missing config file yields defaults."""
    assert load_config(tmp_path / "absent.toml") == AppConfig()


def test_load_config_file(tmp_path):
    """Test values are read from TOML."""
    path = tmp_path / "config.toml"
    path.write_text(
        """
[session]
model = "small"
multilingual = true
language = "auto"

[worker]
device = "cpu"
beam_size = 1

[download]
timeout_s = 5
"""
    )

    config = load_config(path)

    assert config.session.model == "small"
    assert config.session.multilingual is True
    assert config.session.language == "auto"
    assert config.worker.device == "cpu"
    assert config.worker.beam_size == 1
    assert config.download.timeout_s == 5.0


def test_load_invalid_toml(tmp_path):
    """Test malformed TOML raises ValueError."""
    path = tmp_path / "config.toml"
    path.write_text("[session\nmodel = ")

    with pytest.raises(ValueError, match="Error decoding TOML"):
        load_config(path)


def test_load_invalid_values(tmp_path):
    """Test invalid values raise ValueError."""
    path = tmp_path / "config.toml"
    path.write_text('[session]\nsubtask = "dance"\n')

    with pytest.raises(ValueError, match="validation failed"):
        load_config(path)


def test_default_config_path_uses_xdg(monkeypatch, tmp_path):
    """Test XDG_CONFIG_HOME is honoured."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert get_default_config_path() == tmp_path / "multiscribe" / "config.toml"


def test_default_config_path_fallback(monkeypatch):
    """Test the home directory fallback."""
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    assert get_default_config_path() == Path.home() / ".config" / "multiscribe" / "config.toml"


def test_computed_log_file(monkeypatch, tmp_path):
    """Test the default log file lives under XDG_STATE_HOME."""
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))
    assert AppConfig().engine.computed_log_file == tmp_path / "multiscribe" / "multiscribe.log"
