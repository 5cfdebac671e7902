"""Tests for the settings.conf loader."""

import pytest

from config import SettingsError, load_settings_conf

def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("TOKEN_CURRENCY_RATE", raising=False)
    settings = load_settings_conf(str(tmp_path))

    assert settings['token_currency_rate'] == 100
    assert settings['max_message_length'] == 2000
    assert settings['fanout_gap_timeout'] == 5.0
    assert settings['db_ssl'] is False
    assert settings['log_level'] == 'INFO'

def test_file_values_are_typed(tmp_path, monkeypatch):
    monkeypatch.delenv("TOKEN_CURRENCY_RATE", raising=False)
    (tmp_path / "settings.conf").write_text(
        "[DEFAULT]\n"
        "token_currency_rate = 250\n"
        "db_ssl = yes\n"
        "log_level = debug\n"
    )
    settings = load_settings_conf(str(tmp_path))

    assert settings['token_currency_rate'] == 250
    assert settings['db_ssl'] is True
    assert settings['log_level'] == 'DEBUG'

def test_environment_overrides_file(tmp_path, monkeypatch):
    (tmp_path / "settings.conf").write_text("[DEFAULT]\nmax_message_length = 100\n")
    monkeypatch.setenv("MAX_MESSAGE_LENGTH", "300")

    assert load_settings_conf(str(tmp_path))['max_message_length'] == 300

def test_invalid_values_are_aggregated(tmp_path):
    (tmp_path / "settings.conf").write_text(
        "[DEFAULT]\n"
        "token_currency_rate = lots\n"
        "db_min_pool_size = 0\n"
        "log_level = LOUD\n"
    )
    with pytest.raises(SettingsError) as excinfo:
        load_settings_conf(str(tmp_path))

    message = str(excinfo.value)
    assert "token_currency_rate" in message
    assert "db_min_pool_size" in message
    assert "log_level" in message

def test_purchase_bounds_must_be_ordered(tmp_path):
    (tmp_path / "settings.conf").write_text(
        "[DEFAULT]\nmin_token_purchase = 600\nmax_token_purchase = 500\n"
    )
    with pytest.raises(SettingsError, match="min_token_purchase"):
        load_settings_conf(str(tmp_path))

def test_sections_without_default_are_rejected(tmp_path):
    (tmp_path / "settings.conf").write_text("[database]\ndb_url = postgresql://x\n")
    with pytest.raises(SettingsError, match=r"\[DEFAULT\]"):
        load_settings_conf(str(tmp_path))

def test_missing_policy_file_is_reported(tmp_path):
    (tmp_path / "settings.conf").write_text(
        f"[DEFAULT]\nmoderation_policy_path = {tmp_path / 'nope.conf'}\n"
    )
    with pytest.raises(SettingsError, match="moderation_policy_path"):
        load_settings_conf(str(tmp_path))
