"""Tests for configuration loading."""

import base64
import json

from corecatalog.core.config import CONFIG_FILE_NAME, DATA_ROOT_ENV_VAR, get_data_dir, load_config


def test_defaults_are_written(tmp_path):
    config = load_config(tmp_path)

    raw = json.loads((tmp_path / CONFIG_FILE_NAME).read_text(encoding="utf-8"))
    assert raw["platform_name"] == "1fpga"
    assert "data_dir" not in raw
    assert config.downloads_dir == tmp_path / "downloads"
    assert config.public_key_bytes() is None


def test_existing_values_are_kept(tmp_path):
    key = base64.b64encode(b"k" * 32).decode()
    (tmp_path / CONFIG_FILE_NAME).write_text(
        json.dumps({"platform_version": "0.3", "signature_public_key": key}), encoding="utf-8"
    )

    config = load_config(tmp_path)

    assert config.platform_version == "0.3"
    assert config.public_key_bytes() == b"k" * 32
    raw = json.loads((tmp_path / CONFIG_FILE_NAME).read_text(encoding="utf-8"))
    assert raw["http_timeout_seconds"] == 30.0


def test_unreadable_config_falls_back_to_defaults(tmp_path):
    (tmp_path / CONFIG_FILE_NAME).write_text("[1, 2]", encoding="utf-8")

    config = load_config(tmp_path)

    assert config.platform_name == "1fpga"


def test_data_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(DATA_ROOT_ENV_VAR, str(tmp_path / "custom"))

    assert get_data_dir() == tmp_path / "custom"
    assert (tmp_path / "custom").is_dir()
