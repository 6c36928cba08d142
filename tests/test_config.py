"""Tests for configuration loading and validation."""

import json
import tempfile

import pytest
import yaml

from turn_capture.config import load_config, validate_config


class TestLoadConfig:
    def test_load_defaults(self):
        config = load_config(config_dict={})
        assert config.version == "1.0"
        assert config.log_level == "INFO"
        assert config.storage.backend == "filesystem"
        assert config.compaction.batch_size == 50
        assert config.capture.host_selector == "openai-chatkit"
        assert "/api/log-event" in config.capture.exclude_patterns
        assert config.server.port == 3000

    def test_load_from_dict(self):
        config = load_config(config_dict={
            "log_level": "debug",
            "storage": {"backend": "s3", "bucket": "chat-logs", "prefix": "prod"},
            "compaction": {"batch_size": 10},
        })
        assert config.log_level == "DEBUG"
        assert config.storage.backend == "s3"
        assert config.storage.bucket == "chat-logs"
        assert config.compaction.batch_size == 10
        assert config.compaction.max_workers == 8

    def test_load_from_yaml_file(self):
        raw = {"auth": {"admin_key": "k"}, "server": {"port": 8080}}
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            yaml.dump(raw, f)
            f.flush()
            config = load_config(config_path=f.name)
        assert config.server.port == 8080
        assert config.auth.admin_key == "k"

    def test_load_from_json_file(self):
        raw = {"capture": {"dedup_chars": 100}}
        with tempfile.NamedTemporaryFile(suffix=".json", mode="w", delete=False) as f:
            json.dump(raw, f)
            f.flush()
            config = load_config(config_path=f.name)
        assert config.capture.dedup_chars == 100

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "nope.yaml")

    def test_discovers_config_in_cwd(self, tmp_path, monkeypatch):
        (tmp_path / "turn-capture.yaml").write_text("server:\n  port: 4242\n")
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.server.port == 4242

    def test_env_overrides_secrets(self, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "from-env")
        monkeypatch.setenv("LOG_ADMIN_KEY", "key-env")
        config = load_config(config_dict={"auth": {"cron_secret": "from-file"}})
        assert config.auth.cron_secret == "from-env"
        assert config.auth.admin_key == "key-env"

    def test_to_dict_roundtrips_through_loader(self):
        config = load_config(config_dict={"compaction": {"batch_size": 7}})
        again = load_config(config_dict=config.to_dict())
        assert again == config


class TestValidateConfig:
    def test_valid_config(self, sample_config):
        assert validate_config(sample_config) == []

    def test_no_credentials(self):
        errors = validate_config(load_config(config_dict={}))
        assert any("credentials" in e for e in errors)

    def test_unknown_backend(self):
        config = load_config(config_dict={
            "storage": {"backend": "ftp"}, "auth": {"admin_key": "k"},
        })
        errors = validate_config(config)
        assert any("ftp" in e for e in errors)

    def test_s3_requires_bucket(self):
        config = load_config(config_dict={
            "storage": {"backend": "s3"}, "auth": {"admin_key": "k"},
        })
        assert any("bucket" in e for e in validate_config(config))

    def test_bad_numbers(self):
        config = load_config(config_dict={
            "auth": {"admin_key": "k"},
            "compaction": {"batch_size": 0, "max_workers": 0},
            "capture": {"dedup_chars": 0, "attach_retry_delay": -1},
        })
        errors = validate_config(config)
        assert len(errors) == 4

    def test_unknown_log_level(self):
        config = load_config(config_dict={"auth": {"admin_key": "k"}, "log_level": "loud"})
        assert any("log_level" in e for e in validate_config(config))
