"""
Tests for configuration loading and validation
"""
import json

import pytest

from vip.utils.config import Config, get_config, set_config
from vip.utils.config_validator import ConfigValidator


@pytest.fixture
def config_file(tmp_path):
    def write(data):
        path = tmp_path / "vip.json"
        path.write_text(json.dumps(data))
        return str(path)
    return write


class TestConfig:

    def test_defaults(self, tmp_path):
        config = Config(str(tmp_path / "absent.json"))
        assert config.get('api.ossindex.base_url') == "https://ossindex.sonatype.org"
        assert config.get('api.ossindex.request_max_purl') == 128
        assert config.get('api.ossindex.retry.max_attempts') == 10
        assert config.get('cache.validity_period_ms') == 43200000
        assert config.get('api.ossindex.missing', 'fallback') == 'fallback'

    def test_file_merged_over_defaults(self, config_file):
        config = Config(config_file({"api": {"ossindex": {"request_max_purl": 64}}}))
        assert config.get('api.ossindex.request_max_purl') == 64
        assert config.get('api.ossindex.timeout') == 30

    def test_invalid_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "vip.json"
        path.write_text("{not json")
        assert Config(str(path)).get('database.url') == "sqlite:///vip.db"

    def test_environment_selects_file(self, config_file, monkeypatch):
        monkeypatch.setenv("VIP_CONFIG", config_file({"database": {"url": "sqlite://"}}))
        assert Config().get('database.url') == "sqlite://"

    def test_overrides(self, tmp_path):
        config = Config(str(tmp_path / "absent.json"), overrides={"cache": {"validity_period_ms": 0}})
        assert config.get('cache.validity_period_ms') == 0

    def test_set_and_save(self, tmp_path):
        path = tmp_path / "saved.json"
        config = Config(str(path))
        config.set('api.ossindex.username', 'alice')
        config.save()
        assert json.loads(path.read_text())['api']['ossindex']['username'] == 'alice'

    def test_api_token_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OSSINDEX_API_TOKEN", "secret")
        assert Config(str(tmp_path / "absent.json")).get_api_key('ossindex') == "secret"

    def test_global_instance(self, tmp_path):
        config = Config(str(tmp_path / "absent.json"))
        set_config(config)
        assert get_config() is config


class TestConfigValidator:

    def _config(self, tmp_path, **ossindex):
        config = Config(str(tmp_path / "absent.json")).config
        config['api']['ossindex'].update(ossindex)
        return config

    def test_defaults_are_valid(self, tmp_path):
        assert Config(str(tmp_path / "absent.json")).validate()

    @pytest.mark.parametrize("field, value", [
        ("timeout", 0),
        ("request_max_purl", 129),
        ("request_max_purl", "many"),
        ("base_url", "ftp://ossindex.sonatype.org"),
    ])
    def test_invalid_values(self, tmp_path, field, value):
        validator = ConfigValidator()
        assert not validator.validate_config(self._config(tmp_path, **{field: value}))
        assert validator.get_validation_report()['error_count'] >= 1

    def test_retry_bounds(self, tmp_path):
        config = self._config(tmp_path)
        config['api']['ossindex']['retry'].update(max_attempts=0, multiplier=0.5)
        validator = ConfigValidator()
        assert not validator.validate_config(config)
        assert len(validator.get_errors()) == 2

    def test_missing_section(self, tmp_path):
        config = self._config(tmp_path)
        del config['cache']
        validator = ConfigValidator()
        assert not validator.validate_config(config)
        assert validator.get_errors() == ["Missing required field: cache"]

    def test_warnings_do_not_fail(self, tmp_path):
        config = self._config(tmp_path)
        config['api']['ossindex']['retry']['max_delay'] = 0.1
        config['processing']['analysis_level'] = 'hourly'
        validator = ConfigValidator()
        assert validator.validate_config(config)
        assert len(validator.get_warnings()) == 2
