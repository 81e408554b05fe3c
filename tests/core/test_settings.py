"""Tests for pipepool.core.settings."""

import pytest
from pydantic import ValidationError

from pipepool.core.errors import ConfigError
from pipepool.core.settings import DEFAULT_POOL, PoolSettings, get_settings, parse_pool_spec


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env file."""
    for key in ("LOG_LEVEL", "JSON_LOGS", "POLL_INTERVAL", "TIME_UNIT", "POOL", "WORKER_EXECUTABLE"):
        monkeypatch.delenv(f"PIPEPOOL_{key}", raising=False)
    monkeypatch.chdir(tmp_path)


class TestPoolSettings:
    def test_defaults(self):
        settings = PoolSettings()
        assert settings.pool == DEFAULT_POOL == {1: 1, 2: 3, 3: 1, 4: 1, 5: 1}
        assert settings.log_level == "INFO"
        assert settings.json_logs is None
        assert settings.poll_interval == 0.01
        assert settings.time_unit == 1.0
        assert settings.worker_executable is None

    def test_default_pool_is_not_shared(self):
        a = PoolSettings()
        a.pool[9] = 1
        assert 9 not in PoolSettings().pool

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PIPEPOOL_TIME_UNIT", "0.25")
        monkeypatch.setenv("PIPEPOOL_POOL", '{"2": 4}')
        monkeypatch.setenv("PIPEPOOL_LOG_LEVEL", "debug")
        settings = get_settings()
        assert settings.time_unit == 0.25
        assert settings.pool == {2: 4}
        assert settings.log_level == "DEBUG"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("PIPEPOOL_POLL_INTERVAL=0.5\n")
        assert PoolSettings().poll_interval == 0.5

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("PIPEPOOL_TIME_UNIT", "0.25")
        assert get_settings(time_unit=2.0).time_unit == 2.0

    def test_poll_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            PoolSettings(poll_interval=0)

    def test_negative_time_unit_rejected(self):
        with pytest.raises(ValidationError):
            PoolSettings(time_unit=-1)

    def test_invalid_pool_rejected(self):
        with pytest.raises(ConfigError):
            PoolSettings(pool={0: 1})
        with pytest.raises(ConfigError):
            PoolSettings(pool={1: -2})


class TestParsePoolSpec:
    def test_parse(self):
        assert parse_pool_spec("1=1,2=3") == {1: 1, 2: 3}

    def test_whitespace_and_trailing_comma(self):
        assert parse_pool_spec(" 1 = 2 , 3=0, ") == {1: 2, 3: 0}

    @pytest.mark.parametrize("spec", ["", "1", "a=1", "1=b", "1=1,1=2", "0=1", "1=-1"])
    def test_invalid(self, spec):
        with pytest.raises(ConfigError):
            parse_pool_spec(spec)
