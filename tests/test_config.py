import pytest
from pydantic import BaseModel, Field

from mcp_adapters.config import build_config, call_timeout_from_env, env_bool, env_int, env_str
from mcp_adapters.errors import ConfigError


class SampleConfig(BaseModel):
    host: str = "localhost"
    port: int = Field(5432, ge=1, le=65535)


def test_env_str(monkeypatch):
    monkeypatch.setenv("SAMPLE_HOST", "db.internal")
    monkeypatch.setenv("SAMPLE_EMPTY", "")
    assert env_str("SAMPLE_HOST") == "db.internal"
    assert env_str("SAMPLE_EMPTY", "fallback") == "fallback"
    with pytest.raises(ConfigError, match="SAMPLE_MISSING"):
        env_str("SAMPLE_MISSING", required=True)


def test_env_int(monkeypatch):
    monkeypatch.setenv("SAMPLE_PORT", "6543")
    assert env_int("SAMPLE_PORT") == 6543
    assert env_int("SAMPLE_UNSET_PORT", 5432) == 5432
    monkeypatch.setenv("SAMPLE_PORT", "abc")
    with pytest.raises(ConfigError, match="must be an integer"):
        env_int("SAMPLE_PORT")


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("YES", True), ("false", False), ("0", False)])
def test_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("SAMPLE_SSL", raw)
    assert env_bool("SAMPLE_SSL") is expected


def test_env_bool_rejects_garbage(monkeypatch):
    monkeypatch.setenv("SAMPLE_SSL", "maybe")
    with pytest.raises(ConfigError):
        env_bool("SAMPLE_SSL")


def test_build_config_skips_unset_values():
    config = build_config(SampleConfig, host=None, port=6543)
    assert config.host == "localhost"
    assert config.port == 6543


def test_build_config_reports_invalid_values():
    with pytest.raises(ConfigError, match="Invalid SampleConfig: port"):
        build_config(SampleConfig, port=70000)


def test_call_timeout(monkeypatch):
    monkeypatch.delenv("MCP_CALL_TIMEOUT", raising=False)
    assert call_timeout_from_env() is None
    monkeypatch.setenv("MCP_CALL_TIMEOUT", "2.5")
    assert call_timeout_from_env() == 2.5
    monkeypatch.setenv("MCP_CALL_TIMEOUT", "0")
    with pytest.raises(ConfigError):
        call_timeout_from_env()
