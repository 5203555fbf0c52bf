import os

import pytest

from tcpgate.config import Config, ConfigError, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("GATE_"):
            monkeypatch.delenv(key)
    yield
    # load_dotenv writes straight into os.environ
    for key in list(os.environ):
        if key.startswith("GATE_"):
            del os.environ[key]


@pytest.fixture
def no_env_file(tmp_path):
    return str(tmp_path / "missing.env")


def test_defaults(no_env_file):
    cfg = load_config(no_env_file)
    assert cfg.listen_host == "0.0.0.0"
    assert cfg.listen_port == 7547
    assert cfg.idle_timeout == 30.0
    assert cfg.max_sessions == 0
    assert cfg.log_level == "DEBUG"
    assert not cfg.credentials().enabled


def test_environment_overrides(monkeypatch, no_env_file):
    monkeypatch.setenv("GATE_LISTEN_HOST", "127.0.0.1")
    monkeypatch.setenv("GATE_LISTEN_PORT", "9000")
    monkeypatch.setenv("GATE_IDLE_TIMEOUT", "2.5")
    monkeypatch.setenv("GATE_MAX_SESSIONS", "64")
    monkeypatch.setenv("GATE_LOG_LEVEL", "warning")
    cfg = load_config(no_env_file)
    assert (cfg.listen_host, cfg.listen_port, cfg.idle_timeout) == ("127.0.0.1", 9000, 2.5)
    assert cfg.max_sessions == 64
    assert cfg.log_level == "WARNING"


def test_env_file_is_loaded(tmp_path):
    env = tmp_path / "gate.env"
    env.write_text("GATE_LISTEN_PORT=8123\nGATE_AUTH_USERNAME=alice\nGATE_AUTH_PASSWORD=secret\n")
    cfg = load_config(str(env))
    assert cfg.listen_port == 8123
    store = cfg.credentials()
    assert store.enabled
    assert store.is_authorized("alice", "secret")


def test_password_not_in_repr(monkeypatch, no_env_file):
    monkeypatch.setenv("GATE_AUTH_USERNAME", "alice")
    monkeypatch.setenv("GATE_AUTH_PASSWORD", "hunter2")
    cfg = load_config(no_env_file)
    assert "hunter2" not in repr(cfg)
    assert "alice" in repr(cfg)


@pytest.mark.parametrize(
    "env",
    [
        {"GATE_AUTH_ENABLED": "true"},
        {"GATE_AUTH_ENABLED": "true", "GATE_AUTH_USERNAME": "alice"},
        {"GATE_AUTH_PASSWORD": "secret"},
        {"GATE_AUTH_USERNAME": "", "GATE_AUTH_PASSWORD": "secret"},
    ],
)
def test_incomplete_auth_section_is_rejected(monkeypatch, no_env_file, env):
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    with pytest.raises(ConfigError):
        load_config(no_env_file)


@pytest.mark.parametrize(
    "name,value",
    [
        ("GATE_LISTEN_PORT", "http"),
        ("GATE_LISTEN_PORT", "70000"),
        ("GATE_IDLE_TIMEOUT", "0"),
        ("GATE_IDLE_TIMEOUT", "soon"),
        ("GATE_MAX_SESSIONS", "-1"),
        ("GATE_LOG_LEVEL", "chatty"),
    ],
)
def test_invalid_values(monkeypatch, no_env_file, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        load_config(no_env_file)


def test_config_is_frozen():
    with pytest.raises(AttributeError):
        Config().listen_port = 1
