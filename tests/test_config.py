import json
from pathlib import Path

import pytest

from udpxfer.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in Config._CONVERTERS:
        monkeypatch.delenv('UDPXFER_' + name.upper(), raising=False)
    # keep load_dotenv from picking up a stray .env
    monkeypatch.chdir(tmp_path)


def test_defaults_match_protocol_constants():
    config = Config()
    assert config.port_range == (50000, 51000)
    assert config.max_retries == 5
    assert config.base_timeout == 0.5
    assert config.block_size == 1000
    assert config.port_probe_attempts == 10
    assert config.max_sessions is None
    assert config.session_idle_timeout is None
    assert config.pin_peer is False


def test_from_env(monkeypatch):
    monkeypatch.setenv('UDPXFER_PORT', '7000')
    monkeypatch.setenv('UDPXFER_ROOT_DIR', '/srv/files')
    monkeypatch.setenv('UDPXFER_MAX_SESSIONS', '20')
    monkeypatch.setenv('UDPXFER_SESSION_IDLE_TIMEOUT', '30')
    monkeypatch.setenv('UDPXFER_PIN_PEER', 'true')

    config = Config.from_env()

    assert config.port == 7000
    assert config.root_dir == Path('/srv/files')
    assert config.max_sessions == 20
    assert config.session_idle_timeout == 30.0
    assert config.pin_peer is True


def test_save_and_load_roundtrip(tmp_path):
    path = tmp_path / "config.json"
    original = Config(port=7001, root_dir=Path('shared'), max_sessions=3, atomic_downloads=True)
    original.save(path)

    assert json.loads(path.read_text())['root_dir'] == 'shared'
    assert Config.from_file(path) == original


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / "nope.json") == Config()


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'port': 7002, 'block_size': 500, 'log_level': 'DEBUG'}))
    monkeypatch.setenv('UDPXFER_PORT', '7003')

    config = load_config(path)

    assert config.port == 7003
    assert config.block_size == 500
    assert config.log_level == 'DEBUG'


@pytest.mark.parametrize("changes", [
    {'port_range_start': 51000, 'port_range_end': 50000},
    {'block_size': 0},
    {'base_timeout': 0},
    {'max_retries': -1},
    {'port': 70000},
])
def test_validate_rejects_bad_settings(changes):
    config = Config(**changes)
    with pytest.raises(ValueError):
        config.validate()


@pytest.mark.parametrize("name", ['root_dir', 'output_dir', 'port', 'log_level', 'pin_peer'])
def test_null_in_file_is_rejected_by_validate(tmp_path, name):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({name: None}))

    config = Config.from_file(path)

    assert getattr(config, name) is None
    with pytest.raises(ValueError, match=name):
        config.validate()


def test_null_turns_optional_limits_off(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'max_sessions': None, 'session_idle_timeout': None}))

    config = Config.from_file(path)
    config.validate()

    assert config.max_sessions is None
    assert config.session_idle_timeout is None
