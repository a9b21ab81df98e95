from pathlib import Path

import pytest
from pydantic import ValidationError

from usage_relay.config import DATA_FILE_NAME, Settings


def test_defaults(monkeypatch):
    for name in ("USAGE_RELAY_RELAY_PORT", "USAGE_RELAY_RELAY_HOST", "USAGE_RELAY_DATA_FILE"):
        monkeypatch.delenv(name, raising=False)
    s = Settings(_env_file=None)
    assert s.relay_host == "127.0.0.1"
    assert s.relay_port == 19876
    assert s.grace_seconds == 20
    assert s.freshness_seconds == 60
    assert s.poll_interval_seconds == 60
    assert s.data_file == Path.home() / DATA_FILE_NAME
    assert s.relay_url == "http://127.0.0.1:19876/usage"


def test_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("USAGE_RELAY_RELAY_PORT", "20000")
    monkeypatch.setenv("USAGE_RELAY_DATA_FILE", str(tmp_path / "usage.json"))
    monkeypatch.setenv("USAGE_RELAY_SESSION_KEY", "sk-test")
    s = Settings(_env_file=None)
    assert s.relay_port == 20000
    assert s.data_file == tmp_path / "usage.json"
    assert s.session_key == "sk-test"


@pytest.mark.parametrize("host", ["127.0.0.1", "127.0.0.2", "::1", "localhost"])
def test_loopback_hosts_allowed(host):
    assert Settings(_env_file=None, relay_host=host).relay_host == host


@pytest.mark.parametrize("host", ["0.0.0.0", "192.168.1.10", "example.com"])
def test_non_loopback_host_rejected(host):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, relay_host=host)
