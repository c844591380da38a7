import pytest

from ticket_display.config import Settings
from ticket_display.errors import ConfigError


def test_defaults_from_empty_env():
    s = Settings.from_env({})
    assert s.mqtt_port == 1883
    assert s.namespace == "callsys/v1"
    assert s.redis_url == "redis://localhost:6379/0"
    assert s.recent_capacity == 5
    assert s.admin_log_capacity == 50
    assert s.admin_token is None


def test_env_overrides():
    s = Settings.from_env(
        {
            "MQTT_PORT": "8883",
            "ADMIN_TOKEN": "t",
            "AUTH_POLICY": "reject",
            "RECENT_CAPACITY": "8",
        }
    )
    assert s.mqtt_port == 8883
    assert s.admin_token == "t"
    assert s.auth_policy == "reject"
    assert s.recent_capacity == 8
    s.validate()


def test_non_integer_env_is_a_config_error():
    with pytest.raises(ConfigError, match="MQTT_PORT"):
        Settings.from_env({"MQTT_PORT": "abc"})


@pytest.mark.parametrize(
    "overrides",
    [
        {},
        {"admin_token": "t", "auth_policy": "maybe"},
        {"admin_token": "t", "recent_capacity": 0},
        {"admin_token": "t", "workers": 0},
    ],
)
def test_validate_rejects_unusable_settings(overrides):
    with pytest.raises(ConfigError):
        Settings(**overrides).validate()
