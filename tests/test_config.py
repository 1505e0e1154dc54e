import pytest
from pydantic import ValidationError

from campus_eats.core.config import Settings


def test_defaults():
    config = Settings(_env_file=None)

    assert config.RUNNER_SPEED_KMH == 20.0
    assert config.POLL_INTERVAL_SECONDS == 10.0
    assert config.REDIS_URL is None


@pytest.mark.parametrize("speed", [0, -5])
def test_runner_speed_must_be_positive(speed):
    with pytest.raises(ValidationError, match="RUNNER_SPEED_KMH"):
        Settings(_env_file=None, RUNNER_SPEED_KMH=speed)


def test_speed_from_environment(monkeypatch):
    monkeypatch.setenv("RUNNER_SPEED_KMH", "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.parametrize("interval, expected", [(0.1, 1.0), (600, 60.0), (15, 15.0)])
def test_poll_interval_is_clamped(interval, expected):
    assert Settings(_env_file=None, POLL_INTERVAL_SECONDS=interval).POLL_INTERVAL_SECONDS == expected


def test_blank_redis_url_means_no_redis():
    assert Settings(_env_file=None, REDIS_URL="").REDIS_URL is None
