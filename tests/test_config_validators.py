import builtins
import logging
import os

import pytest
from pydantic import ValidationError
from zoneinfo import ZoneInfo

import socialhub.config as config
from socialhub.config import Settings


from tests._helpers import TEST_SECRET, make_fake_open


def _settings(**kw):
    kw.setdefault("jwt_secret", TEST_SECRET)
    return Settings(**kw)


def test_defaults():
    s = _settings()
    assert s.jwt_algorithm == "HS256"
    assert s.jwt_expiry_hours == 24
    assert s.max_images_per_post == 5
    assert s.image_max_dimension == 1200
    assert s.rate_limit_window_seconds == 900
    assert s.rate_limit_max_requests == 10000
    assert s.port == 5000


def test_jwt_secret_is_required(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.setattr(os.path, "isfile", lambda p: False)
    with pytest.raises(ValidationError):
        Settings()


def test_short_jwt_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="short")


def test_jwt_algorithm_normalized_and_restricted():
    assert _settings(jwt_algorithm="hs512").jwt_algorithm == "HS512"
    with pytest.raises(ValidationError):
        _settings(jwt_algorithm="RS256")
    with pytest.raises(ValidationError):
        _settings(jwt_algorithm="none")


def test_jwt_expiry_bounds():
    assert _settings(jwt_expiry_hours="48").jwt_expiry_hours == 48
    with pytest.raises(ValidationError):
        _settings(jwt_expiry_hours=0)
    with pytest.raises(ValidationError):
        _settings(jwt_expiry_hours=721)


def test_password_cost_bounds():
    with pytest.raises(ValidationError):
        _settings(password_time_cost=0)
    with pytest.raises(ValidationError):
        _settings(password_memory_cost=512)
    with pytest.raises(ValidationError):
        _settings(password_parallelism=17)
    s = _settings(password_time_cost=1, password_memory_cost=1024, password_parallelism=1)
    assert (s.password_time_cost, s.password_memory_cost, s.password_parallelism) == (1, 1024, 1)


def test_non_numeric_limits_raise():
    with pytest.raises(ValidationError):
        _settings(max_images_per_post="abc")
    with pytest.raises(ValidationError):
        _settings(rate_limit_max_requests=0)


def test_image_settings_bounds():
    with pytest.raises(ValidationError):
        _settings(image_quality=101)
    with pytest.raises(ValidationError):
        _settings(image_max_dimension=10)
    with pytest.raises(ValidationError):
        _settings(max_images_per_post=21)


def test_settings_are_frozen():
    s = _settings()
    with pytest.raises(ValidationError):
        s.jwt_expiry_hours = 1


def test_cors_origins_parsing():
    assert _settings().cors_origins == ["*"]
    s = _settings(allowed_origins="https://a.example, https://b.example ,")
    assert s.cors_origins == ["https://a.example", "https://b.example"]
    assert _settings(allowed_origins=" , ").cors_origins == ["*"]


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "env-secret-0123456789")
    monkeypatch.setenv("JWT_EXPIRY_HOURS", "12")
    monkeypatch.setattr(os.path, "isfile", lambda p: False)
    s = Settings()
    assert s.jwt_secret == "env-secret-0123456789"
    assert s.jwt_expiry_hours == 12


def test_jwt_secret_prefers_docker_secret(monkeypatch):
    secret_path = "/run/secrets/jwt_secret"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))
    monkeypatch.setattr(builtins, "open", make_fake_open(secret_path, "docker-secret-0123456789\n"))

    s = Settings(jwt_secret="env-secret-0123456789")
    assert s.jwt_secret == "docker-secret-0123456789"


def test_load_settings_exits_on_validation_error(monkeypatch, caplog):
    monkeypatch.setenv("JWT_SECRET", "too-short")
    monkeypatch.setattr(os.path, "isfile", lambda p: False)

    caplog.set_level(logging.ERROR)
    with pytest.raises(SystemExit):
        config.load_settings()
    assert any('Configuration error' in r.message for r in caplog.records)


def test_load_settings_returns_settings(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "env-secret-0123456789")
    monkeypatch.setattr(os.path, "isfile", lambda p: False)
    assert isinstance(config.load_settings(), Settings)


def test_local_iso_formatter_uses_timezone():
    ZoneInfo('UTC')

    fmt = config.LocalISOFormatter(tz_name='UTC')
    record = logging.LogRecord(name="test", level=logging.INFO, pathname=__file__, lineno=1, msg="x", args=(), exc_info=None)
    record.created = 0.0
    s = fmt.formatTime(record)
    assert s.startswith('1970-01-01T00:00:00.')
    assert s.endswith('+00:00')
