import pytest
from pydantic import ValidationError

from cloudscope.shared.core.config import Settings

BASE = {
    "DATABASE_URL": "postgresql+asyncpg://user:pass@db/cloudscope",
    "TESTING": False,
    "ENVIRONMENT": "development",
}


def _settings(**overrides) -> Settings:
    values = dict(BASE)
    values.update(overrides)
    return Settings(**values)


def test_config_dev_defaults_pass():
    s = _settings()
    assert s.SCAN_PROVIDERS == ["aws", "azure", "gcp"]
    assert s.TREND_CACHE_TTL_SECONDS == 3600
    assert s.is_production is False


def test_config_rejects_unknown_scan_provider():
    with pytest.raises(ValidationError, match="SCAN_PROVIDERS contains unsupported providers"):
        _settings(SCAN_PROVIDERS=["aws", "oracle"])


@pytest.mark.parametrize("field", ["PROVIDER_SCAN_TIMEOUT_SECONDS", "PERSISTENCE_TIMEOUT_SECONDS", "TREND_CACHE_TTL_SECONDS"])
def test_config_rejects_non_positive_durations(field):
    with pytest.raises(ValidationError, match=f"{field} must be a positive number of seconds"):
        _settings(**{field: 0})


def test_config_production_requires_admin_key():
    with pytest.raises(ValidationError, match="ADMIN_API_KEY must be at least 32 characters"):
        _settings(ENVIRONMENT="production", DB_SSL_MODE="require", ADMIN_API_KEY="short")


def test_config_production_rejects_insecure_db_ssl():
    with pytest.raises(ValidationError, match="DB_SSL_MODE must be"):
        _settings(ENVIRONMENT="production", DB_SSL_MODE="disable", ADMIN_API_KEY="x" * 32)


def test_config_production_valid():
    s = _settings(ENVIRONMENT="production", DB_SSL_MODE="require", ADMIN_API_KEY="x" * 32)
    assert s.is_production is True


def test_config_testing_skips_validation():
    s = _settings(TESTING=True, SCAN_PROVIDERS=["oracle"], ENVIRONMENT="production")
    assert s.SCAN_PROVIDERS == ["oracle"]


def test_config_production_rejects_wildcard_cors():
    with pytest.raises(ValidationError, match="CORS_ORIGINS cannot contain"):
        _settings(ENVIRONMENT="production", DB_SSL_MODE="require", ADMIN_API_KEY="x" * 32, CORS_ORIGINS=["*"])
