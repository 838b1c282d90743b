import pytest

from app.core.config import Settings


def make_settings(**overrides) -> Settings:
    values = {"SECRET_KEY": "k", "DATABASE_URL": "sqlite://"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestWebhookVerification:
    def test_optional_locally(self):
        assert make_settings(ENV="local").webhook_verification_required is False
        assert make_settings(ENV="local", GATEWAY_WEBHOOK_VERIFY=True).webhook_verification_required is True

    @pytest.mark.parametrize("env", ["staging", "production"])
    def test_always_on_elsewhere(self, env):
        assert make_settings(ENV=env, GATEWAY_WEBHOOK_VERIFY=False).webhook_verification_required is True


class TestDatabaseUrl:
    def test_postgres_scheme_is_normalized(self):
        s = make_settings(DATABASE_URL="postgres://u:p@db:5432/backoffice")
        assert s.DATABASE_URL == "postgresql+psycopg2://u:p@db:5432/backoffice"
