"""
Tests for environment-backed settings and the app factory wiring.
"""

import pytest
from pydantic import ValidationError

from adapters.db import InMemoryDocumentStore, SupabaseDocumentStore
from adapters.identity import InMemoryIdentityOracle
from adapters.identity_client import ClerkIdentityOracle
from app.settings import Settings

ENV_KEYS = [
    "IDENTITY_SECRET_KEY",
    "SESSION_JWT_SECRET",
    "SESSION_JWT_ALGO",
    "ROLE_CLAIMS_MAX_AGE_SECONDS",
    "ROUTE_GUARD_ENFORCE_COMPLIANCE",
    "USER_LIST_PAGE_SIZE",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestSettings:
    """Test defaults and validation."""

    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.ROLE_CLAIMS_MAX_AGE_SECONDS == 60
        assert settings.ROUTE_GUARD_ENFORCE_COMPLIANCE is False
        assert settings.SESSION_JWT_ALGO == "HS256"
        assert settings.SESSION_COOKIE_NAME == "__session"
        assert settings.USER_LIST_PAGE_SIZE == 100
        assert settings.IDENTITY_SECRET_KEY is None

    def test_reads_environment(self, clean_env):
        clean_env.setenv("ROLE_CLAIMS_MAX_AGE_SECONDS", "0")
        clean_env.setenv("ROUTE_GUARD_ENFORCE_COMPLIANCE", "true")
        clean_env.setenv("SESSION_JWT_ALGO", "rs256")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.ROLE_CLAIMS_MAX_AGE_SECONDS == 0
        assert settings.ROUTE_GUARD_ENFORCE_COMPLIANCE is True
        assert settings.SESSION_JWT_ALGO == "RS256"
        assert settings.LOG_LEVEL == "DEBUG"

    def test_negative_claims_age_rejected(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ROLE_CLAIMS_MAX_AGE_SECONDS=-1)

    @pytest.mark.parametrize("size", [0, 501])
    def test_page_size_bounds(self, clean_env, size):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, USER_LIST_PAGE_SIZE=size)


class TestAppFactory:
    """Test adapter selection in create_app."""

    def test_in_memory_without_credentials(self, clean_env):
        from main import create_app

        app = create_app(settings=Settings(_env_file=None))

        assert isinstance(app.state.identity_oracle, InMemoryIdentityOracle)
        assert isinstance(app.state.document_store, InMemoryDocumentStore)

    def test_clerk_oracle_with_secret(self, clean_env):
        from main import create_app

        app = create_app(settings=Settings(_env_file=None, IDENTITY_SECRET_KEY="sk_test_123"))

        assert isinstance(app.state.identity_oracle, ClerkIdentityOracle)

    def test_supabase_store_with_credentials(self, clean_env, monkeypatch):
        from main import create_app

        monkeypatch.setattr(SupabaseDocumentStore, "__init__", lambda self, url=None, key=None, client=None: None)
        app = create_app(settings=Settings(
            _env_file=None, SUPABASE_URL="https://db.example.com", SUPABASE_SERVICE_KEY="service-key"
        ))

        assert isinstance(app.state.document_store, SupabaseDocumentStore)

    def test_injected_adapters_win(self, settings, oracle, document_store):
        from main import create_app

        app = create_app(settings=settings, identity_oracle=oracle, document_store=document_store)

        assert app.state.identity_oracle is oracle
        assert app.state.document_store is document_store
