"""Tests for MeterpaySettings."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from meterpay_core.config import MeterpaySettings


class TestMeterpaySettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("METERPAY_DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = MeterpaySettings(_env_file=None)

        assert settings.port == 3000
        assert settings.payments_mode == "free"
        assert settings.database_url == "memory://"
        assert not settings.use_postgres
        assert settings.quote_ttl_seconds == 30
        assert settings.idempotency_ttl_seconds == 120
        assert settings.sweep_interval_seconds == 60
        assert settings.ark.asp_url == "https://asp.testnet.arkade.example"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("METERPAY_PAYMENTS_MODE", "testnet")
        monkeypatch.setenv("METERPAY_PORT", "8080")
        monkeypatch.setenv("METERPAY_LOG_LEVEL", "debug")
        settings = MeterpaySettings(_env_file=None)

        assert settings.payments_mode == "testnet"
        assert settings.port == 8080
        assert settings.log_level == "DEBUG"

    def test_nested_ark_config(self, monkeypatch):
        monkeypatch.setenv("METERPAY_ARK__RECEIVER_PUBKEY", "ark1qnested")
        settings = MeterpaySettings(_env_file=None)
        assert settings.ark.receiver_pubkey == "ark1qnested"

    def test_database_url_fallback_and_rewrite(self, monkeypatch):
        monkeypatch.delenv("METERPAY_DATABASE_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/meterpay")
        settings = MeterpaySettings(_env_file=None)

        assert settings.database_url == "postgresql://u:p@db/meterpay"
        assert settings.use_postgres

    def test_comma_separated_origins(self):
        settings = MeterpaySettings(_env_file=None, allowed_origins="https://a.example, https://b.example")
        assert settings.allowed_origins == ["https://a.example", "https://b.example"]

    def test_rejects_unknown_payments_mode(self):
        with pytest.raises(ValidationError):
            MeterpaySettings(_env_file=None, payments_mode="regtest")

    def test_lock_ttl_outlives_job_timeout(self):
        settings = MeterpaySettings(_env_file=None)
        assert settings.idempotency_lock_ttl_seconds > settings.job_timeout_seconds

    @pytest.mark.parametrize("lock_ttl", [10, 30])
    def test_rejects_lock_ttl_within_job_timeout(self, lock_ttl):
        with pytest.raises(ValidationError, match="must exceed job_timeout_seconds"):
            MeterpaySettings(_env_file=None, job_timeout_seconds=30, idempotency_lock_ttl_seconds=lock_ttl)

    def test_accepts_shorter_job_timeout(self):
        settings = MeterpaySettings(_env_file=None, job_timeout_seconds=5, idempotency_lock_ttl_seconds=10)
        assert settings.idempotency_lock_ttl_seconds == 10
