"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from rinkreel.settings import Settings


def test_defaults():
    cfg = Settings(_env_file=None)

    assert cfg.SEGMENT_WINDOW_MS == 30_000
    assert cfg.CAPTION_DURATION_MS == 5_000
    assert cfg.JOB_WATCHDOG_SECONDS == 3600
    assert cfg.storage_backend == "local"


def test_legacy_credential_aliases(monkeypatch):
    monkeypatch.delenv("PROVIDER_EMAIL", raising=False)
    monkeypatch.delenv("PROVIDER_PASSWORD", raising=False)
    monkeypatch.setenv("LIVEBARN_EMAIL", "coach@example.com")
    monkeypatch.setenv("LIVEBARN_PASSWORD", "pw")

    cfg = Settings()

    assert cfg.PROVIDER_EMAIL == "coach@example.com"
    assert cfg.has_provider_credentials


def test_blank_secrets_become_none(monkeypatch):
    monkeypatch.setenv("WEBHOOK_HMAC_SECRET", "   ")

    assert Settings().webhook_hmac_secret is None


def test_s3_backend_requires_bucket(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "s3")
    monkeypatch.delenv("S3_BUCKET", raising=False)
    monkeypatch.delenv("S3_BUCKET_NAME", raising=False)

    with pytest.raises(ValidationError, match="S3_BUCKET"):
        Settings()


def test_window_must_be_positive(monkeypatch):
    monkeypatch.setenv("SEGMENT_WINDOW_MS", "0")

    with pytest.raises(ValidationError):
        Settings()
