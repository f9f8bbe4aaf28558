"""Tests for sync tuning settings."""

import pytest
from pydantic import ValidationError

from config import Settings


def test_defaults(monkeypatch):
    for name in ("SYNC_MAX_DAYS_PER_REQUEST", "SYNC_MAX_RETRIES", "EXCHANGE_UTC_OFFSET"):
        monkeypatch.delenv(name, raising=False)
    s = Settings(_env_file=None)
    assert s.SYNC_MAX_DAYS_PER_REQUEST == 31
    assert s.SYNC_MAX_RETRIES == 3
    assert s.SYNC_FULL_LOOKBACK_MONTHS == 6
    assert s.SYNC_INCREMENTAL_LOOKBACK_MONTHS == 1
    assert s.EXCHANGE_UTC_OFFSET == "-05:00"
    assert s.DEFAULT_CURRENCY == "CAD"


def test_env_override(monkeypatch):
    monkeypatch.setenv("SYNC_MAX_DAYS_PER_REQUEST", "7")
    monkeypatch.setenv("EXCHANGE_UTC_OFFSET", "+09:00")
    s = Settings(_env_file=None)
    assert s.SYNC_MAX_DAYS_PER_REQUEST == 7
    assert s.EXCHANGE_UTC_OFFSET == "+09:00"


@pytest.mark.parametrize("offset", ["EST", "-5:00", "-0500", "05:00"])
def test_bad_utc_offset_rejected(monkeypatch, offset):
    monkeypatch.setenv("EXCHANGE_UTC_OFFSET", offset)
    with pytest.raises(ValidationError, match="EXCHANGE_UTC_OFFSET"):
        Settings(_env_file=None)


def test_non_positive_limits_rejected(monkeypatch):
    monkeypatch.setenv("SYNC_MAX_RETRIES", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
