"""Shared fixtures for the data refresh test suite."""

import sys
from pathlib import Path

import pytest
import requests

# Ensure scripts/ is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "scripts"))

import fetch_metaforge_data
from fetch_metaforge_data import FetchConfig


# ── HTTP fakes ───────────────────────────────────────────

class FakeResponse:
    def __init__(self, status_code=200, payload=None, invalid_json=False):
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """Stands in for requests.Session.

    `responses` is either a list consumed in order (items may be exceptions to
    raise) or a callable taking (url, params) and returning a response.
    """

    def __init__(self, responses):
        self._responses = responses
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params))
        if callable(self._responses):
            result = self._responses(url, params)
        else:
            if not self._responses:
                raise AssertionError(f"unexpected request: {url}")
            result = self._responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def page_of(count, start=0, item_type="Weapon"):
    return [
        {"id": f"rec-{start + i}", "name": f"Record {start + i}", "item_type": item_type}
        for i in range(count)
    ]


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture
def sleeps(monkeypatch):
    """Record every delay instead of sleeping."""
    recorded = []
    monkeypatch.setattr(fetch_metaforge_data.time, "sleep", recorded.append)
    return recorded


@pytest.fixture
def cfg():
    return FetchConfig(
        timeout_seconds=5.0,
        retries=2,
        page_delay_seconds=1.5,
        rate_limit_delay_seconds=10.0,
        error_delay_seconds=5.0,
        max_rate_limit_retries=None,
        verbose=False,
    )


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection reset by peer")
