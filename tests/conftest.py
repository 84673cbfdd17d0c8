"""Shared fixtures: a canned HTTP response and a FeedSource factory."""

import pytest

from models import FeedSource


class FakeResponse:
    def __init__(self, text="", status_code=200, headers=None):
        self.text = text
        self.status_code = status_code
        self.headers = headers or {}


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def make_source():
    """Build a FeedSource with sensible defaults; override any field by keyword."""
    def _make(**overrides):
        fields = {
            "id": "springfield-city",
            "name": "Springfield City Events",
            "city": "Springfield",
            "state": "IL",
            "type": "city",
            "feed_url": "https://springfield.gov/calendar.ics",
            "website_url": "https://springfield.gov/calendar",
            "is_active": True,
            "feed_type": "ical",
        }
        fields.update(overrides)
        return FeedSource(**fields)
    return _make
