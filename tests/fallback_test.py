import random
from datetime import datetime, timedelta

from dateutil import tz

from fallback import FALLBACK_COUNT, generate_fallback_events


def test_three_future_synthetic_events(make_source):
    src = make_source(city="Boise", state="ID", name="Boise City Events")
    now = datetime(2025, 3, 1, 12, 0, tzinfo=tz.gettz("America/Boise"))
    events = generate_fallback_events(src, now=now, rng=random.Random(7))

    assert len(events) == FALLBACK_COUNT == 3
    for i, ev in enumerate(events):
        assert ev.is_synthetic is True
        assert ev.start_date > now
        assert now + timedelta(days=i + 1) <= ev.start_date <= now + timedelta(days=i + 1, hours=12)
        assert ev.end_date > ev.start_date
        assert ev.title.endswith(" - Boise")
        assert ev.location == "Boise, ID"
        assert ev.organizer == "Boise City Events"
        assert ev.source == src.id
        assert 20 <= ev.attendees <= 119


def test_default_clock_is_future(make_source):
    before = datetime.now(tz.UTC)
    events = generate_fallback_events(make_source())
    assert all(ev.start_date > before for ev in events)
