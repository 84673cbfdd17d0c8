from datetime import datetime

from dateutil import tz

from models import DEFAULT_CATEGORY
from utils import (
    categorize_event,
    city_slug,
    clean_text,
    hash_event,
    localize,
    mentions_free,
    parse_event_date,
    time_of_day,
)


def test_clean_text_strips_markup_and_entities():
    assert clean_text("<p>Story&nbsp;time   <b>today</b></p>") == "Story time today"


def test_clean_text_truncates():
    assert len(clean_text("x" * 500)) == 300
    assert clean_text(None) == ""


def test_categorize_first_rule_wins():
    # "meeting" (community) is checked before "school" (education)
    assert categorize_event("School board meeting", "") == "Community & Social"
    assert categorize_event("Jazz concert", "") == "Music & Concerts"


def test_categorize_default():
    assert categorize_event("Ribbon cutting", "new storefront") == DEFAULT_CATEGORY


def test_mentions_free_is_case_insensitive():
    assert mentions_free("FREE admission")
    assert not mentions_free("Tickets $10")
    assert not mentions_free(None)


def test_city_slug():
    assert city_slug("San Francisco") == "sanfrancisco"
    assert city_slug("St. Louis") == "stlouis"
    assert city_slug("  ") == ""


def test_localize_only_touches_naive():
    naive = datetime(2025, 3, 1, 10, 0)
    assert localize(naive, "America/Chicago").tzinfo == tz.gettz("America/Chicago")
    aware = datetime(2025, 3, 1, 10, 0, tzinfo=tz.UTC)
    assert localize(aware, "America/Chicago") is aware


def test_time_of_day():
    assert time_of_day(datetime(2025, 3, 1, 19, 0)) == "7:00 PM"
    assert time_of_day(datetime(2025, 3, 1, 9, 30)) == "9:30 AM"


def test_parse_event_date_direct_and_extracted():
    dt = parse_event_date("March 3, 2025 6:30 PM")
    assert (dt.year, dt.month, dt.day, dt.hour) == (2025, 3, 3, 18)
    dt = parse_event_date("Posted 2025-03-14 by Parks & Rec")
    assert (dt.year, dt.month, dt.day) == (2025, 3, 14)
    assert dt.tzinfo is not None


def test_parse_event_date_garbage():
    assert parse_event_date("sometime soon") is None
    assert parse_event_date("") is None


def test_hash_event_stable():
    start = datetime(2025, 3, 1, 10, 0)
    assert hash_event("A", start, "Hall") == hash_event(" A ", start, "Hall ")
    assert hash_event("A", start, "Hall") != hash_event("B", start, "Hall")
