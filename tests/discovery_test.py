from unittest.mock import patch

import pytest

import discovery
from discovery import FeedDiscoverer, classify_feed, score_feed, state_abbreviation
from models import Place
from sources import NotFoundError, TransportError


@pytest.mark.parametrize(
    "url, content_type, expected",
    [
        ("https://x.org/feed", "text/calendar; charset=utf-8", ("ical", 0.9)),
        ("https://x.org/calendar.ics", "", ("ical", 0.9)),
        ("https://x.org/feed", "application/rss+xml", ("rss", 0.8)),
        ("https://x.org/api/events", "", ("json", 0.7)),
        ("https://x.org/calendar", "text/html", ("html", 0.5)),
        ("https://x.org/", "text/html", ("html", 0.3)),
    ],
)
def test_classify_feed(url, content_type, expected):
    assert classify_feed(url, content_type) == expected


def test_gov_boost_is_clamped():
    assert score_feed("https://austin.gov/calendar.ics", "text/calendar") == ("ical", 1.0)
    feed_type, conf = score_feed("https://austin.gov/", "text/html")
    assert feed_type == "html" and conf == pytest.approx(0.5)


def test_state_abbreviation():
    assert state_abbreviation("Texas") == "TX"
    assert state_abbreviation("new york") == "NY"
    assert state_abbreviation("tx") == "TX"


def test_unreachable_domains_yield_nothing(fake_response):
    d = FeedDiscoverer()
    with patch("discovery.http_request", return_value=fake_response(status_code=404)), \
         patch("discovery.fetch_headers") as heads:
        assert d.discover_feeds_for_location(Place(city="Nowhere", state="ZZ")) == []
    heads.assert_not_called()


def test_server_error_probe_treated_as_absent(fake_response):
    d = FeedDiscoverer()
    with patch("discovery.http_request", return_value=fake_response(status_code=503)):
        assert d.probe_domain("austin.gov") is None


def test_transport_error_probe_treated_as_absent():
    d = FeedDiscoverer()
    with patch("discovery.http_request", side_effect=TransportError("dns")):
        assert d.probe_domain("austin.gov") is None


def test_empty_city_probes_nothing():
    d = FeedDiscoverer()
    with patch("discovery.http_request") as req:
        assert d.discover_feeds_for_location(Place(city="  ", state="TX")) == []
    req.assert_not_called()


def test_candidate_urls_links_first_and_capped():
    d = FeedDiscoverer(max_paths=4)
    html = """
      <a href="/city-calendar#top">Calendar</a>
      <a href="https://www.austin.gov/news/events">News and events</a>
      <a href="mailto:events@austin.gov">Mail</a>
      <a href="/about">About</a>
    """
    urls = d.candidate_urls(html, "https://austin.gov")
    assert urls == [
        "https://austin.gov/city-calendar",
        "https://www.austin.gov/news/events",
        "https://austin.gov/calendar",
        "https://austin.gov/events",
    ]


def test_off_site_links_are_not_candidates():
    d = FeedDiscoverer()
    html = """
      <a href="https://www.facebook.com/springfieldevents">Events</a>
      <a href="https://www.eventbrite.com/o/springfield-calendar">Calendar</a>
      <a href="/parks/events">Parks</a>
    """
    urls = d.candidate_urls(html, "https://springfield.gov")
    assert urls[0] == "https://springfield.gov/parks/events"
    assert all(u.startswith("https://springfield.gov/") for u in urls)


def test_check_domain_validates_candidates(fake_response):
    d = FeedDiscoverer(max_paths=3)

    def heads(url, timeout, user_agent):
        if url.endswith(".ics"):
            return {"content-type": "text/calendar"}
        raise NotFoundError(url)

    with patch("discovery.http_request", return_value=fake_response(text="<html></html>")), \
         patch("discovery.fetch_headers", side_effect=heads):
        feeds = d.check_domain_for_feeds("austin.gov", Place(city="Austin", state="TX"), "city")

    assert len(feeds) == 1
    feed = feeds[0]
    assert feed.source.feed_url == "https://austin.gov/calendar.ics"
    assert feed.source.feed_type == "ical"
    assert feed.source.website_url == "https://austin.gov"
    assert feed.source.is_active is False
    assert feed.source.name == "Austin City Government"
    assert feed.source.id.startswith("discovered-austin-city-")
    assert feed.confidence == 1.0


def test_known_patterns_get_boost():
    d = FeedDiscoverer()
    with patch("discovery.fetch_headers", return_value={"content-type": "text/html"}):
        feeds = d.check_known_patterns(Place(city="Plano", state="TX"))
    assert len(feeds) == len(discovery.KNOWN_PATTERN_URLS)
    # https://www.plano.gov/calendar: html 0.5 + gov 0.2 + known 0.3
    assert feeds[0].confidence == 1.0
    assert all(0.0 <= f.confidence <= 1.0 for f in feeds)


def test_popular_location_dedupes_by_url():
    d = FeedDiscoverer()
    with patch("discovery.fetch_headers", return_value={"content-type": "text/calendar"}):
        first = d.validate_feed_url("https://www.plano.gov/calendar.ics", Place("Plano", "TX"), "city")
        again = d.validate_feed_url("https://www.plano.gov/calendar.ics", Place("Plano", "TX"), "city")

    with patch.object(FeedDiscoverer, "discover_feeds_for_location", return_value=[first]), \
         patch.object(FeedDiscoverer, "check_known_patterns", return_value=[again]):
        feeds = d.discover_feeds_for_popular_location("Plano", "Texas")

    assert feeds == [first]


def test_location_results_sorted_by_confidence():
    d = FeedDiscoverer()

    def fake_check(domain, place, org_type):
        if domain == "frisco.gov":
            return [d.validate_feed_url("https://frisco.gov/", place, org_type)]
        if domain == "friscochamber.org":
            return [d.validate_feed_url("https://friscochamber.org/events.ics", place, org_type)]
        return []

    with patch("discovery.fetch_headers", return_value={}), \
         patch.object(d, "check_domain_for_feeds", side_effect=fake_check):
        feeds = d.discover_feeds_for_location(Place(city="Frisco", state="TX"))

    assert [f.source.type for f in feeds] == ["chamber", "city"]
    assert feeds[0].confidence >= feeds[1].confidence
