import logging
import time
import urllib.parse
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from bs4 import BeautifulSoup

from domains import KNOWN_PATTERN_URLS, candidate_domains, known_pattern_urls
from models import DiscoveredFeed, FeedSource, Place
from sources import FeedError, fetch_headers, http_request
from utils import city_slug

LOG = logging.getLogger("discovery")

DISCOVERY_UA = "CityWide Events Calendar Discovery Bot 1.0"
PROBE_TIMEOUT = 5
VALIDATE_TIMEOUT = 3
MAX_PATHS_PER_DOMAIN = 10
GOV_BOOST = 0.2
KNOWN_PATTERN_BOOST = 0.3

COMMON_FEED_PATHS = [
    "/calendar",
    "/events",
    "/calendar.ics",
    "/events.ics",
    "/calendar/feed",
    "/events/feed",
    "/calendar.rss",
    "/events.rss",
    "/api/events",
    "/api/calendar",
    "/feeds/calendar",
    "/feeds/events",
]

# Evaluated top to bottom, first match wins: (predicate(url, content_type), feed_type, confidence)
FORMAT_RULES = [
    (lambda url, ct: "text/calendar" in ct or url.endswith(".ics"), "ical", 0.9),
    (lambda url, ct: "application/rss" in ct or "xml" in ct or "rss" in url or ".xml" in url,
     "rss", 0.8),
    (lambda url, ct: "application/json" in ct or "api" in url or ".json" in url, "json", 0.7),
    (lambda url, ct: "calendar" in url or "events" in url, "html", 0.5),
    (lambda url, ct: True, "html", 0.3),
]

STATE_CODES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "florida": "FL", "georgia": "GA",
    "hawaii": "HI", "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS", "missouri": "MO",
    "montana": "MT", "nebraska": "NE", "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ",
    "new mexico": "NM", "new york": "NY", "north carolina": "NC", "north dakota": "ND", "ohio": "OH",
    "oklahoma": "OK", "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT",
    "virginia": "VA", "washington": "WA", "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
}

ORG_NAMES = {
    "city": "{city} City Government",
    "school": "{city} School District",
    "chamber": "{city} Chamber of Commerce",
}


def clamp(x, lo=0.0, hi=1.0):
    return max(lo, min(hi, x))


def classify_feed(url, content_type=""):
    """Return (feed_type, base_confidence) from the first matching FORMAT_RULES row."""
    u = url.lower()
    ct = (content_type or "").lower()
    for predicate, feed_type, confidence in FORMAT_RULES:
        if predicate(u, ct):
            return feed_type, confidence
    return "html", 0.3


def is_gov_host(url):
    host = (urllib.parse.urlsplit(url).hostname or "").lower()
    return host.endswith(".gov")


def score_feed(url, content_type=""):
    feed_type, confidence = classify_feed(url, content_type)
    if is_gov_host(url):
        confidence += GOV_BOOST
    return feed_type, clamp(confidence)


def state_abbreviation(state_name):
    normalized = (state_name or "").strip().lower()
    return STATE_CODES.get(normalized) or (state_name or "").strip().upper()[:2]


def source_name(city, org_type):
    template = ORG_NAMES.get(org_type, "{city} {org_type}")
    return template.format(city=city, org_type=org_type)


def origin_of(url):
    parts = urllib.parse.urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _bare_host(url):
    host = (urllib.parse.urlsplit(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def new_source_id(city, org_type):
    slug = "-".join((city or "").lower().split())
    return f"discovered-{slug}-{org_type}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class FeedDiscoverer:
    """
    Finds likely calendar feeds for a place by probing conventional
    government, school-district and chamber domains.

    Nothing in here raises for network trouble: a domain or path that can't
    be reached just contributes no feeds.
    """

    def __init__(self, probe_timeout=PROBE_TIMEOUT, validate_timeout=VALIDATE_TIMEOUT,
                 max_paths=MAX_PATHS_PER_DOMAIN, user_agent=DISCOVERY_UA):
        self.probe_timeout = probe_timeout
        self.validate_timeout = validate_timeout
        self.max_paths = max_paths
        self.user_agent = user_agent

    # ---- public entry points ----
    def discover_feeds_for_location(self, place: Place):
        LOG.info("Discovering calendar feeds for %s, %s...", place.city, place.state)
        if not city_slug(place.city):
            LOG.warning("No usable city name in %r; nothing to probe", place.city)
            return []

        found = []
        for org_type, domain in candidate_domains(place):
            found.extend(self.check_domain_for_feeds(domain, place, org_type))

        found.sort(key=lambda f: f.confidence, reverse=True)
        LOG.info("Discovered %d potential feeds for %s, %s", len(found), place.city, place.state)
        return found

    def discover_feeds_for_popular_location(self, city_name, state_name):
        place = Place(city=city_name, state=state_abbreviation(state_name))
        feeds = self.discover_feeds_for_location(place)
        feeds.extend(self.check_known_patterns(place))

        seen, out = set(), []
        for feed in feeds:
            key = feed.source.feed_url
            if key in seen:
                continue
            seen.add(key)
            out.append(feed)
        return out

    # ---- probing ----
    def probe_domain(self, domain):
        """GET the homepage. Returns (base_url, html) or None when the domain looks absent."""
        base_url = f"https://{domain}"
        try:
            resp = http_request(
                base_url + "/", timeout=self.probe_timeout, user_agent=self.user_agent
            )
        except FeedError as ex:
            LOG.debug("Domain %s not accessible: %s", domain, ex)
            return None
        if resp.status_code == 404 or resp.status_code >= 500:
            LOG.debug("Domain %s answered %d; treating as absent", domain, resp.status_code)
            return None
        return base_url, resp.text or ""

    def homepage_links(self, html, base_url):
        """Calendar/events links on a homepage that stay on its host, resolved, in document order."""
        home = _bare_host(base_url)
        soup = BeautifulSoup(html, "html.parser")
        links = []
        for a in soup.select('a[href*="calendar"], a[href*="events"]'):
            href = (a.get("href") or "").strip()
            if not href:
                continue
            absu = urllib.parse.urljoin(base_url + "/", href).split("#", 1)[0]
            if urllib.parse.urlsplit(absu).scheme not in ("http", "https"):
                continue
            if _bare_host(absu) != home:
                LOG.debug("Skipping off-site link %s", absu)
                continue
            links.append(absu)
        return links

    def candidate_urls(self, html, base_url):
        urls = dict.fromkeys(self.homepage_links(html, base_url))
        for path in COMMON_FEED_PATHS:
            urls.setdefault(base_url + path, None)
        return list(urls)[: self.max_paths]

    def check_domain_for_feeds(self, domain, place, org_type):
        probed = self.probe_domain(domain)
        if probed is None:
            return []
        base_url, html = probed
        urls = self.candidate_urls(html, base_url)
        LOG.debug("Domain %s exists; validating %d candidate URLs", domain, len(urls))

        with ThreadPoolExecutor(max_workers=max(1, len(urls))) as pool:
            results = pool.map(lambda u: self.validate_feed_url(u, place, org_type), urls)
            return [feed for feed in results if feed is not None]

    def validate_feed_url(self, feed_url, place, org_type):
        try:
            headers = fetch_headers(
                feed_url, timeout=self.validate_timeout, user_agent=self.user_agent
            )
        except FeedError as ex:
            LOG.debug("Candidate %s rejected: %s", feed_url, ex)
            return None

        feed_type, confidence = score_feed(feed_url, headers.get("content-type", ""))
        source = FeedSource(
            id=new_source_id(place.city, org_type),
            name=source_name(place.city, org_type),
            city=place.city,
            state=place.state,
            type=org_type,
            feed_url=feed_url,
            website_url=origin_of(feed_url),
            is_active=False,
            feed_type=feed_type,
        )
        return DiscoveredFeed(
            source=source, confidence=confidence, last_checked=datetime.now(timezone.utc)
        )

    def check_known_patterns(self, place):
        feeds = []
        for url in known_pattern_urls(place):
            feed = self.validate_feed_url(url, place, "city")
            if feed:
                feed.confidence = clamp(feed.confidence + KNOWN_PATTERN_BOOST)
                feeds.append(feed)
        return feeds
