import time
import json
import logging
import re
import requests
import feedparser
from dataclasses import replace
from datetime import datetime, timedelta
from bs4 import BeautifulSoup
from dateutil import parser, tz

from models import EventRecord
from utils import (
    DEFAULT_TZ,
    MAX_TEXT_LEN,
    categorize_event,
    clean_text,
    localize,
    mentions_free,
    now_local,
    parse_event_date,
    time_of_day,
)

LOG = logging.getLogger("sources")
HTTP_LOG = logging.getLogger("sources.http")

USER_AGENT = "CityWide Events Aggregator 1.0"
BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

FEED_TIMEOUT = 10
HTML_TIMEOUT = 15
MAX_EVENTS_PER_SOURCE = 10
HTML_MAX_MATCHES = 5
FEED_RETRIES = 2
RETRY_STATUSES = (429, 500, 502, 503, 504)

DEFAULT_DESCRIPTION = "Event details available on website"

HTML_EVENT_SELECTORS = [
    ".event-item, .event, .calendar-event",
    '[class*="event"], [id*="event"]',
    ".upcoming-events li, .events-list li",
]


class FeedError(Exception):
    """Base class for anything that goes wrong reading a feed."""


class TransportError(FeedError):
    """Connection, DNS, timeout, or an HTTP status we can't use."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class NotFoundError(TransportError):
    """Explicit 404: the resource is absent."""

    def __init__(self, url):
        super().__init__(f"HTTP 404 for {url}", status=404)


class ParseError(FeedError):
    """Payload doesn't match the format the source claims."""


# ---------------- HTTP ----------------
def http_request(url, method="GET", headers=None, timeout=FEED_TIMEOUT, max_retries=1,
                 user_agent=USER_AGENT):
    """
    Issue a request and return the response whatever its status. Retries with
    backoff on 429/5xx and connection errors while attempts remain. Raises
    TransportError when no response could be obtained at all.
    """
    headers = dict(headers or {})
    headers.setdefault("User-Agent", user_agent)
    backoff = 1
    resp = None
    last_error = None
    with requests.Session() as session:
        for attempt in range(max_retries):
            try:
                HTTP_LOG.debug("HTTP %s %s (timeout=%ss)", method, url, timeout)
                resp = session.request(
                    method, url, headers=headers, timeout=timeout, allow_redirects=True
                )
            except requests.RequestException as ex:
                last_error = ex
                resp = None
                HTTP_LOG.debug("HTTP %s %s error: %s", method, url, ex)
            else:
                if resp.status_code not in RETRY_STATUSES:
                    return resp
                HTTP_LOG.warning("HTTP %s -> %d", url, resp.status_code)
            if attempt + 1 < max_retries:
                time.sleep(backoff)
                backoff = min(backoff * 2, 30)
    if resp is not None:
        return resp
    raise TransportError(f"{method} {url} failed: {last_error}")


def _require_ok(resp, url):
    if resp.status_code == 404:
        raise NotFoundError(url)
    if not 200 <= resp.status_code < 300:
        raise TransportError(f"HTTP {resp.status_code} for {url}", status=resp.status_code)
    return resp


def fetch_text(url, timeout=FEED_TIMEOUT, user_agent=USER_AGENT, max_retries=1):
    resp = http_request(url, timeout=timeout, user_agent=user_agent, max_retries=max_retries)
    return _require_ok(resp, url).text


def fetch_headers(url, timeout=3, user_agent=USER_AGENT):
    """HEAD a URL and return its headers; only 2xx counts."""
    resp = http_request(url, method="HEAD", timeout=timeout, user_agent=user_agent)
    return _require_ok(resp, url).headers


# ---------------- record helpers ----------------
def _default_location(source):
    return f"{source.city}, {source.state}"


def _make_record(source, title, description, start, end, location=None,
                 attendees=0, image_url=None, is_free=None):
    if is_free is None:
        is_free = mentions_free(description)
    return EventRecord(
        title=title,
        description=description,
        category=categorize_event(title, description),
        location=location or _default_location(source),
        organizer=source.name,
        start_date=start,
        end_date=end,
        start_time=time_of_day(start),
        end_time=time_of_day(end),
        attendees=attendees,
        image_url=image_url,
        is_free=is_free,
        source=source.id,
    )


# ---------------- iCalendar ----------------
def ics_unescape(s: str) -> str:
    return (
        s.replace("\\n", "\n")
        .replace("\\N", "\n")
        .replace("\\,", ",")
        .replace("\\;", ";")
        .replace("\\\\", "\\")
    )


def _split_prop(line):
    """'DTSTART;TZID=America/Chicago:20250301T100000' -> (name, params, value)."""
    head, _, value = line.partition(":")
    name, *raw_params = head.split(";")
    params = {}
    for p in raw_params:
        k, _, v = p.partition("=")
        params[k.upper()] = v.strip('"')
    return name.upper(), params, value


def iter_vevents(body):
    """
    Yield each VEVENT as {PROP: (params, value)}, first occurrence wins.
    Content lines are unfolded before splitting.
    """
    unfolded = []
    for ln in body.splitlines():
        if ln.startswith((" ", "\t")) and unfolded:
            unfolded[-1] += ln[1:]
        else:
            unfolded.append(ln.rstrip("\r"))

    current = None
    depth = 0
    for ln in unfolded:
        upper = ln.strip().upper()
        if upper == "BEGIN:VEVENT":
            current, depth = {}, 0
            continue
        if current is None:
            continue
        if upper == "END:VEVENT":
            yield current
            current = None
            continue
        # skip nested components such as VALARM
        if upper.startswith("BEGIN:"):
            depth += 1
            continue
        if upper.startswith("END:"):
            depth = max(depth - 1, 0)
            continue
        if depth or ":" not in ln:
            continue
        name, params, value = _split_prop(ln)
        current.setdefault(name, (params, value))


def parse_ics_dt(prop, default_tz=DEFAULT_TZ):
    if not prop:
        return None
    params, value = prop
    value = value.strip()
    if not value:
        return None
    try:
        if params.get("VALUE") == "DATE" or re.fullmatch(r"\d{8}", value):
            dt = datetime.strptime(value[:8], "%Y%m%d")
            return dt.replace(tzinfo=tz.gettz(default_tz))
        if value.endswith("Z"):
            return parser.parse(value[:-1]).replace(tzinfo=tz.UTC)
        dt = parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None and params.get("TZID"):
        zone = tz.gettz(params["TZID"])
        if zone is not None:
            return dt.replace(tzinfo=zone)
    return localize(dt, default_tz)


def parse_ical_feed(source, timeout=FEED_TIMEOUT, default_tz=DEFAULT_TZ):
    if not source.feed_url:
        return []
    body = fetch_text(source.feed_url, timeout=timeout, max_retries=FEED_RETRIES)
    if "BEGIN:VCALENDAR" not in body.upper():
        raise ParseError(f"{source.feed_url} is not an iCalendar document")

    events = []
    for comp in iter_vevents(body):
        summary = comp.get("SUMMARY")
        title = clean_text(ics_unescape(summary[1])) if summary else ""
        start = parse_ics_dt(comp.get("DTSTART"), default_tz)
        if not title or not start:
            LOG.debug("ICS %s: skip component (title=%r start=%r)", source.id, title, start)
            continue
        end = parse_ics_dt(comp.get("DTEND"), default_tz) or start + timedelta(hours=1)
        if end < start:
            end = start + timedelta(hours=1)
        desc = comp.get("DESCRIPTION")
        desc = (clean_text(ics_unescape(desc[1])) if desc else "") or DEFAULT_DESCRIPTION
        loc = comp.get("LOCATION")
        loc = (clean_text(ics_unescape(loc[1])) if loc else "") or None
        events.append(_make_record(source, title, desc, start, end, location=loc))
        if len(events) >= MAX_EVENTS_PER_SOURCE:
            break
    LOG.debug("ICS %s -> %d events", source.feed_url, len(events))
    return events


def parse_webcal_feed(source, timeout=FEED_TIMEOUT, default_tz=DEFAULT_TZ):
    if not source.feed_url:
        return []
    https_url = re.sub(r"^webcal://", "https://", source.feed_url, flags=re.I)
    return parse_ical_feed(replace(source, feed_url=https_url), timeout=timeout, default_tz=default_tz)


# ---------------- RSS / Atom ----------------
def parse_rss_feed(source, timeout=FEED_TIMEOUT, default_tz=DEFAULT_TZ):
    if not source.feed_url:
        return []
    body = fetch_text(source.feed_url, timeout=timeout, max_retries=FEED_RETRIES)
    feed = feedparser.parse(body)
    if feed.bozo and not feed.entries:
        raise ParseError(f"{source.feed_url}: {feed.get('bozo_exception')}")

    events = []
    for e in feed.entries[:MAX_EVENTS_PER_SOURCE]:
        title = clean_text(e.get("title")) or "Untitled Event"
        desc = clean_text(e.get("summary") or e.get("description")) or DEFAULT_DESCRIPTION
        start = None
        for k in ["published", "updated", "created"]:
            if e.get(k):
                try:
                    start = localize(parser.parse(e.get(k)), default_tz)
                    break
                except (ValueError, OverflowError):
                    pass
        start = start or now_local(default_tz)
        events.append(_make_record(source, title, desc, start, start + timedelta(hours=2)))
    LOG.debug("RSS %s -> %d events", source.feed_url, len(events))
    return events


# ---------------- JSON ----------------
def _first(ev, *keys):
    for k in keys:
        v = ev.get(k)
        if v not in (None, ""):
            return v
    return None


def _json_dt(val, default_tz):
    if val in (None, ""):
        return None
    try:
        if isinstance(val, (int, float)):
            # epoch seconds, or millis from JS-flavored APIs
            secs = val / 1000 if val > 1e11 else val
            return datetime.fromtimestamp(secs, tz=tz.UTC)
        return localize(parser.parse(str(val)), default_tz)
    except (ValueError, OverflowError, OSError):
        return None


def _is_zero_price(price):
    if isinstance(price, bool):
        return False
    try:
        return float(price) == 0
    except (TypeError, ValueError):
        return False


def parse_json_feed(source, timeout=FEED_TIMEOUT, default_tz=DEFAULT_TZ):
    if not source.feed_url:
        return []
    body = fetch_text(source.feed_url, timeout=timeout, max_retries=FEED_RETRIES)
    try:
        data = json.loads(body)
    except ValueError as ex:
        raise ParseError(f"{source.feed_url}: invalid JSON ({ex})") from ex

    if isinstance(data, list):
        seq = data
    elif isinstance(data, dict):
        seq = data.get("events") or data.get("items") or data.get("data") or []
    else:
        seq = []
    if not isinstance(seq, list):
        raise ParseError(f"{source.feed_url}: event list is {type(seq).__name__}")

    events = []
    for ev in seq[:MAX_EVENTS_PER_SOURCE]:
        if not isinstance(ev, dict):
            continue
        start = _json_dt(_first(ev, "start_date", "startDate", "start", "date"), default_tz)
        start = start or now_local(default_tz)
        end = _json_dt(_first(ev, "end_date", "endDate", "end"), default_tz) or start + timedelta(hours=2)
        if end < start:
            end = start + timedelta(hours=2)

        title = clean_text(_first(ev, "title", "name")) or "Untitled Event"
        desc = clean_text(_first(ev, "description", "summary")) or DEFAULT_DESCRIPTION

        loc = _first(ev, "location", "venue")
        if isinstance(loc, dict):
            loc = loc.get("name") or loc.get("address")
        loc = clean_text(loc) if loc else None

        try:
            attendees = int(_first(ev, "attendees", "attendee_count", "rsvp_count") or 0)
        except (TypeError, ValueError):
            attendees = 0

        if ev.get("is_free") is not None:
            is_free = bool(ev.get("is_free"))
        elif "price" in ev:
            is_free = _is_zero_price(ev.get("price")) or mentions_free(desc)
        else:
            is_free = mentions_free(desc)

        events.append(
            _make_record(
                source, title, desc, start, end,
                location=loc,
                attendees=attendees,
                image_url=_first(ev, "image_url", "image"),
                is_free=is_free,
            )
        )
    LOG.debug("JSON %s -> %d events", source.feed_url, len(events))
    return events


# ---------------- HTML ----------------
def scrape_html_events(source, timeout=HTML_TIMEOUT, default_tz=DEFAULT_TZ):
    """
    Scrape event-looking blocks off the organization's website. Selector
    groups go from specific to loose; the first group that produces events
    wins.
    """
    if not source.website_url:
        return []
    body = fetch_text(
        source.website_url, timeout=timeout, user_agent=BROWSER_UA, max_retries=FEED_RETRIES
    )
    soup = BeautifulSoup(body, "html.parser")

    events = []
    for selector in HTML_EVENT_SELECTORS:
        nodes = soup.select(selector)
        if not nodes:
            continue
        for node in nodes[:HTML_MAX_MATCHES]:
            h = node.select_one("h1, h2, h3, .title, .event-title")
            title = h.get_text(" ", strip=True) if h else ""
            if not title:
                a = node.select_one("a")
                title = a.get_text(" ", strip=True) if a else ""
            title = clean_text(title) or "Community Event"
            if len(title) <= 3:
                continue

            d = node.select_one(".description, .summary, p")
            desc = d.get_text(" ", strip=True) if d else ""
            desc = clean_text(desc[:MAX_TEXT_LEN]) or DEFAULT_DESCRIPTION

            dt_node = node.select_one(".date, .event-date, time")
            date_text = (dt_node.get("datetime") or dt_node.get_text(" ", strip=True)) if dt_node else ""
            start = parse_event_date(date_text, default_tz) or now_local(default_tz)
            events.append(_make_record(source, title, desc, start, start + timedelta(hours=2)))
        if events:
            break
    LOG.debug("HTML %s -> %d events", source.website_url, len(events))
    return events[:MAX_EVENTS_PER_SOURCE]


PARSERS = {
    "ical": parse_ical_feed,
    "rss": parse_rss_feed,
    "json": parse_json_feed,
    "webcal": parse_webcal_feed,
}


def collect_from_source(source, feed_timeout=FEED_TIMEOUT, html_timeout=HTML_TIMEOUT,
                        default_tz=DEFAULT_TZ):
    """Fetch and parse one source according to its feed type."""
    if source.feed_type == "html":
        return scrape_html_events(source, timeout=html_timeout, default_tz=default_tz)
    fn = PARSERS.get(source.feed_type)
    if fn is None:
        LOG.debug("Unknown feed type %r for %s, trying iCalendar", source.feed_type, source.id)
        fn = parse_ical_feed
    return fn(source, timeout=feed_timeout, default_tz=default_tz)
