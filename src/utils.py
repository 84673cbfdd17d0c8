import hashlib, re
from datetime import datetime
from dateutil import parser, tz

from models import DEFAULT_CATEGORY

DEFAULT_TZ = "America/New_York"
MAX_TEXT_LEN = 300

HTML_TAG_RE = re.compile(r"<[^>]*>")
ENTITY_RE = re.compile(r"&[^;\s]+;")
WS_RE = re.compile(r"\s+")

# First match wins; keywords are matched as substrings of "title description".
CATEGORY_RULES = [
    (("council", "meeting", "public"), "Community & Social"),
    (("school", "education", "class"), "Education & Learning"),
    (("business", "networking", "chamber"), "Business & Networking"),
    (("art", "gallery", "exhibition"), "Arts & Culture"),
    (("music", "concert", "performance"), "Music & Concerts"),
    (("sport", "game", "tournament"), "Sports & Recreation"),
    (("food", "dining", "restaurant"), "Food & Dining"),
    (("health", "wellness", "fitness"), "Health & Wellness"),
    (("family", "kids", "children"), "Family & Kids"),
    (("holiday", "celebration", "festival"), "Holiday"),
]

DATE_PATTERNS = [
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}"),
    re.compile(r"\d{4}-\d{1,2}-\d{1,2}"),
    re.compile(r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\w*\.?\s+\d{1,2},?\s+\d{4}", re.I),
]


def hash_event(title, start, location):
    base = f"{(title or '').strip()}|{start.isoformat()}|{(location or '').strip()}"
    return hashlib.sha1(base.encode("utf-8")).hexdigest()


def clean_text(text, limit=MAX_TEXT_LEN):
    """Strip markup, blank out entities, collapse whitespace, truncate."""
    if not text:
        return ""
    text = HTML_TAG_RE.sub("", str(text))
    text = ENTITY_RE.sub(" ", text)
    text = WS_RE.sub(" ", text).strip()
    return text[:limit]


def categorize_event(title, description, rules=CATEGORY_RULES):
    text = f"{title or ''} {description or ''}".lower()
    for keywords, category in rules:
        if any(k in text for k in keywords):
            return category
    return DEFAULT_CATEGORY


def mentions_free(text):
    return "free" in (text or "").lower()


def city_slug(city):
    s = WS_RE.sub("", (city or "").lower())
    return re.sub(r"[^a-z0-9]", "", s)


def localize(dt, default_tz=DEFAULT_TZ):
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz.gettz(default_tz))
    return dt


def now_local(default_tz=DEFAULT_TZ):
    return datetime.now(tz=tz.gettz(default_tz))


def time_of_day(dt):
    # 7:00 PM
    return dt.strftime("%I:%M %p").lstrip("0")


def parse_event_date(text, default_tz=DEFAULT_TZ):
    """
    Best-effort parse for a date fragment scraped from a page, e.g.
    "March 3, 2025 6:30 PM", "3/14/2025" or "Posted 2025-03-14 by Parks".
    Tries a direct parse first, then pulls out a recognizable date run.
    Returns an aware datetime, or None when nothing looks like a date.
    """
    if not text:
        return None
    text = WS_RE.sub(" ", str(text)).strip()
    try:
        return localize(parser.parse(text), default_tz)
    except (ValueError, OverflowError):
        pass
    for pat in DATE_PATTERNS:
        m = pat.search(text)
        if not m:
            continue
        try:
            return localize(parser.parse(m.group(0)), default_tz)
        except (ValueError, OverflowError):
            continue
    return None
