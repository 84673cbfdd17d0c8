# src/models.py
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from dateutil import parser

CATEGORIES = (
    "Music & Concerts",
    "Sports & Recreation",
    "Community & Social",
    "Education & Learning",
    "Arts & Culture",
    "Food & Dining",
    "Holiday",
    "Business & Networking",
    "Health & Wellness",
    "Family & Kids",
)
DEFAULT_CATEGORY = "Community & Social"

ORG_TYPES = ("city", "school", "chamber", "library", "parks")
FEED_TYPES = ("ical", "rss", "webcal", "json", "html")


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_dt(val):
    if val is None or isinstance(val, datetime):
        return val
    return parser.parse(val)


@dataclass(frozen=True)
class Place:
    city: str
    state: str
    county: Optional[str] = None
    type: str = "city"  # city | county | township | village


@dataclass
class FeedSource:
    """
    A registered calendar feed. Discovered sources start inactive; curated
    seed entries are active unless the config says otherwise.
    """
    id: str
    name: str
    city: str
    state: str
    type: str
    feed_url: Optional[str] = None
    website_url: Optional[str] = None
    is_active: bool = False
    feed_type: str = "ical"
    last_sync: Optional[datetime] = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out["last_sync"] = _iso(self.last_sync)
        return out

    @classmethod
    def from_dict(cls, data: dict, default_active: bool = False) -> "FeedSource":
        missing = [k for k in ("id", "name", "city", "state", "type") if not data.get(k)]
        if missing:
            raise ValueError(f"source entry {data!r} is missing {', '.join(missing)}")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            city=str(data["city"]),
            state=str(data["state"]).upper(),
            type=str(data["type"]),
            feed_url=data.get("feed_url"),
            website_url=data.get("website_url"),
            is_active=bool(data.get("is_active", default_active)),
            feed_type=data.get("feed_type") or "ical",
            last_sync=_to_dt(data.get("last_sync")),
        )


@dataclass
class DiscoveredFeed:
    source: FeedSource
    confidence: float
    last_checked: datetime

    def to_dict(self) -> dict:
        return {
            "source": self.source.to_dict(),
            "confidence": round(self.confidence, 3),
            "last_checked": _iso(self.last_checked),
        }


@dataclass
class EventRecord:
    title: str
    description: str
    category: str
    location: str
    organizer: str
    start_date: datetime
    end_date: datetime
    start_time: str
    end_time: str
    attendees: int = 0
    image_url: Optional[str] = None
    is_free: bool = True
    source: str = ""
    # True only for placeholder events produced when a feed could not be read
    is_synthetic: bool = False

    def to_dict(self) -> dict:
        out = asdict(self)
        out["start_date"] = _iso(self.start_date)
        out["end_date"] = _iso(self.end_date)
        return out
