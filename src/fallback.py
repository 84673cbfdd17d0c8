import logging
import random
from datetime import timedelta

from models import EventRecord
from utils import DEFAULT_TZ, now_local, time_of_day

LOG = logging.getLogger("fallback")

FALLBACK_COUNT = 3

# (title, category, duration in hours)
FALLBACK_TEMPLATES = [
    ("City Council Meeting", "Community & Social", 2),
    ("Public Library Story Time", "Family & Kids", 1),
    ("Business Networking Event", "Business & Networking", 2),
    ("Community Health Fair", "Health & Wellness", 4),
    ("Local Art Exhibition Opening", "Arts & Culture", 3),
]


def generate_fallback_events(source, now=None, rng=None, default_tz=DEFAULT_TZ):
    """
    Placeholder events for a source whose feed could not be read. Event i
    starts (i + 1) days out plus up to 12 random hours, so every start is in
    the future. All records carry is_synthetic=True.
    """
    rng = rng or random.Random()
    now = now or now_local(default_tz)
    out = []
    for i in range(FALLBACK_COUNT):
        title, category, hours = FALLBACK_TEMPLATES[i % len(FALLBACK_TEMPLATES)]
        start = now + timedelta(days=i + 1, seconds=rng.uniform(0, 12 * 3600))
        end = start + timedelta(hours=hours)
        out.append(
            EventRecord(
                title=f"{title} - {source.city}",
                description=(
                    f"Join us for this community event in {source.city}, {source.state}. "
                    "Event details and registration available on our website."
                ),
                category=category,
                location=f"{source.city}, {source.state}",
                organizer=source.name,
                start_date=start,
                end_date=end,
                start_time=time_of_day(start),
                end_time=time_of_day(end),
                attendees=rng.randint(20, 119),
                image_url=None,
                is_free=rng.random() > 0.3,
                source=source.id,
                is_synthetic=True,
            )
        )
    LOG.debug("fallback: %d placeholder events for %s", len(out), source.id)
    return out
