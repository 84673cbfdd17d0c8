"""
Candidate host names for a place. Pure string work, no network.

Templates take {city} (the city slug) and {state} (lowercased region code).
"""
import re

from utils import city_slug

GOVERNMENT_PATTERNS = [
    "{city}.gov",
    "{city}.{state}.gov",
    "www.{city}.gov",
    "www.{city}.{state}.gov",
    "{city}{state}.gov",
    "city{city}.gov",
    "cityof{city}.gov",
]

SCHOOL_DISTRICT_PATTERNS = [
    "{city}schools.org",
    "{city}schools.edu",
    "{city}sd.org",
    "{city}isd.org",
    "www.{city}schools.org",
    "www.{city}schools.edu",
]

CHAMBER_PATTERNS = [
    "{city}chamber.org",
    "{city}chamber.com",
    "www.{city}chamber.org",
    "www.{city}chamber.com",
    "{city}chamberofcommerce.org",
    "{city}chamberofcommerce.com",
]

# org type -> templates, in probing order
PATTERN_FAMILIES = [
    ("city", GOVERNMENT_PATTERNS),
    ("school", SCHOOL_DISTRICT_PATTERNS),
    ("chamber", CHAMBER_PATTERNS),
]

KNOWN_PATTERN_URLS = [
    "https://www.{city}.gov/calendar",
    "https://{city}.gov/events",
    "https://www.{city}.gov/calendar.ics",
    "https://calendar.{city}.gov",
    "https://events.{city}.gov",
]


def state_slug(state):
    return re.sub(r"[^a-z0-9]", "", (state or "").lower())


def expand(template, place):
    # KeyError/IndexError here means a broken template table; let it raise.
    return template.format(city=city_slug(place.city), state=state_slug(place.state))


def candidate_domains(place, families=PATTERN_FAMILIES):
    """Yield (org_type, domain) for every template family, in table order."""
    for org_type, templates in families:
        for template in templates:
            yield org_type, expand(template, place)


def known_pattern_urls(place):
    return [expand(t, place) for t in KNOWN_PATTERN_URLS]
