import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from models import FeedSource

LOG = logging.getLogger("registry")


class ValidationError(ValueError):
    """A source can't be added because it collides with an existing one."""


class SourceRegistry:
    """
    The catalog of known feeds. Single owner of FeedSource entries: every
    change goes through toggle/add/remove/mark_synced, one call at a time.
    """

    def __init__(self, sources=None):
        self._sources: List[FeedSource] = []
        for src in sources or []:
            if not self.add_source(src):
                raise ValueError(f"duplicate seed source {src.id!r} ({src.feed_url})")

    @classmethod
    def from_config(cls, entries, default_active=True):
        """Build the seeded catalog from config `sources:` entries."""
        return cls([FeedSource.from_dict(e, default_active=default_active) for e in entries or []])

    def __len__(self):
        return len(self._sources)

    def list_sources(self) -> List[FeedSource]:
        return list(self._sources)

    def active_sources(self) -> List[FeedSource]:
        return [s for s in self._sources if s.is_active]

    def get_source(self, source_id) -> Optional[FeedSource]:
        for s in self._sources:
            if s.id == source_id:
                return s
        return None

    def sources_by_state(self, state) -> List[FeedSource]:
        code = (state or "").upper()
        return [s for s in self._sources if s.state == code]

    def sources_by_type(self, org_type) -> List[FeedSource]:
        return [s for s in self._sources if s.type == org_type]

    def toggle_source(self, source_id) -> Optional[bool]:
        """Flip is_active; returns the new state, or None for an unknown id."""
        src = self.get_source(source_id)
        if src is None:
            return None
        src.is_active = not src.is_active
        LOG.info("Source %s is now %s", source_id, "active" if src.is_active else "inactive")
        return src.is_active

    def _check_unique(self, source):
        for s in self._sources:
            if s.id == source.id:
                raise ValidationError(f"id {source.id!r} already registered")
            if source.feed_url and s.feed_url == source.feed_url:
                raise ValidationError(f"feed {source.feed_url} already registered as {s.id!r}")

    def add_source(self, source: FeedSource) -> bool:
        try:
            self._check_unique(source)
        except ValidationError as ex:
            LOG.info("Not adding %s: %s", source.name, ex)
            return False
        self._sources.append(source)
        LOG.info("Added calendar source: %s (%s, %s)", source.name, source.city, source.state)
        return True

    def remove_source(self, source_id) -> bool:
        for i, s in enumerate(self._sources):
            if s.id == source_id:
                del self._sources[i]
                LOG.info("Removed calendar source: %s", s.name)
                return True
        return False

    def mark_synced(self, source_id, when=None):
        src = self.get_source(source_id)
        if src is not None:
            src.last_sync = when or datetime.now(timezone.utc)

    def summary(self) -> Dict[str, object]:
        return {
            "active_count": len(self.active_sources()),
            "total_count": len(self._sources),
            "states": sorted({s.state for s in self._sources}),
            "cities": sorted({s.city for s in self._sources}),
            "types": sorted({s.type for s in self._sources}),
        }
