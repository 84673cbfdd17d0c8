import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

from fallback import generate_fallback_events
from sources import FEED_TIMEOUT, HTML_TIMEOUT, FeedError, collect_from_source
from utils import DEFAULT_TZ

LOG = logging.getLogger("collector")

BATCH_SIZE = 5
BATCH_DELAY = 2.0


class EventCollector:
    """
    Runs every active source in the registry, a batch at a time. Sources in a
    batch are fetched concurrently and fail independently; a source that
    can't be read contributes fallback events instead of nothing.
    """

    def __init__(self, registry, batch_size=BATCH_SIZE, batch_delay=BATCH_DELAY,
                 feed_timeout=FEED_TIMEOUT, html_timeout=HTML_TIMEOUT, default_tz=DEFAULT_TZ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.registry = registry
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.feed_timeout = feed_timeout
        self.html_timeout = html_timeout
        self.default_tz = default_tz

    def _fetch(self, source):
        return collect_from_source(
            source,
            feed_timeout=self.feed_timeout,
            html_timeout=self.html_timeout,
            default_tz=self.default_tz,
        )

    def collect_from_source(self, source):
        """Fetch one source; on any failure return its fallback events."""
        try:
            events = self._fetch(source)
        except FeedError as ex:
            LOG.info("Real feed unavailable for %s (%s), using fallback data", source.name, ex)
            return generate_fallback_events(source, default_tz=self.default_tz)
        except Exception as ex:
            LOG.exception("Source failed: %s (%s), using fallback data", source.name, ex)
            return generate_fallback_events(source, default_tz=self.default_tz)
        self.registry.mark_synced(source.id, datetime.now(timezone.utc))
        LOG.info("Collected %d events from %s, %s, %s",
                 len(events), source.name, source.city, source.state)
        return events

    def _collect_batch(self, batch):
        out = []
        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = {pool.submit(self.collect_from_source, src): src for src in batch}
            for fut in as_completed(futures):
                out.extend(fut.result())
        return out

    def collect_all(self):
        active = self.registry.active_sources()
        LOG.info("Collecting events from %d calendar sources...", len(active))
        collected = []
        for i in range(0, len(active), self.batch_size):
            batch = active[i:i + self.batch_size]
            collected.extend(self._collect_batch(batch))
            if i + self.batch_size < len(active) and self.batch_delay:
                time.sleep(self.batch_delay)
        synthetic = sum(1 for e in collected if e.is_synthetic)
        LOG.info("Total events collected: %d (%d placeholders) from %d sources",
                 len(collected), synthetic, len(active))
        return collected

    def sync_to_storage(self, store):
        """Collect everything and persist it one record at a time; returns the saved count."""
        events = self.collect_all()
        saved = 0
        for ev in events:
            try:
                store.create_event(ev)
                saved += 1
            except Exception as ex:
                LOG.error("Failed to save event %r: %s", ev.title, ex)
        LOG.info("Successfully synced %d out of %d events", saved, len(events))
        return saved
