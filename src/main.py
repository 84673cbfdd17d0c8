# src/main.py
import os
import sys
import json
import yaml
import argparse
import logging
from datetime import datetime, timezone
from ics import Calendar, Event

# ---- Add TRACE level ---------------------------------------------------------
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

def _trace(self, msg, *args, **kwargs):
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)

logging.Logger.trace = _trace  # type: ignore[attr-defined]

def _init_logging():
    # FEEDS_LOG_LEVEL overrides; otherwise honor FEEDS_TRACE/FEEDS_DEBUG
    env_level = os.getenv("FEEDS_LOG_LEVEL", "").upper().strip()
    if not env_level:
        if os.getenv("FEEDS_TRACE"):
            env_level = "TRACE"
        elif os.getenv("FEEDS_DEBUG"):
            env_level = "DEBUG"
        else:
            env_level = "INFO"

    level_map = {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
        "TRACE": TRACE,
        "NOTSET": logging.NOTSET,
    }
    level = level_map.get(env_level, logging.INFO)

    fmt = "%(asctime)s %(levelname)-5s %(name)s :: %(message)s"
    logging.basicConfig(level=level, format=fmt)

log = logging.getLogger("main")

from collector import EventCollector
from discovery import FeedDiscoverer
from models import FeedSource
from registry import SourceRegistry
from storage import MemoryEventStore
from utils import DEFAULT_TZ, hash_event

CONFIG_PATH = "config.yaml"
DATA_EVENTS = "data/events.json"
DOCS_CALENDAR = "docs/events.ics"
DISCOVERED_SOURCES = "data/discovered_sources.yaml"


def load_config(path=None):
    path = path or os.getenv("FEEDS_CONFIG") or CONFIG_PATH
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return cfg


def load_discovered(cfg):
    path = (cfg.get("output", {}) or {}).get("discovered", DISCOVERED_SOURCES)
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or []


def build_registry(cfg):
    registry = SourceRegistry.from_config(cfg.get("sources", []))
    for entry in load_discovered(cfg):
        registry.add_source(FeedSource.from_dict(entry, default_active=False))
    return registry


def save_discovered(cfg, sources):
    path = (cfg.get("output", {}) or {}).get("discovered", DISCOVERED_SOURCES)
    entries = load_discovered(cfg) + [s.to_dict() for s in sources]
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(entries, f, sort_keys=False)
    log.info("Wrote %s (discovered sources=%d)", path, len(entries))


def build_collector(cfg, registry):
    c = cfg.get("collection", {}) or {}
    return EventCollector(
        registry,
        batch_size=int(c.get("batch_size", 5)),
        batch_delay=float(c.get("batch_delay", 2.0)),
        feed_timeout=float(c.get("feed_timeout", 10)),
        html_timeout=float(c.get("html_timeout", 15)),
        default_tz=cfg.get("timezone", DEFAULT_TZ),
    )


def build_discoverer(cfg):
    d = cfg.get("discovery", {}) or {}
    kwargs = {
        "probe_timeout": float(d.get("probe_timeout", 5)),
        "validate_timeout": float(d.get("validate_timeout", 3)),
        "max_paths": int(d.get("max_paths_per_domain", 10)),
    }
    if d.get("user_agent"):
        kwargs["user_agent"] = d["user_agent"]
    return FeedDiscoverer(**kwargs)


def to_ics_event(ev):
    now_utc = datetime.now(timezone.utc)
    e = Event(created=now_utc, last_modified=now_utc)
    e.name = ev.title
    e.begin = ev.start_date
    e.end = ev.end_date
    if ev.location:
        e.location = ev.location

    desc = ev.description or ""
    if ev.is_synthetic:
        desc = (desc + "\n" if desc else "") + "[placeholder: source feed unavailable]"
    if desc:
        e.description = desc
    e.uid = hash_event(ev.title, ev.start_date, ev.location) + "@civic-event-feeds"
    return e


def build_calendar(events, out_path):
    cal = Calendar()
    seen = set()
    for ev in events:
        e = to_ics_event(ev)
        if e.uid in seen:
            log.trace("skip duplicate %s", ev.title)
            continue
        seen.add(e.uid)
        cal.events.add(e)

    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8", newline="\n") as f:
        f.writelines(cal.serialize_iter())
    log.info("Wrote calendar %s (events=%d)", out_path, len(seen))


def write_events_json(events, out_path):
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    rows = [ev.to_dict() for ev in sorted(events, key=lambda ev: ev.start_date)]
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump({"events": rows}, f, indent=2, default=str)
    log.info("Wrote %s (events=%d)", out_path, len(rows))


# ---- commands ----------------------------------------------------------------
def cmd_collect(cfg, args):
    registry = build_registry(cfg)
    events = build_collector(cfg, registry).collect_all()
    out = cfg.get("output", {}) or {}
    write_events_json(events, args.json or out.get("events_json", DATA_EVENTS))
    build_calendar(events, args.ics or out.get("calendar", DOCS_CALENDAR))
    return 0


def cmd_sync(cfg, args):
    registry = build_registry(cfg)
    store = MemoryEventStore()
    saved = build_collector(cfg, registry).sync_to_storage(store)
    print(json.dumps({
        "message": "Event synchronization completed",
        "synced_count": saved,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }, indent=2))
    return 0


def cmd_discover(cfg, args):
    feeds = build_discoverer(cfg).discover_feeds_for_popular_location(args.city, args.state)
    added = []
    if args.add:
        registry = build_registry(cfg)
        accepted = [f.source for f in feeds if registry.add_source(f.source)]
        if accepted:
            save_discovered(cfg, accepted)
        added = [s.id for s in accepted]
    print(json.dumps({
        "location": {"city": args.city, "state": args.state},
        "discovered_feeds": [f.to_dict() for f in feeds],
        "count": len(feeds),
        "added": added,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }, indent=2))
    return 0


def cmd_sources(cfg, args):
    registry = build_registry(cfg)
    if args.state:
        chosen = registry.sources_by_state(args.state)
    elif args.type:
        chosen = registry.sources_by_type(args.type)
    else:
        chosen = registry.list_sources()
    print(json.dumps({
        "sources": [s.to_dict() for s in chosen],
        **registry.summary(),
    }, indent=2))
    return 0


def build_parser():
    p = argparse.ArgumentParser(prog="civic-feeds", description="Municipal calendar feed collector")
    p.add_argument("--config", help="path to config.yaml (default: $FEEDS_CONFIG or ./config.yaml)")
    sub = p.add_subparsers(dest="command")

    c = sub.add_parser("collect", help="collect active sources and write JSON + iCalendar output")
    c.add_argument("--json", help="events JSON output path")
    c.add_argument("--ics", help="iCalendar output path")
    c.set_defaults(func=cmd_collect)

    s = sub.add_parser("sync", help="collect and persist into the event store")
    s.set_defaults(func=cmd_sync)

    d = sub.add_parser("discover", help="discover feeds for a city")
    d.add_argument("city")
    d.add_argument("state", help="state name or code")
    d.add_argument("--add", action="store_true", help="save new feeds to the discovered catalog (inactive)")
    d.set_defaults(func=cmd_discover)

    ls = sub.add_parser("sources", help="list the source catalog")
    ls.add_argument("--state")
    ls.add_argument("--type")
    ls.set_defaults(func=cmd_sources)
    return p


def main(argv=None):
    _init_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        args.func, args.json, args.ics = cmd_collect, None, None
    cfg = load_config(args.config)
    log.info("Config: tz=%s sources=%d", cfg.get("timezone", DEFAULT_TZ), len(cfg.get("sources", [])))
    return args.func(cfg, args)


if __name__ == "__main__":
    sys.exit(main())
