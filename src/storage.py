import uuid
from dataclasses import asdict
from typing import Dict, List, Optional, Protocol

from models import EventRecord


class EventStore(Protocol):
    def create_event(self, event: EventRecord) -> dict: ...


class MemoryEventStore:
    """In-process event store keyed by generated ids. Stands in for a real database."""

    def __init__(self):
        self.events: Dict[str, dict] = {}

    def create_event(self, event: EventRecord) -> dict:
        row = asdict(event)
        row["id"] = str(uuid.uuid4())
        self.events[row["id"]] = row
        return row

    def get_event(self, event_id) -> Optional[dict]:
        return self.events.get(event_id)

    def all_events(self) -> List[dict]:
        return sorted(self.events.values(), key=lambda r: r["start_date"])

    def update_event(self, event_id, **changes) -> Optional[dict]:
        row = self.events.get(event_id)
        if row is None:
            return None
        changes.pop("id", None)
        row.update(changes)
        return row

    def delete_event(self, event_id) -> bool:
        return self.events.pop(event_id, None) is not None

    def filter_events(self, search=None, categories=None, location=None,
                      start_date=None, end_date=None) -> List[dict]:
        out = []
        needle = (search or "").lower()
        for row in self.all_events():
            if needle and needle not in row["title"].lower() and needle not in row["description"].lower():
                continue
            if categories and row["category"] not in categories:
                continue
            if location and location.lower() not in row["location"].lower():
                continue
            if start_date and row["start_date"] < start_date:
                continue
            if end_date and row["start_date"] > end_date:
                continue
            out.append(row)
        return out

    def events_by_category(self, category) -> List[dict]:
        return self.filter_events(categories=[category])
