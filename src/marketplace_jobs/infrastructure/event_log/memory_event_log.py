from __future__ import annotations

from typing import Iterable, List, Union

from marketplace_jobs.application.events import JobEvent
from marketplace_jobs.application.ports.event_log_port import EventLogPort


class InMemoryEventLog(EventLogPort):
    """Simple in-memory event log (useful for tests and the CLI)."""

    def __init__(self) -> None:
        self.events: List[dict] = []

    def append(self, event: Union[JobEvent, dict]) -> None:
        if isinstance(event, JobEvent):
            self.events.append(event.to_dict())
        else:
            self.events.append(dict(event))

    def stream(self, run_id: str) -> Iterable[dict]:
        return (e for e in self.events if e.get("run_id") == run_id)

    def of_type(self, event_type: str) -> List[dict]:
        return [e for e in self.events if e.get("type") == event_type]

    def close(self) -> None:
        return None
