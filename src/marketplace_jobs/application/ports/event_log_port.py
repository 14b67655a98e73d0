from __future__ import annotations

from typing import Iterable, Protocol, Union, runtime_checkable

from marketplace_jobs.application.events import JobEvent


@runtime_checkable
class EventLogPort(Protocol):
    """
    Minimal event log port.

    Implementations may keep events in memory or persist them to the DB.
    """

    def append(self, event: Union[JobEvent, dict]) -> None:
        """Append an event."""

    def stream(self, run_id: str) -> Iterable[dict]:
        """Stream events of one run, oldest first."""

    def close(self) -> None:
        """Close underlying resources (optional)."""
