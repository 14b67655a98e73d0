from .memory_event_log import InMemoryEventLog
from .sqlalchemy_event_log import SqlAlchemyEventLog

__all__ = ["InMemoryEventLog", "SqlAlchemyEventLog"]
