from .event_log_port import EventLogPort
from .registrar_port import DomainAvailability, DomainRegistration, RegistrarPort

__all__ = ["DomainAvailability", "DomainRegistration", "EventLogPort", "RegistrarPort"]
