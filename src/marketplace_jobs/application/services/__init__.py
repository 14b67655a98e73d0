from .collection_generator import CollectionGenerator, GenerationResult
from .error_tracking import Alert, ErrorLogEntry, ErrorTrackingService
from .pause_control import Feature, RateLimitKind, SafeguardDecision, SafeguardService
from .ssl_service import CertificateStatus, SSLService
from .stuck_task_detector import StuckTaskDetector

__all__ = [
    "Alert",
    "CertificateStatus",
    "CollectionGenerator",
    "ErrorLogEntry",
    "ErrorTrackingService",
    "Feature",
    "GenerationResult",
    "RateLimitKind",
    "SSLService",
    "SafeguardDecision",
    "SafeguardService",
    "StuckTaskDetector",
]
