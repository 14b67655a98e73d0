from .settings import DEFAULT_DB_URL, Settings, load_settings

__all__ = ["DEFAULT_DB_URL", "Settings", "load_settings"]
