"""
pydantic-validated settings for workers and the CLI.

Values come from an optional YAML file (``MARKETPLACE_JOBS_CONFIG``) and are
then overridden by environment variables, so a deployment can run on env alone.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from arq.connections import RedisSettings
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DB_URL = "sqlite:///data/marketplace_jobs.db"


class RedisConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = ""
    host: str = "127.0.0.1"
    port: int = 6379
    database: int = 0
    password: Optional[str] = None

    def to_arq(self) -> RedisSettings:
        if self.url:
            return RedisSettings.from_dsn(self.url)
        return RedisSettings(
            host=self.host,
            port=self.port,
            database=self.database,
            password=self.password or None,
        )


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = DEFAULT_DB_URL


class CloudflareConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_token: str = ""
    api_key: str = ""
    email: str = ""
    account_id: str = ""


class RegistrantContact(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str = ""
    last_name: str = ""
    address1: str = ""
    city: str = ""
    state_province: str = ""
    postal_code: str = ""
    country: str = "US"
    phone: str = ""
    email_address: str = ""


class NamecheapConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_user: str = ""
    api_key: str = ""
    username: str = ""
    client_ip: str = ""
    sandbox: bool = True
    contact: RegistrantContact = Field(default_factory=RegistrantContact)


class HostingConfig(BaseModel):
    """Where tenant domains should point once DNS is configured."""

    model_config = ConfigDict(extra="ignore")

    root_target: str = ""
    www_target: str = ""
    enable_www: bool = True
    proxied: bool = True


class SchedulerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    stuck_pending_minutes: int = 30
    stuck_running_minutes: int = 60
    max_stuck_retries: int = 3


class SslConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: str = "full"
    max_wait_seconds: float = 120.0
    poll_interval_seconds: float = 10.0
    renewal_threshold_days: int = 30


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    redis: RedisConfig = Field(default_factory=RedisConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cloudflare: CloudflareConfig = Field(default_factory=CloudflareConfig)
    namecheap: NamecheapConfig = Field(default_factory=NamecheapConfig)
    hosting: HostingConfig = Field(default_factory=HostingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    ssl: SslConfig = Field(default_factory=SslConfig)
    log_level: str = "INFO"


# env var -> (section, key); a None section means a top-level field
_ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str]] = {
    "REDIS_URL": ("redis", "url"),
    "MARKETPLACE_REDIS_HOST": ("redis", "host"),
    "MARKETPLACE_REDIS_PORT": ("redis", "port"),
    "MARKETPLACE_REDIS_DB": ("redis", "database"),
    "MARKETPLACE_REDIS_PASSWORD": ("redis", "password"),
    "MARKETPLACE_DB_URL": ("database", "url"),
    "CLOUDFLARE_API_TOKEN": ("cloudflare", "api_token"),
    "CLOUDFLARE_API_KEY": ("cloudflare", "api_key"),
    "CLOUDFLARE_EMAIL": ("cloudflare", "email"),
    "CLOUDFLARE_ACCOUNT_ID": ("cloudflare", "account_id"),
    "NAMECHEAP_API_USER": ("namecheap", "api_user"),
    "NAMECHEAP_API_KEY": ("namecheap", "api_key"),
    "NAMECHEAP_USERNAME": ("namecheap", "username"),
    "NAMECHEAP_CLIENT_IP": ("namecheap", "client_ip"),
    "NAMECHEAP_SANDBOX": ("namecheap", "sandbox"),
    "HOSTING_ROOT_TARGET": ("hosting", "root_target"),
    "HOSTING_WWW_TARGET": ("hosting", "www_target"),
    "ENABLE_SCHEDULER": ("scheduler", "enabled"),
    "SSL_MODE": ("ssl", "mode"),
    "LOG_LEVEL": (None, "log_level"),
}


def _apply_env(data: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})
            data[section][key] = value
    return data


def load_settings(config_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load YAML (if any) then apply environment overrides."""
    env = os.environ if env is None else env
    path = config_path or env.get("MARKETPLACE_JOBS_CONFIG")
    data: Dict[str, Any] = {}
    if path and Path(path).exists():
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return Settings.model_validate(_apply_env(data, env))
