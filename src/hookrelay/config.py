"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional config.yaml providing defaults.
"""

import json
import os
import yaml
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/hookrelay
            "../../../config.yaml",  # In case we're deeper
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


def _parse_json_mapping(v: Any) -> Dict[str, Any]:
    if isinstance(v, str):
        try:
            parsed = json.loads(v)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    if isinstance(v, dict):
        return v
    return {}


class CacheSettings(BaseSettings):
    """Route cache configuration."""

    ttl_seconds: int = Field(default=60, gt=0, description="Lifetime of a cached route")
    sweep_interval_seconds: int = Field(default=300, gt=0, description="Expired-entry sweep interval")

    class Config:
        env_prefix = "HOOKRELAY_CACHE_"


class TenantSettings(BaseSettings):
    """Tenant resolution configuration."""

    env_override_prefix: str = Field(default="CLIENT_", description="Prefix of per-secret override variables")
    store_timeout_seconds: float = Field(default=5.0, description="Tenant store lookup timeout")
    routes: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Tenant records keyed by secret id"
    )

    @field_validator("routes", mode="before")
    def parse_routes(cls, v: Any) -> Dict[str, Dict[str, Any]]:
        """Parse tenant routes from JSON string if needed."""
        return _parse_json_mapping(v)

    class Config:
        env_prefix = "HOOKRELAY_TENANTS_"


class ForwarderSettings(BaseSettings):
    """Outbound relay configuration."""

    timeout_seconds: float = Field(default=15.0, description="Relay request timeout")
    default_content_type: str = Field(
        default="application/x-www-form-urlencoded",
        description="Content-Type sent when the inbound request had none"
    )
    user_agent: str = Field(default="hookrelay-forwarder/1.0", description="Outbound User-Agent")

    class Config:
        env_prefix = "HOOKRELAY_FORWARDER_"


class ExtractionSettings(BaseSettings):
    """Payload extraction limits."""

    max_multipart_bytes: int = Field(default=10 * 1024 * 1024, description="Maximum multipart part size (10MiB)")

    class Config:
        env_prefix = "HOOKRELAY_EXTRACTION_"


class ConversionSettings(BaseSettings):
    """Legacy identifier normalization API configuration."""

    enabled: bool = Field(default=False, description="Re-classify events with canonical identifiers")
    base_url: str = Field(default="", description="Normalization API base URL")
    timeout_seconds: float = Field(default=10.0, description="Per-identifier request timeout")

    class Config:
        env_prefix = "HOOKRELAY_CONVERSION_"


class AlertSettings(BaseSettings):
    """Slack alerting configuration."""

    slack_webhook_url: str = Field(default="", description="Slack incoming webhook URL")
    slack_bot_token: str = Field(default="", description="Slack bot token (chat:write)")
    slack_channel_id: str = Field(default="", description="Slack channel for bot delivery")
    timeout_seconds: float = Field(default=5.0, description="Alert delivery timeout")
    dedup_window_seconds: float = Field(default=60.0, description="Identical alerts are sent once per window")

    class Config:
        env_prefix = "HOOKRELAY_ALERTS_"


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    admin_token: str = Field(default="", description="Admin token for cache purge")
    enforce_tenant_rate_limit: bool = Field(
        default=False,
        description="Apply each tenant's rate_limit_per_min to inbound webhooks"
    )

    class Config:
        env_prefix = "HOOKRELAY_SECURITY_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    cache: CacheSettings = Field(default_factory=CacheSettings)
    tenants: TenantSettings = Field(default_factory=TenantSettings)
    forwarder: ForwarderSettings = Field(default_factory=ForwarderSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    conversion: ConversionSettings = Field(default_factory=ConversionSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    class Config:
        env_prefix = "HOOKRELAY_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    settings = Settings()
    return settings


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "HOOKRELAY_HOST",
        ("server", "port"): "HOOKRELAY_PORT",
        ("server", "debug"): "HOOKRELAY_DEBUG",
        ("server", "log_level"): "HOOKRELAY_LOG_LEVEL",
        ("cache", "ttl_seconds"): "HOOKRELAY_CACHE_TTL_SECONDS",
        ("cache", "sweep_interval_seconds"): "HOOKRELAY_CACHE_SWEEP_INTERVAL_SECONDS",
        ("tenants", "env_override_prefix"): "HOOKRELAY_TENANTS_ENV_OVERRIDE_PREFIX",
        ("tenants", "store_timeout_seconds"): "HOOKRELAY_TENANTS_STORE_TIMEOUT_SECONDS",
        ("forwarder", "timeout_seconds"): "HOOKRELAY_FORWARDER_TIMEOUT_SECONDS",
        ("forwarder", "default_content_type"): "HOOKRELAY_FORWARDER_DEFAULT_CONTENT_TYPE",
        ("extraction", "max_multipart_bytes"): "HOOKRELAY_EXTRACTION_MAX_MULTIPART_BYTES",
        ("conversion", "enabled"): "HOOKRELAY_CONVERSION_ENABLED",
        ("conversion", "base_url"): "HOOKRELAY_CONVERSION_BASE_URL",
        ("conversion", "timeout_seconds"): "HOOKRELAY_CONVERSION_TIMEOUT_SECONDS",
        ("alerts", "slack_webhook_url"): "HOOKRELAY_ALERTS_SLACK_WEBHOOK_URL",
        ("alerts", "slack_bot_token"): "HOOKRELAY_ALERTS_SLACK_BOT_TOKEN",
        ("alerts", "slack_channel_id"): "HOOKRELAY_ALERTS_SLACK_CHANNEL_ID",
        ("alerts", "dedup_window_seconds"): "HOOKRELAY_ALERTS_DEDUP_WINDOW_SECONDS",
        ("security", "admin_token"): "HOOKRELAY_SECURITY_ADMIN_TOKEN",
        ("security", "enforce_tenant_rate_limit"): "HOOKRELAY_SECURITY_ENFORCE_TENANT_RATE_LIMIT",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # Tenant routes are nested, pass them through as JSON
    if "HOOKRELAY_TENANTS_ROUTES" not in os.environ:
        routes = (config_data.get("tenants") or {}).get("routes")
        if routes:
            os.environ["HOOKRELAY_TENANTS_ROUTES"] = json.dumps(routes)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
