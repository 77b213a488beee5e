"""Configuration models using Pydantic for validation."""
import logging
import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pythonjsonlogger.json import JsonFormatter
import yaml

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class SerializerConfig(BaseModel):
    """Exposition rendering options."""
    prefix: Optional[str] = None
    append_timestamp: bool = True

    @field_validator('prefix')
    @classmethod
    def normalize_prefix(cls, v):
        """Treat an empty prefix as no prefix."""
        return v or None


class ScrapeConfig(BaseModel):
    """Scrape endpoint configuration."""
    enabled: bool = True
    path: str = "/metrics"
    expose_self_metrics: bool = True
    self_metrics_prefix: str = "promcheckpoint_"

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        if not v.startswith("/"):
            raise ValueError(f"Scrape path must start with '/', got '{v}'")
        return v


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level '{v}'")
        return level


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    serializer: SerializerConfig = Field(default_factory=SerializerConfig)
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_prefix := os.getenv('PROMETHEUS_PREFIX'):
        raw_config.setdefault('serializer', {})['prefix'] = env_prefix

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        return Config(**raw_config)
    except ValidationError as e:
        raise ValueError(f"Configuration validation failed: {e}") from e


_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_log_formatter(log_format: str = "text") -> logging.Formatter:
    """Formatter for the configured log format; "json" emits one object per line."""
    if log_format == "json":
        return JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt=_DATE_FORMAT,
            rename_fields={"asctime": "time", "levelname": "level", "name": "logger"},
        )
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def setup_logging(log_level: str, log_format: str = "text"):
    """Send log output to stderr at the configured level and format."""
    handler = logging.StreamHandler()
    handler.setFormatter(build_log_formatter(log_format))
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[handler],
    )

    # Client and access logs drown out cycle diagnostics
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
