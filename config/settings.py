"""Settings for CrawlSearch.

Values come from defaults, an optional YAML file and environment variables,
applied in that order.
"""

import os
import logging
import re
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'CRAWLSEARCH_CONFIG'


class CrawlerSettings(BaseModel):
    """Crawl pipeline configuration."""
    max_depth: int = Field(default=3, ge=0, description="Default link depth for crawl jobs")
    max_concurrent: int = Field(default=10, ge=1, description="Maximum in-flight fetches per job")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=2, ge=0, description="Retries for retryable fetch failures")
    retry_delay: float = Field(default=0.5, ge=0, description="Base retry backoff in seconds")
    max_retry_delay: float = Field(default=10.0, ge=0, description="Upper bound for retry backoff")
    politeness_delay: float = Field(default=0.0, ge=0, description="Minimum seconds between requests to one host")
    max_content_length: int = Field(default=10000, gt=0, description="Maximum stored content length")
    min_content_length: int = Field(default=50, ge=0, description="Pages with less cleaned text are skipped")
    respect_robots_txt: bool = Field(default=False, description="Skip URLs disallowed by robots.txt")
    user_agent: str = Field(default="CrawlSearchBot/1.0", description="User-Agent header for fetches")
    job_timeout: Optional[float] = Field(default=None, description="Wall-clock limit for one crawl job")
    index_queue_size: int = Field(default=100, ge=1, description="Documents buffered ahead of the indexer")
    max_response_bytes: int = Field(default=10 * 1024 * 1024, ge=0, description="Largest response body read; 0 disables the limit")
    allowed_domains: List[str] = Field(default_factory=list, description="Only crawl these domains (empty allows all)")
    blocked_domains: List[str] = Field(default_factory=list, description="Never crawl these domains")
    include_patterns: List[str] = Field(default_factory=list, description="Regexes a URL must match one of (empty allows all)")
    exclude_patterns: List[str] = Field(default_factory=list, description="Regexes that reject a URL")

    @field_validator('include_patterns', 'exclude_patterns')
    @classmethod
    def validate_patterns(cls, patterns: List[str]) -> List[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid URL pattern {pattern!r}: {e}") from e
        return patterns


class IndexSettings(BaseModel):
    """Search engine (Meilisearch) connection configuration."""
    url: str = Field(default="http://localhost:7700", description="Engine base URL")
    api_key: Optional[str] = Field(default=None, description="Engine API key")
    index_name: str = Field(default="documents", description="Index holding crawled documents")
    request_timeout: float = Field(default=10.0, gt=0, description="Engine request timeout in seconds")
    task_timeout: float = Field(default=30.0, gt=0, description="Maximum wait for an engine task")
    wait_for_tasks: bool = Field(default=False, description="Wait for upsert tasks to finish")


class ApiSettings(BaseModel):
    """HTTP server configuration."""
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Bind port")
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"], description="CORS origins")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")


class Settings(BaseModel):
    """Top-level settings."""
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls, config_path: Optional[str] = None) -> 'Settings':
        """Create settings from an optional YAML file and environment variables."""
        data: Dict[str, Any] = {}

        config_path = config_path or os.getenv(CONFIG_ENV_VAR)
        if config_path:
            data = _deep_merge(data, _load_yaml(config_path))

        data = _deep_merge(data, _env_overrides())
        return cls(**data)


# Environment variable → (section, field)
_ENV_FIELDS = {
    'CRAWLER_MAX_DEPTH': ('crawler', 'max_depth'),
    'CRAWLER_MAX_CONCURRENT': ('crawler', 'max_concurrent'),
    'CRAWLER_REQUEST_TIMEOUT': ('crawler', 'request_timeout'),
    'CRAWLER_MAX_RETRIES': ('crawler', 'max_retries'),
    'CRAWLER_RETRY_DELAY': ('crawler', 'retry_delay'),
    'CRAWLER_POLITENESS_DELAY': ('crawler', 'politeness_delay'),
    'CRAWLER_MAX_CONTENT_LENGTH': ('crawler', 'max_content_length'),
    'CRAWLER_MIN_CONTENT_LENGTH': ('crawler', 'min_content_length'),
    'CRAWLER_RESPECT_ROBOTS_TXT': ('crawler', 'respect_robots_txt'),
    'CRAWLER_USER_AGENT': ('crawler', 'user_agent'),
    'CRAWLER_JOB_TIMEOUT': ('crawler', 'job_timeout'),
    'CRAWLER_MAX_RESPONSE_BYTES': ('crawler', 'max_response_bytes'),
    'CRAWLER_ALLOWED_DOMAINS': ('crawler', 'allowed_domains'),
    'CRAWLER_BLOCKED_DOMAINS': ('crawler', 'blocked_domains'),
    'MEILISEARCH_URL': ('index', 'url'),
    'MEILISEARCH_API_KEY': ('index', 'api_key'),
    'MEILISEARCH_INDEX': ('index', 'index_name'),
    'MEILISEARCH_WAIT_FOR_TASKS': ('index', 'wait_for_tasks'),
    'API_HOST': ('api', 'host'),
    'API_PORT': ('api', 'port'),
    'ALLOWED_ORIGINS': ('api', 'allowed_origins'),
    'LOG_LEVEL': ('api', 'log_level'),
    'LOG_JSON': ('api', 'log_json'),
}


# Comma-separated lists in the environment
_LIST_FIELDS = {'allowed_origins', 'allowed_domains', 'blocked_domains'}


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, (section, field) in _ENV_FIELDS.items():
        value = os.getenv(env_name)
        if value is None or value == '':
            continue
        if field in _LIST_FIELDS:
            value = [item.strip() for item in value.split(',') if item.strip()]
        overrides.setdefault(section, {})[field] = value
    return overrides


def _load_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        logger.warning(f"Config file not found at {path}, using defaults")
        return {}

    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
