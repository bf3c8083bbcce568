from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .policy import DEFAULT_DENY_EXTENSIONS


class ConfigError(ValueError):
    """Raised when the configuration file is missing or malformed."""


@dataclass
class RobotsConfig:
    enabled: bool = True
    # Falls back to the top-level user_agent when empty
    user_agent: str = ""
    cache_ttl_sec: int = 86400
    failure_ttl_sec: int = 3600
    max_redirects: int = 5

    def __post_init__(self):
        if self.cache_ttl_sec < 0 or self.failure_ttl_sec < 0:
            raise ConfigError("robots cache TTLs must be >= 0")
        if self.max_redirects < 0:
            raise ConfigError("robots.max_redirects must be >= 0")


@dataclass
class PolitenessConfig:
    delay_ms: int = 200
    max_crawl_delay_sec: float = 60.0

    def __post_init__(self):
        if self.delay_ms < 0:
            raise ConfigError("politeness.delay_ms must be >= 0")
        if self.max_crawl_delay_sec < 0:
            raise ConfigError("politeness.max_crawl_delay_sec must be >= 0")


@dataclass
class LimitsConfig:
    max_depth: int = -1
    max_redirection_depth: int = 5
    max_queue_size: int = 0
    max_retries: int = 2
    workers: int = 4
    connect_timeout_ms: int = 4000
    read_timeout_ms: int = 15000

    def __post_init__(self):
        if self.max_depth < -1:
            raise ConfigError("limits.max_depth must be -1 (unlimited) or >= 0")
        if self.max_redirection_depth < 0:
            raise ConfigError("limits.max_redirection_depth must be >= 0")
        if self.max_queue_size < 0:
            raise ConfigError("limits.max_queue_size must be 0 (unbounded) or > 0")
        if self.max_retries < 0:
            raise ConfigError("limits.max_retries must be >= 0")
        if self.workers < 1:
            raise ConfigError("limits.workers must be >= 1")


@dataclass
class ScopeConfig:
    allowed_domains: List[str] = field(default_factory=list)
    allow_patterns: List[str] = field(default_factory=list)
    deny_patterns: List[str] = field(default_factory=list)
    deny_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_DENY_EXTENSIONS))


@dataclass
class StorageConfig:
    state_dir: str = "state"
    seen_file: str = "seen.jsonl"
    frontier_file: str = "frontier.jsonl"
    in_process_file: str = "in_process.jsonl"
    robots_cache_file: str = "robots_cache.jsonl"
    suffix_cache_dir: str = "psl_cache"
    sync_writes: bool = True
    compact_threshold: int = 1000

    def __post_init__(self):
        if self.compact_threshold < 1:
            raise ConfigError("storage.compact_threshold must be >= 1")


@dataclass
class LogsConfig:
    log_file: str = "logs/crawler.log"
    log_level: str = "INFO"


@dataclass
class FrontierConfig:
    workspace: str
    user_agent: str
    seeds: List[str] = field(default_factory=list)
    resumable: bool = True
    # Empty: tldextract's bundled Public Suffix List snapshot, no network
    public_suffix_urls: List[str] = field(default_factory=list)
    extra_public_suffixes: List[str] = field(default_factory=list)

    robots: RobotsConfig = field(default_factory=RobotsConfig)
    politeness: PolitenessConfig = field(default_factory=PolitenessConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    scope: ScopeConfig = field(default_factory=ScopeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)

    def __post_init__(self):
        if not self.workspace:
            raise ConfigError("workspace cannot be empty")
        if not self.user_agent:
            raise ConfigError("user_agent cannot be empty")
        if not self.robots.user_agent:
            self.robots.user_agent = self.user_agent
        self.seeds = [seed.strip() for seed in self.seeds if seed and seed.strip()]

    def get_workspace_path(self) -> Path:
        return Path(self.workspace).resolve()

    def get_state_path(self, filename: str) -> Path:
        return self.get_workspace_path() / self.storage.state_dir / filename

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FrontierConfig':
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping.")

        seeds = data.get('seeds', []) or []
        if not isinstance(seeds, list):
            raise ConfigError("seeds must be a list in the configuration file")

        try:
            return cls(
                workspace=data.get('workspace', ''),
                user_agent=data.get('user_agent', ''),
                seeds=seeds,
                resumable=data.get('resumable', True),
                public_suffix_urls=_string_list(data, 'public_suffix_urls'),
                extra_public_suffixes=_string_list(data, 'extra_public_suffixes'),
                robots=RobotsConfig(**_section(data, 'robots')),
                politeness=PolitenessConfig(**_section(data, 'politeness')),
                limits=LimitsConfig(**_section(data, 'limits')),
                scope=ScopeConfig(**_section(data, 'scope')),
                storage=StorageConfig(**_section(data, 'storage')),
                logs=LogsConfig(**_section(data, 'logs')),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str) -> 'FrontierConfig':
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with path.open('r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{name}' must be a mapping.")
    return value


def _string_list(data: Dict[str, Any], name: str) -> List[str]:
    value = data.get(name) or []
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list in the configuration file")
    return [str(v).strip() for v in value if v is not None and str(v).strip()]
