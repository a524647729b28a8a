"""Configuration for the bookmarker core."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# Default database locations
DEFAULT_DATA_DIR = Path.home() / ".bookmarker"


@dataclass
class StorageConfig:
    """Configuration for the key/value store."""
    db_path: Optional[Path] = None  # None = use default
    option_cache_ttl: float = 30.0  # Seconds an option read stays cached

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Create config from environment variables."""
        db_path_str = os.environ.get("BOOKMARKER_DB")
        return cls(
            db_path=Path(db_path_str) if db_path_str else None,
            option_cache_ttl=float(os.environ.get("BOOKMARKER_OPTION_TTL", "30.0")),
        )


@dataclass
class CacheConfig:
    """Configuration for the tag/folder cache and in-memory memoization."""
    db_path: Optional[Path] = None  # None = use default
    tag_ttl_hours: float = 24.0
    pool_idle_timeout: float = 300.0  # Seconds before an idle connection is closed
    similarity_cache_size: int = 500
    url_cache_size: int = 1000

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create config from environment variables."""
        db_path_str = os.environ.get("BOOKMARKER_CACHE_DB")
        return cls(
            db_path=Path(db_path_str) if db_path_str else None,
            tag_ttl_hours=float(os.environ.get("BOOKMARKER_TAG_TTL_HOURS", "24.0")),
            pool_idle_timeout=float(os.environ.get("BOOKMARKER_POOL_IDLE", "300.0")),
            similarity_cache_size=int(os.environ.get("BOOKMARKER_SIMILARITY_CACHE", "500")),
            url_cache_size=int(os.environ.get("BOOKMARKER_URL_CACHE", "1000")),
        )


@dataclass
class NetworkConfig:
    """Configuration for calls to the bookmark server."""
    request_timeout: float = 10.0  # Used when the user option is unset
    user_agent: str = "Bookmarker/1.0 (bookmark enrichment)"
    settings_cache_ttl: float = 60.0  # Seconds timeout/auth lookups stay cached

    @classmethod
    def from_env(cls) -> "NetworkConfig":
        """Create config from environment variables."""
        return cls(
            request_timeout=float(os.environ.get("BOOKMARKER_TIMEOUT", "10.0")),
            user_agent=os.environ.get("BOOKMARKER_USER_AGENT", "Bookmarker/1.0 (bookmark enrichment)"),
        )


@dataclass
class Config:
    """Main configuration for the bookmarker core."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls(
            storage=StorageConfig.from_env(),
            cache=CacheConfig.from_env(),
            network=NetworkConfig.from_env(),
            log_level=os.environ.get("BOOKMARKER_LOG_LEVEL", "WARNING"),
        )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance.

    Returns:
        Config loaded from environment
    """
    global _config

    if _config is None:
        _config = Config.from_env()

    return _config
