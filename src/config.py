from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

# Application version
VERSION = "0.1.0"


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Utilizes pydantic-settings for robust validation and type-casting.
    """

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8086
    LOG_LEVEL: str = "info"
    APP_DEBUG: bool = False
    ROOT_PATH: str = ""

    # API Authentication
    API_TOKEN: Optional[str] = None

    # m3u-proxy session registry
    PROXY_API_URL: str = "http://localhost:8085/m3u-proxy"
    # Sent as X-API-Token when the proxy has authentication enabled
    PROXY_API_TOKEN: Optional[str] = None
    PROXY_REQUEST_TIMEOUT: float = 5.0

    # Provider capacity lookups
    # Snapshots younger than this are served from the cache
    CAPACITY_CACHE_TTL: int = 10
    # Upper bound on a single player_api.php status call; a timeout counts as a failed fetch
    CAPACITY_FETCH_TIMEOUT: float = 5.0
    XTREAM_USER_AGENT: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"

    # Redis Configuration for sharing capacity snapshots between workers
    REDIS_HOST: str = "localhost"
    REDIS_SERVER_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_ENABLED: bool = False

    # Optional JSON catalog of providers, aliases and content loaded at startup
    CATALOG_FILE: Optional[str] = None

    # Stream monitor
    MONITOR_REFRESH_INTERVAL: int = 5  # seconds
    URL_TRUNCATE_LENGTH: int = 50

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, read directly from .env
        extra="ignore"  # Ignore extra environment variables from container
    )

    @property
    def redis_url(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_SERVER_PORT}/{self.REDIS_DB}"


# Global settings instance
settings = Settings()
