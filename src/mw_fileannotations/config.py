from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyHttpUrl, SecretStr


class Settings(BaseSettings):
    # Host wiki: annotation documents and the markup renderer
    mw_api_base_url: AnyHttpUrl = "http://localhost/w/api.php"
    annotations_namespace: str = "File annotations"

    # Remote data providers
    commons_api_url: AnyHttpUrl = "https://commons.wikimedia.org/w/api.php"
    commons_base_url: str = "https://commons.wikimedia.org"
    wikidata_api_url: AnyHttpUrl = "https://www.wikidata.org/w/api.php"
    wikidata_sparql_url: AnyHttpUrl = "https://query.wikidata.org/sparql"

    http_timeout_seconds: float = 15.0
    http_user_agent: str = "mw-fileannotations/1.0"

    # Overall enrichment deadline for one batch request
    request_deadline_seconds: float = 10.0

    # Cache TTLs (seconds)
    cache_min_ttl: int = 60
    cache_max_ttl: int = 86400
    cache_stale_ttl: int = 86400
    discovery_cache_ttl: int = 2592000

    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_lock_ttl_seconds: int = 30
    cache_lock_wait_seconds: float = 10.0

    # Bidirectional JWT secrets
    jwt_mw_to_fa_secret: SecretStr = SecretStr("")  # For verifying viewer tokens from the wiki
    jwt_fa_to_mw_secret: SecretStr = SecretStr("")  # For signing tokens to the wiki
    jwt_algo: str = "HS256"
    jwt_ttl_seconds: int = 30

    default_language: str = "en"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
