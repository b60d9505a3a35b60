"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Youth Clustering & Segmentation API"
    database_url: str = "sqlite+aiosqlite:///./data/youth_clustering.db"
    log_level: str = "INFO"
    cluster_k_min: int = 2
    cluster_k_max: int = 6
    cluster_max_iterations: int = 100
    cluster_tolerance: float = 1e-4
    cluster_n_init: int = 10
    cluster_seed: int = 42
    cluster_quality_tolerance: float = 1e-6
    degenerate_variance_threshold: float = 1e-9
    min_responses: int = 10
    min_data_quality_score: float = 0.0
    recommendation_target_coverage: float = 0.7
    persistence_retry_attempts: int = 3


@lru_cache()
def get_settings() -> Settings:
    return Settings()
