from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core API Settings
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")
    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    app_env: str = Field("dev", alias="APP_ENV")

    # Supabase (primary). DATABASE_URL overrides it for local sqlite / tests.
    supabase_project_ref: str | None = Field(None, alias="SUPABASE_PROJECT_REF")
    supabase_db_password: str | None = Field(None, alias="SUPABASE_DB_PASSWORD")
    supabase_db_user: str = Field("postgres", alias="SUPABASE_DB_USER")
    supabase_db_name: str = Field("postgres", alias="SUPABASE_DB_NAME")
    database_url: str | None = Field(None, alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")

    # Recommendation tunables
    behavior_lookback: int = Field(100, alias="BEHAVIOR_LOOKBACK")
    trending_window_days: int = Field(7, alias="TRENDING_WINDOW_DAYS")
    candidate_pool_size: int = Field(500, alias="CANDIDATE_POOL_SIZE")
    serendipity_pool_size: int = Field(200, alias="SERENDIPITY_POOL_SIZE")
    default_diversity_weight: float = Field(0.3, alias="DEFAULT_DIVERSITY_WEIGHT")
    default_recommendation_limit: int = Field(10, alias="DEFAULT_RECOMMENDATION_LIMIT")
    max_recommendation_limit: int = Field(50, alias="MAX_RECOMMENDATION_LIMIT")
    item_feature_refresh_minutes: int = Field(60, alias="ITEM_FEATURE_REFRESH_MINUTES")

    # Experiments / statistics
    significance_mode: str = Field("legacy", alias="SIGNIFICANCE_MODE")  # legacy|exact
    experiment_default_duration_days: int = Field(7, alias="EXPERIMENT_DEFAULT_DURATION_DAYS")
    experiment_min_sample_size: int = Field(1000, alias="EXPERIMENT_MIN_SAMPLE_SIZE")
    experiment_analysis_interval_minutes: int = Field(60, alias="EXPERIMENT_ANALYSIS_INTERVAL_MINUTES")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"  # Allow extra environment variables


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()
