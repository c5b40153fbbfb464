"""
Deployment settings.

Loads settings from environment variables and .env file.
Model hyperparameters live in crypto_prediction.config; only values that
change between deployments (keys, URLs, directories) belong here.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional rotating log file path.
        polygon_api_key: API key for the Polygon aggregates endpoint.
        polygon_base_url: Base URL of the Polygon REST API.
        polygon_timeout: HTTP timeout in seconds.
        model_dir: Directory where trained engines are persisted.
        redis_url: Redis URL for the market-data cache.
        bars_cache_ttl: Seconds a fetched bar series stays cached.
        mlflow_enabled: Track training runs in MLflow.
        default_symbol: Symbol used when none is given.
        tracked_symbols: Comma-separated symbols managed by the scheduler.
        cycle_interval_minutes: Minutes between scheduled prediction cycles.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    log_level: str = "INFO"
    log_file: str | None = None

    polygon_api_key: str = ""
    polygon_base_url: str = "https://api.polygon.io"
    polygon_timeout: float = 30.0

    model_dir: str = "models"

    redis_url: str = "redis://localhost:6379/0"
    bars_cache_ttl: int = 300

    mlflow_enabled: bool = False
    mlflow_tracking_uri: str = "file:./mlruns"
    mlflow_experiment_name: str = "crypto-prediction"

    default_symbol: str = "X:BTCUSD"
    tracked_symbols: str = "X:BTCUSD,X:ETHUSD"
    cycle_interval_minutes: int = 60

    def get_tracked_symbols(self) -> list[str]:
        """Return tracked symbols as a clean list."""
        return [s.strip() for s in self.tracked_symbols.split(",") if s.strip()]


settings = Settings()
