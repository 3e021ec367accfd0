from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    use_mongo: bool = False
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "zerowaste"

    # repository-boundary retry for transient Mongo faults
    mongo_retry_attempts: int = 3
    mongo_retry_base_delay: float = 0.2
    mongo_retry_max_delay: float = 2.0

    matching_radius_km: float = 10.0
    sweep_interval_seconds: int = 15 * 60
    sweep_enabled: bool = True
    request_timeout_seconds: float = 10.0

    webhook_url: str | None = None
    webhook_secret: str = "dev"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
