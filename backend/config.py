from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Plan Adherence"
    DATABASE_URL: str = "sqlite:///data/plan_adherence.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:8050",
        "http://localhost:8001",
        "https://localhost:8050",
        "https://127.0.0.1:8050",
    ]
    LOG_LEVEL: str = "INFO"
    DEFAULT_TIMEZONE: str = "UTC"
    CALENDAR_MAX_RANGE_DAYS: int = 42
    STREAK_LOOKBACK_DAYS: int = 120
    TREND_DEFAULT_WEEKS: int = 15
    TREND_MAX_WEEKS: int = 52
    TREND_FALLBACK_ENABLED: bool = True
    TREND_FALLBACK_ALLOW_IN_PRODUCTION: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_configuration(self) -> None:
        errors: list[str] = []
        if self.CALENDAR_MAX_RANGE_DAYS < 1:
            errors.append("CALENDAR_MAX_RANGE_DAYS must be at least 1")
        if self.STREAK_LOOKBACK_DAYS < 1:
            errors.append("STREAK_LOOKBACK_DAYS must be at least 1")
        if not 1 <= self.TREND_DEFAULT_WEEKS <= self.TREND_MAX_WEEKS:
            errors.append("TREND_DEFAULT_WEEKS must be between 1 and TREND_MAX_WEEKS")
        if (
            self.is_production_like
            and self.TREND_FALLBACK_ENABLED
            and not self.TREND_FALLBACK_ALLOW_IN_PRODUCTION
        ):
            errors.append(
                "TREND_FALLBACK_ENABLED must be false in production-like environments "
                "unless TREND_FALLBACK_ALLOW_IN_PRODUCTION=true"
            )
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
