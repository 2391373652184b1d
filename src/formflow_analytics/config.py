"""Application settings using Pydantic Settings"""
from zoneinfo import ZoneInfo
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings


class AnalyticsConfig(BaseModel):
    """Policy knobs for the attribution and reconciliation engine.

    Built once by the caller and handed to each service constructor.
    """
    local_timezone: str = "UTC"
    handoff_ttl_hours: int = 168
    match_lookback_days: int = 30
    min_match_confidence: float = 0.5
    time_decay_half_life_days: float = 7.0
    import_preview_rows: int = 5

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.local_timezone)


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./formflow_analytics.db"

    APP_ENV: str = "dev"

    LOCAL_TIMEZONE: str = "UTC"
    HANDOFF_TTL_HOURS: int = 168
    MATCH_LOOKBACK_DAYS: int = 30
    MIN_MATCH_CONFIDENCE: float = 0.5
    TIME_DECAY_HALF_LIFE_DAYS: float = 7.0
    IMPORT_PREVIEW_ROWS: int = 5

    COMPLETION_WEBHOOK_SECRET: str = ""
    TRACKING_SECRET: str = "change-me-in-production"
    BASE_URL: str = "http://localhost:5000"

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["dev", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of: {allowed}")
        return v

    @field_validator("LOCAL_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except Exception:
            raise ValueError(f"LOCAL_TIMEZONE is not a known timezone: {v}")
        return v

    @field_validator("MIN_MATCH_CONFIDENCE")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("MIN_MATCH_CONFIDENCE must be between 0 and 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "prod"

    def analytics_config(self) -> AnalyticsConfig:
        return AnalyticsConfig(
            local_timezone=self.LOCAL_TIMEZONE,
            handoff_ttl_hours=self.HANDOFF_TTL_HOURS,
            match_lookback_days=self.MATCH_LOOKBACK_DAYS,
            min_match_confidence=self.MIN_MATCH_CONFIDENCE,
            time_decay_half_life_days=self.TIME_DECAY_HALF_LIFE_DAYS,
            import_preview_rows=self.IMPORT_PREVIEW_ROWS,
        )

    def validate_secrets_for_production(self) -> None:
        if self.is_production:
            errors = []
            if self.TRACKING_SECRET == "change-me-in-production":
                errors.append("TRACKING_SECRET must be set to a secure value in production")
            if not self.COMPLETION_WEBHOOK_SECRET:
                errors.append("COMPLETION_WEBHOOK_SECRET must be set in production")
            if errors:
                raise ValueError("; ".join(errors))

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings


def get_analytics_config() -> AnalyticsConfig:
    return settings.analytics_config()
