from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://app:devpassword@db:5432/bergvlei"
    REDIS_URL: str = "redis://redis:6379/0"

    APP_ENV: str = "development"
    API_URL: str = "http://localhost:8000"
    ALLOWED_ORIGINS: str = "http://localhost:19000"

    JWT_SECRET_KEY: str = ""
    JWT_EXPIRE_MINUTES: int = 7 * 24 * 60

    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100

    FREE_DAILY_RIDDLE_LIMIT: int = 5
    PREMIUM_DAILY_RIDDLE_LIMIT: int = 999999

    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_URL: str = "https://generativelanguage.googleapis.com"

    # "revenuecat" or "stripe" -- only one billing integration is live per deployment
    BILLING_PROVIDER: str = "revenuecat"
    REVENUECAT_API_KEY: str = ""
    REVENUECAT_WEBHOOK_AUTH_TOKEN: str = ""
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_PREMIUM_PRICE_ID: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
