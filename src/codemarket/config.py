from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://app:devpassword@db:5432/codemarket"
    REDIS_URL: str = "redis://redis:6379/0"

    # Tokens are issued by the hosted identity provider; we only verify them.
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    ORDER_NUMBER_PREFIX: str = "EC"
    CREDIT_EVENTS_CHANNEL: str = "credits:balance-changed"

    APP_ENV: str = "development"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
