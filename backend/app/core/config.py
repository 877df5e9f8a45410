from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Billing Sync"
    app_env: str = "development"
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "postgres"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"

    database_url: str | None = None
    frontend_origin: str = "http://localhost:3000"
    additional_frontend_origins: str = ""
    public_site_url: str = "https://goghlab.com.br"

    supabase_jwt_secret: str = "change_this_in_production"
    supabase_jwt_audience: str = "authenticated"
    supabase_jwt_algorithm: str = "HS256"

    stripe_api_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_api_base_url: str = "https://api.stripe.com/v1"
    stripe_timeout_seconds: float = 20.0
    stripe_portal_configuration_id: str | None = None

    stripe_price_id_essential_monthly: str = "price_1SpjGIJmSvvqlkSQGIpVMt0H"
    stripe_price_id_essential_annual: str = "price_1SpjHyJmSvvqlkSQRBubxB7K"
    stripe_price_id_pro_monthly: str = "price_1SpjJIJmSvvqlkSQpBHztwk6"
    stripe_price_id_pro_annual: str = "price_1SpjKSJmSvvqlkSQlr8jNDTf"

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.frontend_origin.strip(), self.public_site_url.strip()]
        if self.additional_frontend_origins.strip():
            origins.extend(
                [value.strip() for value in self.additional_frontend_origins.split(",") if value.strip()]
            )
        unique: list[str] = []
        for origin in origins:
            if origin and origin not in unique:
                unique.append(origin)
        return unique

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            # Supabase hands out libpq-style URLs; route them through psycopg 3.
            for prefix in ("postgresql://", "postgres://"):
                if self.database_url.startswith(prefix):
                    return "postgresql+psycopg://" + self.database_url[len(prefix):]
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def site_base_url(self) -> str:
        return self.public_site_url.rstrip("/")


settings = Settings()
