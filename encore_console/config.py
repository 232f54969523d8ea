"""Application configuration management."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Gateway settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application
    app_name: str = "encore-console"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    workers: int = 1

    # Encore backend
    encore_api_url: str = "http://localhost:8080"
    request_timeout: float = 30.0

    # Authentication
    encore_bearer_token: Optional[str] = None
    osc_access_token: Optional[str] = None
    osc_environment: str = "prod"
    osc_token_url: Optional[str] = None
    osc_service_id: str = "encore"

    # Client application
    allowed_origins: str = "http://localhost:5173,http://localhost:3000"
    static_dir: str = "dist"

    @property
    def cors_origins(self) -> List[str]:
        """Allowed cross-origin callers as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


settings = Settings()
