"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""
    
    # ==========================================================================
    # Environment
    # ==========================================================================
    
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    
    # ==========================================================================
    # API Server
    # ==========================================================================
    
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    
    # ==========================================================================
    # Authentication
    # ==========================================================================
    
    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30
    jwt_refresh_token_expire_days: int = 7
    
    # The superadmin is not a stored account; it logs in with these credentials
    superadmin_email: str = "superadmin@postboard.dev"
    superadmin_password: str = ""
    
    # ==========================================================================
    # Listing
    # ==========================================================================
    
    default_page_size: int = 10
    max_page_size: int = 100
    
    # ==========================================================================
    # Account Cascades
    # ==========================================================================
    
    # A failed cascade is replayed this many times in total before surfacing
    cascade_retry_attempts: int = 3
    cascade_retry_wait_seconds: float = 0.5
    
    # ==========================================================================
    # Optional Services
    # ==========================================================================
    
    sentry_dsn: str = ""
    
    # ==========================================================================
    # Helpers
    # ==========================================================================
    
    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
    
    @property
    def is_production(self) -> bool:
        return self.environment == "production"
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
