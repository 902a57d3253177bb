from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    All sensitive values MUST be set in .env file - no defaults provided.
    """

    # Database configuration (separate credentials for security)
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "dealership"
    database_user: str = "dealership"
    database_password: str = ""

    # Full SQLAlchemy URL, takes precedence over the separate credentials
    sqlalchemy_url: Optional[str] = None

    # Security keys (REQUIRED - no defaults)
    secret_key: str
    encryption_key: str

    # CORS configuration
    cors_origins: str = "http://localhost:3000"

    # JWT configuration (8 hours)
    access_token_expire_minutes: int = 480

    # Chat retention
    message_retention_hours: int = 72
    retention_sweep_hour: int = 0
    retention_timezone: str = "Europe/Istanbul"
    retention_sweep_enabled: bool = True

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def database_url(self) -> str:
        """Construct database URL from separate credentials."""
        if self.sqlalchemy_url:
            return self.sqlalchemy_url
        return f"postgresql://{self.database_user}:{self.database_password}@{self.database_host}:{self.database_port}/{self.database_name}"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache()
def get_settings():
    """Get cached settings instance."""
    try:
        return Settings()
    except Exception:
        print("\n" + "="*70)
        print("ERROR: Failed to load configuration!")
        print("="*70)
        print("\nMissing or invalid environment variables.")
        print("\nPlease create a .env file with the following variables:")
        print("  - DATABASE_HOST / DATABASE_PORT / DATABASE_NAME")
        print("  - DATABASE_USER / DATABASE_PASSWORD")
        print("  - SQLALCHEMY_URL (optional, overrides the values above)")
        print("  - SECRET_KEY (for JWT signing)")
        print("  - ENCRYPTION_KEY (for message encryption)")
        print("  - CORS_ORIGINS (optional, defaults to localhost:3000)")
        print("  - MESSAGE_RETENTION_HOURS (optional, defaults to 72)")
        print("\nSee .env.example for a template.")
        print("="*70)
        raise
