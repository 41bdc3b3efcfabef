"""
Configuration for the Compliance Session Engine
===============================================

Environment variables:
- ANALYSIS_API_URL: Base URL of the analysis service (default: http://localhost:5000)
- ANALYSIS_TIMEOUT: Request timeout in seconds (default: 60)
- ANALYSIS_AUTH_TOKEN: Bearer token sent with every request (optional)
- REDIS_URL: Redis for the short-lived session id (default: redis://localhost:6379/0)
- SESSION_ID_TTL_SECONDS: Lifetime of the persisted session id (default: 86400)
- PREFERENCES_DB_URL: SQLAlchemy URL for long-lived preferences (default: sqlite:///./preferences.db)
- DEFAULT_USER_ROLE: regular_user|shariah_expert (default: regular_user)
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from functools import lru_cache

from .schemas import UserRole


class Settings(BaseSettings):
    """Engine settings from environment variables"""

    # Analysis service
    analysis_api_url: str = "http://localhost:5000"
    analysis_timeout: int = 60
    analysis_auth_token: Optional[str] = None

    # Persistence
    redis_url: str = "redis://localhost:6379/0"
    session_id_ttl_seconds: int = 86400
    preferences_db_url: str = "sqlite:///./preferences.db"

    # Storage keys
    session_id_key: str = "complianceSessionId"
    role_key: str = "complianceUserRole"

    default_user_role: UserRole = UserRole.REGULAR_USER

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    def validate_persistence_config(self) -> List[str]:
        """Validate persistence configuration, return list of warnings"""
        warnings = []

        if self.session_id_key == self.role_key:
            warnings.append("SESSION_ID_KEY and ROLE_KEY are identical; role changes will overwrite the session id")

        if self.session_id_ttl_seconds <= 0:
            warnings.append("SESSION_ID_TTL_SECONDS <= 0; session ids will be stored without expiry")

        if self.preferences_db_url.startswith("sqlite:///:memory:"):
            warnings.append("PREFERENCES_DB_URL is in-memory; role preference will not survive restarts")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
