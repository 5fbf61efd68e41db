"""
Configuration for Finding Override Service
==========================================

Environment variables:
- ADMIN_TOKEN: Bearer token required by /api/admin/* (default: development token)
- DEFAULT_LANG: Default message language (default: en-AU)
- FINDING_CATALOG_PATH: Seed catalog YAML (default: bundled data/finding_catalog.yml)
- CORS_ALLOW_ORIGINS: Comma-separated origins for the admin UI

DATABASE_URL and SQL_ECHO are read by db/session.py when the engine is created.
"""

from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings
from functools import lru_cache


DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "finding_catalog.yml"


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Admin API auth
    admin_token: str = "admin-secret-token-change-me"

    # Messages
    default_lang: str = "en-AU"

    # Seed baseline
    finding_catalog_path: str = str(DEFAULT_CATALOG_PATH)

    # CORS
    cors_allow_origins: str = "http://localhost:5173,http://localhost:3000"

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    def validate_admin_config(self) -> List[str]:
        """Validate admin configuration, return list of warnings"""
        warnings = []

        if self.admin_token == "admin-secret-token-change-me":
            warnings.append("ADMIN_TOKEN not set; using the development default")

        if not Path(self.finding_catalog_path).exists():
            warnings.append(f"FINDING_CATALOG_PATH does not exist: {self.finding_catalog_path}")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Convenience function
def get_default_lang() -> str:
    """Get default message language"""
    return get_settings().default_lang
