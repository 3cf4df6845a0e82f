"""
Configuración centralizada de la aplicación
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Configuración de la aplicación"""

    # API Settings
    API_TITLE: str = "Backoffice API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "API de back-office multi-tenant (clientes, fiscal, envios, pagos)"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Database / managed backend
    DATABASE_URL: str
    SUPABASE_URL: str = ""
    SUPABASE_JWT_SECRET: str = ""

    # Scheduled jobs (cron-job.org, pg_cron, etc.) authenticate with X-Cron-Key
    CRON_API_KEY: str = ""

    # CORS - Can be string (comma-separated) or JSON array
    # Example: "http://localhost:5173,https://admin.example.com" or '["http://localhost:5173"]'
    ALLOWED_ORIGINS: Optional[str] = "http://localhost:5173,http://localhost:3000"

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        if not self.ALLOWED_ORIGINS:
            return ["http://localhost:5173"]

        # Try JSON parse first (for array format)
        import json
        try:
            origins = json.loads(self.ALLOWED_ORIGINS)
            if isinstance(origins, list):
                return origins
        except (json.JSONDecodeError, ValueError):
            pass

        # Fall back to comma-separated string
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    # Tracking poll
    TRACKING_POLL_INTERVAL_MINUTES: int = 30
    TRACKING_MAX_PER_RUN: int = 50

    # External APIs (per-tenant credentials live in the database, these are fallbacks)
    SENDGRID_API_KEY: str = ""
    FAL_API_KEY: str = ""
    PAGARME_API_KEY: str = ""
    PAGARME_ACCOUNT_ID: str = ""
    FOCUS_NFE_TOKEN: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
