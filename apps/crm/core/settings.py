"""
Settings management with secure credential handling
"""

from functools import lru_cache
from typing import Dict, List, Any, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def mask_secret(secret: str, show_chars: int = 4) -> str:
    """Mask sensitive data, showing only first and last N characters"""
    if not secret or len(secret) <= show_chars * 2:
        return "***"
    return f"{secret[:show_chars]}...{secret[-show_chars:]}"


class Settings(BaseSettings):
    """Application settings with validation"""

    # Application Info
    APP_NAME: str = Field(default="Elta CRM", env="APP_NAME")
    APP_VERSION: str = Field(default="1.0.0", env="APP_VERSION")
    ENVIRONMENT: str = Field(default="development", env="ENVIRONMENT")
    API_V1_PREFIX: str = Field(default="/api/v1", env="API_V1_PREFIX")

    # General Configuration
    LOG_LEVEL: str = Field(default="INFO", env="LOG_LEVEL")
    debug_mode: bool = Field(default=False, env="DEBUG_MODE")
    timezone: str = Field(default="Europe/Copenhagen", env="TIMEZONE")
    PORT: int = Field(default=8000, env="PORT")

    # Security
    SECRET_KEY: str = Field(
        default="change-me-in-production", env="SECRET_KEY"
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, env="ACCESS_TOKEN_EXPIRE_MINUTES")
    JWT_SECRET: str = Field(default="change-me-in-production", env="JWT_SECRET")
    JWT_ALGORITHM: str = Field(default="HS256", env="JWT_ALGORITHM")
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        env="CORS_ORIGINS"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///elta_crm.db", env="DATABASE_URL"
    )
    DB_POOL_SIZE: int = Field(default=10, env="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=20, env="DB_MAX_OVERFLOW")
    DB_POOL_TIMEOUT: int = Field(default=30, env="DB_POOL_TIMEOUT")

    # Calculation defaults (DKK)
    DEFAULT_HOURLY_RATE: float = Field(default=495.0, env="DEFAULT_HOURLY_RATE")
    DEFAULT_TAX_RATE: float = Field(default=25.0, env="DEFAULT_TAX_RATE")
    DEFAULT_CURRENCY: str = Field(default="DKK", env="DEFAULT_CURRENCY")
    OFFER_VALIDITY_DAYS: int = Field(default=30, env="OFFER_VALIDITY_DAYS")
    MATERIAL_MARGIN: float = Field(default=25.0, env="MATERIAL_MARGIN")
    PRODUCT_MARGIN: float = Field(default=20.0, env="PRODUCT_MARGIN")
    KALKIA_FALLBACK_MARGIN: float = Field(default=35.0, env="KALKIA_FALLBACK_MARGIN")

    # DB (contribution margin) traffic light thresholds in percent
    DB_THRESHOLD_GREEN: float = Field(default=35.0, env="DB_THRESHOLD_GREEN")
    DB_THRESHOLD_YELLOW: float = Field(default=20.0, env="DB_THRESHOLD_YELLOW")
    DB_THRESHOLD_RED: float = Field(default=10.0, env="DB_THRESHOLD_RED")

    # Price monitoring
    PRICE_CHANGE_ALERT_THRESHOLD: float = Field(default=5.0, env="PRICE_CHANGE_ALERT_THRESHOLD")
    PRICE_CRITICAL_CHANGE_THRESHOLD: float = Field(default=20.0, env="PRICE_CRITICAL_CHANGE_THRESHOLD")
    PRICE_SUMMARY_CRITICAL_THRESHOLD: float = Field(default=10.0, env="PRICE_SUMMARY_CRITICAL_THRESHOLD")
    SUPPLIER_PRICE_STALE_DAYS: int = Field(default=7, env="SUPPLIER_PRICE_STALE_DAYS")

    # Microsoft Graph mail bridge
    AZURE_TENANT_ID: Optional[str] = Field(default=None, env="AZURE_TENANT_ID")
    AZURE_CLIENT_ID: Optional[str] = Field(default=None, env="AZURE_CLIENT_ID")
    AZURE_CLIENT_SECRET: Optional[str] = Field(default=None, env="AZURE_CLIENT_SECRET")
    GRAPH_MAILBOX: str = Field(default="crm@eltasolar.dk", env="GRAPH_MAILBOX")
    GRAPH_MAX_MESSAGES_PER_POLL: int = Field(default=50, env="GRAPH_MAX_MESSAGES_PER_POLL")
    GRAPH_MAX_PAGES_PER_SYNC: int = Field(default=5, env="GRAPH_MAX_PAGES_PER_SYNC")
    GRAPH_TIMEOUT_SECONDS: float = Field(default=30.0, env="GRAPH_TIMEOUT_SECONDS")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"  # Allow extra fields

    @validator("LOG_LEVEL", pre=True)
    def normalize_log_level(cls, v):
        """Accept lower-case level names from the environment"""
        if isinstance(v, str):
            return v.upper()
        return v

    @validator("GRAPH_MAILBOX", pre=True)
    def normalize_mailbox(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def graph_configured(self) -> bool:
        return bool(
            self.AZURE_TENANT_ID and self.AZURE_CLIENT_ID and self.AZURE_CLIENT_SECRET
        )

    @property
    def db_thresholds(self) -> Dict[str, float]:
        return {
            "green": self.DB_THRESHOLD_GREEN,
            "yellow": self.DB_THRESHOLD_YELLOW,
            "red": self.DB_THRESHOLD_RED,
        }

    def mask_secrets(self) -> Dict[str, str]:
        """Return configuration with masked secrets for logging"""
        masked = {}

        for field_name, field_value in self.model_dump().items():
            if field_value is None:
                continue

            if any(secret_word in field_name.lower()
                   for secret_word in ['token', 'key', 'secret', 'password']):
                if isinstance(field_value, str):
                    masked[field_name] = mask_secret(field_value)
                else:
                    masked[field_name] = str(field_value)
            else:
                masked[field_name] = str(field_value)

        return masked

    def validate_required_integrations(self) -> Dict[str, str]:
        """Validate and return status of external integrations."""
        integrations = {}

        if self.graph_configured:
            integrations["microsoft_graph"] = "configured"
        else:
            integrations["microsoft_graph"] = "not configured"

        return integrations

    def ensure_critical_settings(self) -> None:
        """Validate presence of essential runtime configuration."""
        if self.ENVIRONMENT != "production":
            return

        missing = []

        if not self.SECRET_KEY or self.SECRET_KEY == "change-me-in-production":
            missing.append("SECRET_KEY")
        if not self.JWT_SECRET or self.JWT_SECRET == "change-me-in-production":
            missing.append("JWT_SECRET")
        if not self.database_url:
            missing.append("DATABASE_URL")

        if missing:
            raise ValueError(
                f"Missing required settings: {', '.join(missing)}"
            )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Create global settings instance
settings = get_settings()
