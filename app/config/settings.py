"""
Application settings using Pydantic Settings.

Loads configuration from environment variables with validation.
"""

from typing import Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from app.domain.instruments import InstrumentClass


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are loaded from .env file or environment variables.
    Every value has a default so the service can boot without a .env file.
    """

    # App Configuration
    APP_NAME: str = Field(default="Practice Trading Core")
    APP_VERSION: str = Field(default="1.0.0")
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)

    # Server
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Database
    MONGODB_URL: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    MONGODB_DB_NAME: str = Field(default="practice_trading", description="MongoDB database name")
    MONGODB_USE_TRANSACTIONS: bool = Field(default=True, description="Wrap multi-document writes in a transaction")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE_PATH: str = Field(default="logs/app.log")

    # CORS
    CORS_ORIGINS: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])

    # Price Feed
    PRICE_SOURCE_URLS: List[str] = Field(
        default=["https://api.binance.com/api/v3", "https://data-api.binance.vision/api/v3"],
        description="Quote transports, tried in order before the synthetic fallback",
    )
    PRICE_REQUEST_TIMEOUT_SECONDS: float = Field(default=5.0)
    PRICE_POLL_INTERVAL_SECONDS: float = Field(default=3.0)
    SYNTHETIC_MAX_VARIATION: float = Field(default=0.02, description="Max drift of synthetic quotes from their anchor")

    # Trading Rules
    MIN_LEVERAGE: int = Field(default=1)
    MAX_LEVERAGE: int = Field(default=1000)
    LEVERAGE_CAPS: Dict[str, int] = Field(
        default_factory=dict,
        description="Per instrument class cap as JSON, e.g. {\"crypto\": 20, \"metal\": 10}",
    )

    # Expiry
    EXPIRY_CHECK_INTERVAL_SECONDS: float = Field(default=30.0)
    AUTO_CLOSE_EXPIRED_POSITIONS: bool = Field(default=True)

    @field_validator("CORS_ORIGINS", "PRICE_SOURCE_URLS", mode="before")
    @classmethod
    def parse_comma_separated(cls, v) -> List[str]:
        """Parse list settings from comma-separated string or list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        elif isinstance(v, list):
            return v
        return []

    @field_validator("PRICE_POLL_INTERVAL_SECONDS", "PRICE_REQUEST_TIMEOUT_SECONDS", "EXPIRY_CHECK_INTERVAL_SECONDS")
    @classmethod
    def validate_positive_interval(cls, v: float) -> float:
        """Validate intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError("Intervals and timeouts must be positive")
        return v

    @field_validator("SYNTHETIC_MAX_VARIATION")
    @classmethod
    def validate_synthetic_variation(cls, v: float) -> float:
        """Synthetic drift must stay a small fraction of the anchor price."""
        if v <= 0 or v > 0.2:
            raise ValueError("SYNTHETIC_MAX_VARIATION must be in (0, 0.2]")
        return v

    @field_validator("MIN_LEVERAGE")
    @classmethod
    def validate_min_leverage(cls, v: int) -> int:
        """Validate minimum leverage is at least 1."""
        if v < 1:
            raise ValueError("MIN_LEVERAGE must be at least 1")
        return v

    @field_validator("LEVERAGE_CAPS")
    @classmethod
    def validate_leverage_caps(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Keys must name an instrument class; caps start at 1."""
        allowed = {c.value for c in InstrumentClass}
        for key, cap in v.items():
            if key not in allowed:
                raise ValueError(f"Unknown instrument class in LEVERAGE_CAPS: {key}")
            if cap < 1:
                raise ValueError("LEVERAGE_CAPS values must be at least 1")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


# Global settings instance
def get_settings() -> Settings:
    """Get settings instance (lazy loading)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

_settings: Settings | None = None

# Try to initialize settings on import
try:
    settings = Settings()
    _settings = settings
except Exception as e:
    # Malformed environment values; callers fall back to get_settings() later
    print(f"Warning: Could not load settings: {str(e)}")
    settings = None  # type: ignore
