"""Configuration management for Monee Split."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

DEFAULT_CURRENCIES = ("SGD", "CNY", "HKD", "MOP", "MYR", "JPY", "USD", "EUR")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MONEE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Currencies
    default_base_currency: str = "USD"
    supported_currencies: list[str] = list(DEFAULT_CURRENCIES)

    # Split thresholds
    percent_weight_epsilon: Decimal = Decimal("0.0001")  # total weight at or below -> EQUAL
    manual_min_tolerance: Decimal = Decimal("0.05")
    manual_relative_tolerance: Decimal = Decimal("0.01")  # fraction of the total
    manual_absorb_residual: bool = True  # False keeps accepted amounts as entered

    # Balance display
    settlement_epsilon: Decimal = Decimal("0.005")  # half a cent

    # Database path
    database_path: Path = Path.home() / ".monee_split" / "monee_split.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your MONEE_* environment variables "
            f"or .env file.\n"
            f"Error: {e}"
        ) from e
