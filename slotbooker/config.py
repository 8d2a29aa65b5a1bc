"""
Configuration management using Pydantic models loaded from YAML.
"""

from decimal import Decimal
from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.charges import TestAccountPolicy
from .domain.models import AddOnPrices
from .domain.pricing_catalog import MAX_ACTIVE_TIERS
from .domain.workflow import PlatformGates


class PlatformConfig(BaseModel):
    """Platform-wide feature gates and rates."""
    allow_free_calls: bool = False
    allow_screen_sharing: bool = True
    allow_translation: bool = True
    allow_recording: bool = True
    allow_transcription: bool = True
    commission_rate: Decimal = Decimal("0.10")
    tax_rate: Decimal = Decimal("0.21")
    currency: str = "EUR"
    free_durations: List[int] = Field(default_factory=lambda: [0])
    max_active_tiers: int = MAX_ACTIVE_TIERS
    slot_step_minutes: int = 30

    @field_validator("commission_rate", "tax_rate")
    @classmethod
    def validate_rate(cls, value: Decimal) -> Decimal:
        """Rates are fractions, e.g. 0.10 for 10%."""
        if not Decimal("0") <= value <= Decimal("1"):
            raise ValueError(f"Rate must be between 0 and 1, got {value}")
        return value

    @field_validator("free_durations")
    @classmethod
    def validate_free_durations(cls, value: List[int]) -> List[int]:
        """Ensure free durations are non-negative and deduplicated."""
        invalid = [duration for duration in value if duration < 0]
        if invalid:
            raise ValueError(f"free_durations must not be negative, got {invalid}")
        return sorted(set(value))

    @field_validator("max_active_tiers", "slot_step_minutes")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("slot_step_minutes")
    @classmethod
    def validate_slot_step(cls, value: int) -> int:
        """Slots restart at :00 every hour, so the step must divide an hour."""
        if 60 % value:
            raise ValueError(f"slot_step_minutes must divide 60, got {value}")
        return value

    def gates(self) -> PlatformGates:
        return PlatformGates(
            allow_free_calls=self.allow_free_calls,
            allow_screen_sharing=self.allow_screen_sharing,
            allow_translation=self.allow_translation,
            allow_recording=self.allow_recording,
            allow_transcription=self.allow_transcription,
        )


class AddOnPriceConfig(BaseModel):
    """Platform-configured add-on prices."""
    screen_sharing: Decimal = Decimal("5.00")
    translation: Decimal = Decimal("10.00")
    recording: Decimal = Decimal("8.00")
    transcription: Decimal = Decimal("12.00")

    @field_validator("screen_sharing", "translation", "recording", "transcription")
    @classmethod
    def validate_price(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError(f"Add-on price must not be negative, got {value}")
        return value

    def to_prices(self) -> AddOnPrices:
        return AddOnPrices(
            screen_sharing=self.screen_sharing,
            translation=self.translation,
            recording=self.recording,
            transcription=self.transcription,
        )


class QAAccountsConfig(BaseModel):
    """QA accounts whose bookings are free."""
    enabled: bool = False
    identities: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_identities(self) -> "QAAccountsConfig":
        """An enabled bypass must name at least one account."""
        if self.enabled and not self.identities:
            raise ValueError("test_accounts.identities must not be empty when enabled")
        return self

    def to_policy(self) -> TestAccountPolicy:
        return TestAccountPolicy.of(self.identities, enabled=self.enabled)


class MarketplaceConfig(BaseModel):
    """Connection to the marketplace API."""
    base_url: str = "http://localhost:5000"
    access_token: str = ""
    timeout_seconds: float = 15.0

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value}")
        return value.rstrip("/")


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Europe/Madrid"
    log_level: str = "WARNING"
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    add_on_prices: AddOnPriceConfig = Field(default_factory=AddOnPriceConfig)
    test_accounts: QAAccountsConfig = Field(default_factory=QAAccountsConfig)
    marketplace: MarketplaceConfig = Field(default_factory=MarketplaceConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the given config file, or defaults when no file exists at the default path."""
    if config_path is not None:
        return AppConfig.load_from_yaml(config_path)

    default_path = get_default_config_path()
    if default_path.exists():
        return AppConfig.load_from_yaml(default_path)
    return AppConfig()
