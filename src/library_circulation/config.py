"""Configuration management for the library circulation service.

Settings come from environment variables prefixed with
``LIBRARY_CIRCULATION_`` (or a local ``.env`` file) and are validated with
pydantic-settings:

1. Service metadata used by the MCP handshake
2. Storage location for the circulation database
3. Circulation policy (loan period, hold period, fine schedule)
4. Logging
"""

from decimal import Decimal
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .circulation.fines import FinePolicy


class CirculationConfig(BaseSettings):
    """Service configuration.

    The circulation engine itself never reads this object. The server entry
    point builds a ``DatabaseManager`` and a ``FinePolicy`` from it and
    injects them.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Service Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="MCP server name used in protocol handshake",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version reported to clients",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    # === Circulation Policy ===

    default_loan_days: int = Field(
        default=14,
        description="Loan period used when checkout does not give a due date",
        ge=1,
        le=365,
    )

    reservation_hold_days: int = Field(
        default=7,
        description="Days a reservation stays valid when no expiry date is given",
        ge=1,
        le=365,
    )

    damage_fee: Decimal = Field(
        default=Decimal("15.00"),
        description="Flat fee charged when an item comes back damaged",
        ge=0,
    )

    lost_fee: Decimal = Field(
        default=Decimal("50.00"),
        description="Flat fee charged when an item is reported lost",
        ge=0,
    )

    daily_late_fee: Decimal = Field(
        default=Decimal("0.50"),
        description="Late fee per started day past the due date",
        ge=0,
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @property
    def fine_policy(self) -> FinePolicy:
        return FinePolicy(
            damage_fee=self.damage_fee,
            lost_fee=self.lost_fee,
            daily_rate=self.daily_late_fee,
        )

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level

    def get_database_url(self) -> str:
        """Get the SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for the process configuration."""

    _instance: CirculationConfig | None = None


def get_config() -> CirculationConfig:
    """Get or create the process configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = CirculationConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Drop the cached configuration (used by tests)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
