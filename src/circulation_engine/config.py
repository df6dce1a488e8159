"""Configuration management for the Circulation Engine.

Every policy number the engine applies (loan periods, fine rates, replacement
tariffs, waitlist weights, the reconciliation schedule) lives here so that it
can be changed per deployment through environment variables or a `.env` file.
"""

from decimal import Decimal
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """Engine configuration loaded from `CIRCULATION_*` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # === Service Metadata ===

    engine_name: str = Field(
        default="circulation-engine",
        description="Service name announced to MCP clients",
        pattern=r"^[a-z0-9-]+$",
    )

    engine_version: str = Field(
        default="0.1.0",
        description="Service version for capability negotiation",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite ledger file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    # === Transport Configuration ===

    transport: str = Field(
        default="stdio",
        description="Primary transport mechanism",
        pattern=r"^(stdio|streamable_http)$",
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

    # === Loan Policy ===

    loan_days: int = Field(
        default=14,
        description="Default loan period for normal members",
        ge=1,
        le=365,
    )

    premium_loan_days: int = Field(
        default=30,
        description="Default loan period for premium members",
        ge=1,
        le=365,
    )

    monthly_request_limit: int = Field(
        default=3,
        description="Issue requests a normal member may create per calendar month",
        ge=1,
    )

    # === Penalty Policy ===

    late_fee_rate: Decimal = Field(
        default=Decimal("0.10"),
        description="Fraction of the book MRP charged per overdue day",
        ge=0,
        le=1,
    )

    damage_replacement_factor: Decimal = Field(
        default=Decimal("1.0"),
        description="Damage penalty as a multiple of the book MRP",
        ge=0,
    )

    lost_replacement_factor: Decimal = Field(
        default=Decimal("1.0"),
        description="Loss penalty as a multiple of the book MRP",
        ge=0,
    )

    damage_flat_fee: Decimal = Field(
        default=Decimal("0.00"),
        description="Damage penalty charged when the book has no MRP on file",
        ge=0,
    )

    lost_flat_fee: Decimal = Field(
        default=Decimal("0.00"),
        description="Loss penalty charged when the book has no MRP on file",
        ge=0,
    )

    allow_partial_payments: bool = Field(
        default=True,
        description="Accept payments smaller than the outstanding balance",
    )

    # === Waitlist Policy ===

    waitlist_waiting_weight: float = Field(
        default=1.0,
        description="Score added per day spent waiting",
        ge=0,
    )

    waitlist_premium_bonus: float = Field(
        default=8.0,
        description="Flat score bonus for premium members",
    )

    waitlist_late_penalty: float = Field(default=-3.0, le=0)
    waitlist_late_cap: int = Field(default=5, ge=0)
    waitlist_damaged_penalty: float = Field(default=-8.0, le=0)
    waitlist_damaged_cap: int = Field(default=3, ge=0)
    waitlist_lost_penalty: float = Field(default=-15.0, le=0)
    waitlist_lost_cap: int = Field(default=2, ge=0)

    estimated_days_per_position: int = Field(
        default=7,
        description="Expected days of wait contributed by each queue position",
        ge=0,
    )

    # === Reconciliation Job ===

    enable_reconciliation_job: bool = Field(
        default=True,
        description="Run the nightly penalty sweep inside the server process",
    )

    reconciliation_hour: int = Field(default=2, ge=0, le=23)
    reconciliation_minute: int = Field(default=0, ge=0, le=59)

    reconciliation_max_retries: int = Field(
        default=3,
        description="Attempts per record before a version conflict is skipped",
        ge=1,
        le=10,
    )

    # === Validation Methods ===

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Ensure the ledger directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @model_validator(mode="after")
    def validate_loan_periods(self) -> "EngineConfig":
        if self.premium_loan_days < self.loan_days:
            raise ValueError("premium_loan_days must not be shorter than loan_days")
        return self

    # === Computed Properties ===

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def server_info(self) -> dict[str, str]:
        return {
            "name": self.engine_name,
            "version": self.engine_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: EngineConfig | None = None


def get_config() -> EngineConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = EngineConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def set_config(config: EngineConfig) -> None:
    """Install an explicit configuration (tests and embedding callers)."""
    _ConfigStore._instance = config  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
