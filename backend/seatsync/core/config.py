"""Configuration settings for the seatsync backend.

Wraps environment variables and provides defaults.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field, PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        LOCAL_DEVELOPMENT (bool): Whether the application is running locally.
        ENVIRONMENT (str): The deployment environment (local, dev, test, prod).
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        POSTGRES_HOST (str): The PostgreSQL server hostname.
        POSTGRES_PORT (int): The PostgreSQL server port.
        POSTGRES_DB (str): The PostgreSQL database name.
        POSTGRES_USER (str): The PostgreSQL username.
        POSTGRES_PASSWORD (str): The PostgreSQL password.
        SQLALCHEMY_ASYNC_DATABASE_URI (Optional[str]): The SQLAlchemy async database URI.
        RUN_ALEMBIC_MIGRATIONS (bool): Whether to run the alembic migrations on startup.
        LEMONSQUEEZY_API_KEY (Optional[str]): Lemon Squeezy API key. When unset the
            provider client is not configured and provider-backed operations return 503.
        LEMONSQUEEZY_API_URL (str): Base URL of the Lemon Squeezy API.
        LEMONSQUEEZY_WEBHOOK_SECRET (Optional[str]): Signing secret for webhook payloads.
        LEMONSQUEEZY_MONTHLY_VARIANT_ID (Optional[str]): Variant id of the monthly,
            usage-based product.
        LEMONSQUEEZY_YEARLY_VARIANT_ID (Optional[str]): Variant id of the yearly,
            quantity-based product.
        LEMONSQUEEZY_TIMEOUT_SECONDS (float): Timeout for a single provider request.
        CRON_SECRET (Optional[str]): Bearer token expected by the cron endpoints.
        YEARLY_PRICE_PER_SEAT (Decimal): Yearly price of one seat in major currency units.
        MONTHLY_PRICE_PER_SEAT (Decimal): Monthly price of one seat in major currency units.
        BILLING_CURRENCY (str): ISO 4217 code the seat prices are expressed in.
    """

    PROJECT_NAME: str = "seatsync"
    LOCAL_DEVELOPMENT: bool = False
    ENVIRONMENT: str = "local"

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "seatsync"
    POSTGRES_USER: str = "seatsync"
    POSTGRES_PASSWORD: str = "seatsync"
    SQLALCHEMY_ASYNC_DATABASE_URI: Optional[str] = Field(default=None, validate_default=True)

    RUN_ALEMBIC_MIGRATIONS: bool = False

    # Billing provider
    LEMONSQUEEZY_API_KEY: Optional[str] = None
    LEMONSQUEEZY_API_URL: str = "https://api.lemonsqueezy.com/v1"
    LEMONSQUEEZY_WEBHOOK_SECRET: Optional[str] = None
    LEMONSQUEEZY_MONTHLY_VARIANT_ID: Optional[str] = None
    LEMONSQUEEZY_YEARLY_VARIANT_ID: Optional[str] = None
    LEMONSQUEEZY_TIMEOUT_SECONDS: float = 10.0

    CRON_SECRET: Optional[str] = None

    # Seat pricing
    YEARLY_PRICE_PER_SEAT: Decimal = Decimal("120.00")
    MONTHLY_PRICE_PER_SEAT: Decimal = Decimal("12.00")
    BILLING_CURRENCY: str = "USD"

    @field_validator("SQLALCHEMY_ASYNC_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> str:
        """Build the SQLAlchemy database URI.

        Args:
        ----
            v (Optional[str]): The value of the SQLALCHEMY_ASYNC_DATABASE_URI setting.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            str: The assembled SQLAlchemy async database URI.

        """
        if isinstance(v, str) and v:
            return v

        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=info.data.get("POSTGRES_USER"),
                password=info.data.get("POSTGRES_PASSWORD"),
                host=info.data.get("POSTGRES_HOST", "localhost"),
                port=info.data.get("POSTGRES_PORT"),
                path=f"{info.data.get('POSTGRES_DB') or ''}",
            )
        )

    @field_validator("BILLING_CURRENCY")
    def normalize_currency(cls, v: str) -> str:
        """Upper-case the currency code and check it looks like ISO 4217."""
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"BILLING_CURRENCY must be a three-letter ISO code, got {v!r}")
        return v

    @property
    def lemonsqueezy_enabled(self) -> bool:
        """Whether the provider client can be constructed."""
        return bool(self.LEMONSQUEEZY_API_KEY)


settings = Settings()
