"""Configuration settings for the ledgerhook backend.

Wraps environment variables and provides defaults.
"""

from typing import Optional

from pydantic import PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        LOCAL_DEVELOPMENT (bool): Whether the application is running locally.
        ENVIRONMENT (str): The deployment environment (local, dev, test, prd).
        DEBUG (bool): Whether debug mode is enabled.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        POSTGRES_HOST (str): The PostgreSQL server hostname.
        POSTGRES_DB (str): The PostgreSQL database name.
        POSTGRES_USER (str): The PostgreSQL username.
        POSTGRES_PASSWORD (str): The PostgreSQL password.
        SQLALCHEMY_ASYNC_DATABASE_URI (Optional[str]): The SQLAlchemy async database URI.
        RUN_ALEMBIC_MIGRATIONS (bool): Whether to run the alembic migrations on startup.
        STRIPE_SECRET_KEY (Optional[str]): Stripe API key, used to look up subscriptions that
            are not known locally. Webhook processing works without it.
        STRIPE_WEBHOOK_SECRET (str): Shared secret used to verify webhook signatures.
            Required; the application refuses to start without it.
        STRIPE_WEBHOOK_TOLERANCE_SECONDS (int): Maximum age of a signed webhook timestamp.
        WEBHOOK_PROCESSING_TIMEOUT_SECONDS (float): Deadline for processing one event.
        STORAGE_RETRY_ATTEMPTS (int): Attempts for a grant transaction that fails on a
            transient database error before the event is handed back for redelivery.
    """

    PROJECT_NAME: str = "ledgerhook"
    LOCAL_DEVELOPMENT: bool = False
    ENVIRONMENT: str = "local"

    # Debug configuration
    DEBUG: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_DB: str = "ledgerhook"
    POSTGRES_USER: str = "ledgerhook"
    POSTGRES_PASSWORD: str = ""
    SQLALCHEMY_ASYNC_DATABASE_URI: Optional[str] = None

    RUN_ALEMBIC_MIGRATIONS: bool = False

    # Stripe configuration
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Processing configuration
    WEBHOOK_PROCESSING_TIMEOUT_SECONDS: float = 5.0
    STORAGE_RETRY_ATTEMPTS: int = 3

    @field_validator("STRIPE_WEBHOOK_SECRET", mode="before")
    def validate_webhook_secret(cls, v: Optional[str]) -> str:
        """Refuse to start with an empty webhook secret.

        Args:
            v: The configured webhook signing secret.

        Raises:
            ValueError: If the secret is empty.
        """
        if v is None or not str(v).strip():
            raise ValueError("STRIPE_WEBHOOK_SECRET must be set")
        return str(v).strip()

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
        if isinstance(v, str):
            return v

        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=info.data.get("POSTGRES_USER"),
                password=info.data.get("POSTGRES_PASSWORD"),
                host=info.data.get("POSTGRES_HOST", "localhost"),
                path=f"{info.data.get('POSTGRES_DB') or ''}",
            )
        )


settings = Settings()
