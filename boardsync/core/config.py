"""Configuration management for boardsync."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Asana Configuration
    asana_access_token: str | None = Field(default=None, description="Asana personal access token")
    asana_base_url: str = Field(default="https://app.asana.com/api/1.0", description="Asana REST API base URL")

    # Request Configuration
    request_timeout_seconds: float = Field(default=30.0, description="Timeout applied to every API call")
    page_limit: int = Field(default=100, description="Items requested per page on list endpoints (Asana max 100)")

    # Retry Configuration
    retry_max_attempts: int = Field(default=5, description="Maximum attempts for retryable API calls")
    retry_base_delay: float = Field(default=1.0, description="Initial backoff delay in seconds")
    retry_max_delay: float = Field(default=30.0, description="Upper bound for exponential backoff in seconds")

    # Board Configuration
    include_completed_tasks: bool = Field(default=False, description="Load completed tasks into the board")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # HTTP Status Codes
    HTTP_UNAUTHORIZED: int = 401
    HTTP_REQUEST_TIMEOUT: int = 408
    HTTP_TOO_MANY_REQUESTS: int = 429
    HTTP_SERVER_ERROR: int = 500

    # Pagination
    MAX_PAGE_LIMIT: int = 100  # Asana rejects limits above 100

    # Custom fields
    MAX_EXACT_NUMBER_DIGITS: int = 15  # Significant digits a JSON double carries exactly


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


def get_credential() -> str:
    """Return the Asana access token, raising if it is not configured."""
    return settings.require_credential("asana_access_token", "Asana")


# Global settings instance
settings = get_settings()
