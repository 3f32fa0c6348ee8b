"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values.
"""

from pathlib import Path

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "https://localhost:3000",
    "https://localhost:8000",
    "http://0.0.0.0:8000",
]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        openrouter_api_key: API key for OpenRouter services.
        model_id: Identifier for the language model to be used.
        llm_max_tokens: Maximum tokens requested per text-generation call.
        llm_temperature: Sampling temperature for narrative generation.
        api_key: General API key for securing internal API endpoints.
        log_level: Level of the application loggers.
        cors_allowed_origins: List of allowed origins for CORS.
        database_url: SQLAlchemy URL of the engagement database.
        storage_backend: Where generated reports and uploaded models live ("local" or "s3").
        upload_base_path: Root directory (or S3 key prefix) for stored files.
        ai_call_delay_seconds: Mandatory spacing between AI calls within one job.
        pacing_strategy: "fixed" delay or "token_bucket" pacing for AI calls.
        job_ttl_seconds: How long finished jobs stay queryable before eviction.
        report_retention_days: Retention window of generated reports.
        max_notification_warnings: Maximum number of warnings listed in the "report ready" email.
        economic_outlook_dir: Directory holding quarterly economic outlook documents.
        LLM_CONNECT_TIMEOUT: LLM client connect timeout in seconds.
        LLM_READ_TIMEOUT: LLM client read timeout in seconds.
    """

    openrouter_api_key: str | None = Field(default=None)
    model_id: str = Field(default="anthropic/claude-sonnet-4")
    llm_max_tokens: int = Field(default=2048)
    llm_temperature: float = Field(default=0.7)

    api_key: str | None = Field(default=None)
    log_level: str = Field(default="INFO")

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),  # Use a copy of the default list
    )

    database_url: str = Field(default="sqlite:///./valuation_reports.db")

    storage_backend: str = Field(default="local")
    upload_base_path: Path = Field(default=Path("./uploads"))

    ai_call_delay_seconds: float = Field(default=15.0, ge=0)
    pacing_strategy: str = Field(default="fixed")
    job_ttl_seconds: int = Field(default=3600)
    job_eviction_interval_seconds: int = Field(default=300)
    report_retention_days: int = Field(default=30)
    max_notification_warnings: int = Field(default=5)
    default_industry: str = Field(default="General Business Services")
    economic_outlook_dir: Path = Field(default=Path("./uploads/outlooks"))

    smtp_host: str | None = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_user: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_from: str = Field(default="Valuation Report Generator <noreply@example.com>")
    dashboard_url: str = Field(default="http://localhost:3000/dashboard")

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="LLM client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=180.0, description="LLM client read timeout in seconds.")

    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)
    aws_region: str = Field(default="eu-north-1")
    s3_bucket_name: str | None = Field(default=None)

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.

        Args:
            v: The value from the environment or direct assignment.

        Returns:
            A list of strings representing allowed CORS origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        return list(DEFAULT_CORS_ORIGINS)

    @field_validator("storage_backend", "pacing_strategy", mode="before")  # type: ignore
    @classmethod
    def normalise_choice(cls, v: str) -> str:
        return str(v).strip().lower()

    @property
    def reports_dir(self) -> str:
        return str(self.upload_base_path / "reports")

    @property
    def models_dir(self) -> str:
        return str(self.upload_base_path / "models")


settings = Settings()
