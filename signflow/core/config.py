
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application configuration loaded from environment variables / .env file."""

    app_name: str = "SignFlow API"
    app_env: str = "development"
    app_port: int = 8000
    frontend_url: str = "http://localhost:3000"
    max_upload_size_mb: int = 25

    # Database (any async SQLAlchemy URL; SQLite for local dev)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./signflow_dev.db",
        alias="DATABASE_URL",
    )

    # Multi-tenancy default
    default_client_id: str = Field(default="default", alias="DEFAULT_CLIENT_ID")

    # Public links and document storage
    public_base_url: str = Field(
        default="http://localhost:8000", alias="PUBLIC_BASE_URL",
    )  # recipient links are {public_base_url}/s/{token}
    storage_dir: str = Field(default="./storage", alias="STORAGE_DIR")
    source_fetch_timeout: int = Field(default=30, alias="SOURCE_FETCH_TIMEOUT")
    # Local source documents are only read from inside this directory
    source_dir: str | None = Field(default=None, alias="SOURCE_DIR")
    # Empty: remote sources are not fetched at all
    source_allowed_hosts: list[str] = Field(default_factory=list, alias="SOURCE_ALLOWED_HOSTS")

    # Field matching policy
    reserved_field_names: list[str] = Field(
        default_factory=lambda: ["kbup"], alias="RESERVED_FIELD_NAMES",
    )
    signature_field_patterns: list[str] = Field(
        default_factory=lambda: ["sign", "auth"], alias="SIGNATURE_FIELD_PATTERNS",
    )
    signature_min_width: float = Field(default=150.0, alias="SIGNATURE_MIN_WIDTH")
    signature_min_height: float = Field(default=40.0, alias="SIGNATURE_MIN_HEIGHT")
    signature_fallback_text: str = Field(
        default="*** DIGITALLY SIGNED ***", alias="SIGNATURE_FALLBACK_TEXT",
    )

    # Notifications
    email_relay_url: str | None = Field(default=None, alias="EMAIL_RELAY_URL")
    email_from: str = Field(default="no-reply@signflow.local", alias="EMAIL_FROM")
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str | None = Field(default=None, alias="TWILIO_FROM_NUMBER")
    notification_timeout: int = Field(default=15, alias="NOTIFICATION_TIMEOUT")

    # Completion pipeline
    run_pipeline_in_background: bool = Field(
        default=False, alias="RUN_PIPELINE_IN_BACKGROUND",
    )  # False: the final submit request waits for the documents

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
    }

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def email_enabled(self) -> bool:
        """Email goes out only when a relay endpoint is configured."""
        return bool(self.email_relay_url)

    @property
    def sms_enabled(self) -> bool:
        return bool(
            self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number
        )

    def recipient_url(self, access_token: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/s/{access_token}"

    def document_url(self, ref: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/documents/{ref}"

settings = Settings()
