"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_API_BASE_URL = "https://api.comick.fun"
DEFAULT_ASSET_BASE_URL = "https://meo.comick.pictures"


class SyncConfig(BaseModel):
    """A validated configuration model for the sync engine."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Remote endpoints
    api_base_url: str = DEFAULT_API_BASE_URL
    asset_base_url: str = DEFAULT_ASSET_BASE_URL
    language: str = "en"

    # Catalog pagination
    page_size: int = 100
    max_pages: int = 100

    # Asset downloads
    max_workers: int = 8
    batch_size: int = 50
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    request_timeout: float = 12.0

    # Pauses between request windows and batches, in seconds
    window_pause: float = 0.05
    batch_pause: float = 0.1
    failure_pause: float = 0.5

    # Transport health
    consecutive_failure_threshold: int = 5
    reset_trigger_threshold: int = 10
    reset_pause: float = 1.0
    probe_path: str = "__health__"

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)
    library_path: str = Field("", repr=False)

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of concurrent image downloads."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if v < 1 or v > 1000:
            raise ValueError("Page size must be between 1 and 1000.")
        return v

    @field_validator("batch_size", "max_pages", "retry_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1.")
        return v

    @field_validator(
        "retry_base_delay",
        "request_timeout",
        "window_pause",
        "batch_pause",
        "failure_pause",
        "reset_pause",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays and timeouts cannot be negative.")
        return v

    @field_validator("api_base_url", "asset_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v.rstrip("/")

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        if not v:
            raise ValueError("Language code cannot be empty.")
        return v.lower()

    @model_validator(mode="after")
    def validate_thresholds(self) -> "SyncConfig":
        """Checks that the transport health thresholds are coherent."""
        if self.consecutive_failure_threshold < 1:
            raise ValueError("consecutive_failure_threshold must be at least 1.")
        if self.reset_trigger_threshold < self.consecutive_failure_threshold:
            raise ValueError(
                "reset_trigger_threshold cannot be lower than "
                "consecutive_failure_threshold."
            )
        if self.request_timeout == 0:
            raise ValueError("request_timeout must be greater than zero.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path", "library_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
