"""Configuration management for sfrun."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENDPOINT = "http://localhost:19080"
DEFAULT_IMAGE_STORE = "fabric:ImageStore"


class Settings(BaseSettings):
    """Cluster connection and output settings.

    Every field can be set through an ``SFRUN_`` prefixed environment
    variable or a ``.env`` file; command-line flags take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="SFRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Cluster
    endpoint: str = Field(DEFAULT_ENDPOINT, description="Service Fabric HTTP gateway endpoint")
    api_version: str = Field("6.0", description="REST api-version query parameter")
    provision_api_version: str = Field("6.2", description="api-version for typed provisioning requests")
    request_timeout_seconds: float = Field(60.0, description="Per-request transport timeout")
    image_store_default: str = Field(
        DEFAULT_IMAGE_STORE,
        description="Image store connection string used when the cluster manifest has none",
    )

    # TLS for secured clusters
    client_cert: Optional[str] = Field(None, description="Client certificate (PEM)")
    client_key: Optional[str] = Field(None, description="Client certificate private key (PEM)")
    verify_tls: bool = Field(True, description="Verify the gateway's TLS certificate")
    ca_bundle: Optional[str] = Field(None, description="CA bundle used to verify the gateway")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("console")

    @field_validator("endpoint")
    @classmethod
    def normalize_endpoint(cls, v: str) -> str:
        """Accept bare host:port endpoints and strip trailing slashes."""
        v = v.strip()
        if "://" not in v:
            v = f"http://{v}"
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v
