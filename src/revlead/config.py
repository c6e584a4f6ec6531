from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from revlead.identity import DEFAULT_LEASE_TTL, generate_instance_id


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REVLEAD_", env_file=".env", extra="ignore")

    app_name: str = "revlead"

    # Election identity
    namespace: str = "default"
    election_id: str = "revlead-leader"
    instance_name: str = Field(default_factory=generate_instance_id)
    revision: str = ""
    lease_ttl: float = DEFAULT_LEASE_TTL

    # Delay before the next cycle after a lost term (defaults to lease_ttl / 4)
    backoff: float | None = None

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    key_prefix: str = "revlead:lock:"

    # Default revision source
    default_revision_key: str = "revlead:default-revision"
    default_revision_poll_interval: float = 5.0

    # Observability
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = True

    # Health server (disabled when port is 0)
    health_host: str = "0.0.0.0"  # nosec B104 - intentional for container deployments
    health_port: int = 0


settings = Settings()
