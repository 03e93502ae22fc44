"""Process-level settings loaded from the environment using Pydantic Settings.

The registry descriptor holds tenants and infrastructure defaults; these
settings only pick the descriptor and override a few server knobs per
process (container env, local runs).
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from docs_content_server.deployment_config import DeploymentConfig, InfrastructureConfig


class Settings(BaseSettings):
    """Strictly typed environment overrides, validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    deployment_config: Path = Field(
        default=Path("deployment.json"), description="Path to the registry descriptor (JSON or YAML)"
    )
    host: str | None = Field(default=None, description="Override infrastructure.host")
    port: int | None = Field(default=None, ge=1, le=65535, description="Override infrastructure.port")
    log_level: str | None = Field(
        default=None, pattern=r"(?i)^(debug|info|warning|error|critical)$", description="Override infrastructure.log_level"
    )
    log_profile: str | None = Field(default=None, description="Override infrastructure.log_profile")

    def overrides(self) -> dict[str, object]:
        values = {
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level.lower() if self.log_level else None,
            "log_profile": self.log_profile,
        }
        return {key: value for key, value in values.items() if value is not None}

    def apply(self, config: DeploymentConfig) -> DeploymentConfig:
        """Return ``config`` with environment overrides applied and re-validated."""
        overrides = self.overrides()
        if not overrides:
            return config
        merged = {**config.infrastructure.model_dump(), **overrides}
        infrastructure = InfrastructureConfig.model_validate(merged)
        return config.model_copy(update={"infrastructure": infrastructure})
