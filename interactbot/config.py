# interactbot/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    bot_name: str = "interactbot"
    build_id: str | None = None  # Reported by /version; defaults to package version
    port: int = 8080

    # Platform application
    application_id: str = ""
    public_key: str = ""  # Hex Ed25519 key from the developer portal
    bot_token: str | None = None  # Only needed for command install/teardown
    platform_api_base: str = "https://discord.com/api/v10"

    # Inbound verification
    # Reject timestamps older/newer than this many seconds (None = no freshness check)
    signature_max_skew_seconds: int | None = None

    # Command registry
    sync_commands_on_startup: bool = False  # Install commands before serving

    # Follow-ups
    followup_timeout_seconds: float = 900.0  # Interaction token lifetime
    shutdown_drain_seconds: float = 10.0

    # Secret store (downstream credential)
    project_id: str = ""
    secret_id: str = "image-api-key"
    aws_region: str | None = None

    # Downstream image service
    image_api_base_url: str = "https://api.openai.com"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"

    # Monitoring
    metrics_token: str | None = None  # Bearer token for GET /metrics; unset = internal network only

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("application_id", self.application_id),
            ("public_key", self.public_key),
            ("secret_id", self.secret_id),
        ]
        if self.sync_commands_on_startup:
            required_fields.append(("bot_token", self.bot_token))

        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.application_id:
        warnings.append("application_id is not set (every interaction will be rejected as misaddressed).")
    if not s.public_key:
        warnings.append("public_key is not set (the service cannot verify interactions).")
    if s.sync_commands_on_startup and not s.bot_token:
        warnings.append("sync_commands_on_startup=True but bot_token is missing (startup will fail).")
    if not s.project_id:
        warnings.append("project_id is not set (secret is looked up without a project prefix).")
    if s.followup_timeout_seconds > 900:
        warnings.append("followup_timeout_seconds exceeds the 15 minute interaction token lifetime.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
