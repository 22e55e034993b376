from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class RamblySettings(BaseSettings):
    """Runtime configuration, overridable through RAMBLY_* environment variables"""

    # Proximity / follow tuning (map units)
    hearing_radius: float = 150
    follow_distance: float = 40
    follow_step_size: float = 20
    follow_interval: float = Field(default=0.1, description="Seconds between follow steps")

    # Daemon
    daemon_command: str = "npx tsx rambly-client.ts"
    default_name: str = "Agent"
    voice: str = "nova"
    join_timeout: float = 15.0  # seconds
    stop_grace_period: float = 0.5  # seconds
    status_refresh_delay: float = 0.3  # seconds

    # Where we believe we stand before the room tells us otherwise
    initial_x: float = 250
    initial_y: float = 230

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "rambly-agent"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = SettingsConfigDict(
        env_prefix="RAMBLY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
