"""Configuration management for TableCall using Pydantic."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twilio Configuration
    twilio_account_sid: str | None = Field(None, description="Twilio account SID")
    twilio_auth_token: str | None = Field(None, description="Twilio auth token")
    twilio_phone_number: str | None = Field(None, description="Twilio phone number")

    # ElevenLabs Configuration
    elevenlabs_api_key: str | None = Field(None, description="ElevenLabs API key")
    elevenlabs_agent_id: str = Field(
        default="9XjNNhNDWGsAPGfwiEq9",
        description="Pre-configured conversational agent used for booking calls",
    )
    elevenlabs_phone_number_id: str | None = Field(
        None, description="ElevenLabs agent_phone_number_id for outbound calls"
    )
    elevenlabs_base_url: str = Field(
        default="https://api.elevenlabs.io/v1", description="ElevenLabs API base URL"
    )

    # Server Configuration
    server_host: str = Field(default="0.0.0.0", description="Server host")
    server_port: int = Field(default=5000, description="Server port")
    server_url: str = Field(
        default="http://localhost:5000",
        description="Public base URL used for status and agent callbacks",
    )
    public_domain: str | None = Field(
        None, description="Public domain for media streams (e.g., abc123.ngrok.io)"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    # Simulation Configuration
    simulation_min_delay: float = Field(
        default=4.0, ge=0, description="Shortest simulated conversation in seconds"
    )
    simulation_max_delay: float = Field(
        default=8.0, ge=0, description="Longest simulated conversation in seconds"
    )
    simulation_success_rate: float = Field(
        default=0.7, ge=0, le=1, description="Probability of a simulated confirmation"
    )

    def has_twilio_config(self) -> bool:
        """Check if Twilio is properly configured."""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )

    def has_elevenlabs_config(self) -> bool:
        """Check if the ElevenLabs API key is available."""
        return bool(self.elevenlabs_api_key)

    def model_post_init(self, __context) -> None:
        """Validate configuration after initialization."""
        if not self.twilio_account_sid:
            logger.warning("TWILIO_ACCOUNT_SID not set - Twilio features disabled")

        if not self.twilio_auth_token:
            logger.warning("TWILIO_AUTH_TOKEN not set - Twilio features disabled")

        if not self.twilio_phone_number:
            logger.warning("TWILIO_PHONE_NUMBER not set - Twilio features disabled")

        if not self.elevenlabs_api_key:
            logger.warning("ELEVENLABS_API_KEY not set - agent calls will be simulated")

        if self.simulation_max_delay < self.simulation_min_delay:
            msg = "SIMULATION_MAX_DELAY must not be lower than SIMULATION_MIN_DELAY"
            raise ValueError(msg)


# Global config instance
config: Config | None = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global config
    if config is None:
        config = Config()
    return config


def setup_logging(cfg: Config | None = None) -> None:
    """Configure logging for the application."""
    if cfg is None:
        cfg = get_config()

    log_level = getattr(logging, cfg.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("twilio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
