"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class StorageConfig(BaseModel):
    """Persistent key/value storage that survives restarts."""

    preferences_path: str = "~/.pawfeeds/data/preferences.db"
    namespace: str = "pawfeeds"


class NetworkConfig(BaseModel):
    """Wi-Fi link bring-up."""

    backend: str = "nmcli"  # nmcli | static
    interface: str = "wlan0"
    connect_attempts: int = 30
    connect_backoff_ms: int = 500
    scan_timeout_seconds: float = 10.0


class CloudConfig(BaseModel):
    """Firestore document store and auth settings."""

    project_id: str = ""
    database_id: str = "(default)"
    firestore_base_url: str = "https://firestore.googleapis.com/v1"
    auth_token: str = ""  # OAuth2 access token or ID token accepted by the backend
    auth_token_file: str = ""  # Re-read on every token request when set
    timeout_seconds: float = 10.0
    schedules_page_size: int = 100
    feeders_collection: str = "feeders"
    users_collection: str = "users"


class RealtimeConfig(BaseModel):
    """Realtime Database command stream settings."""

    database_url: str = ""
    commands_path: str = "/commands"
    read_timeout_seconds: float = 60.0  # server sends keep-alive every ~30s
    queue_max_size: int = 64


class ScheduleConfig(BaseModel):
    """Local schedule cache and evaluation."""

    timezone: str = "Asia/Singapore"
    fetch_interval_seconds: int = 3600
    evaluate_interval_seconds: int = 60


class ActuatorConfig(BaseModel):
    """Servo dispenser configuration."""

    driver: str = "mock"  # mock | gpio
    ms_per_gram: int = 50  # calibrate: milliseconds of rotation per gram
    bowl_pins: dict[int, int] = Field(default_factory=lambda: {1: 21, 2: 22})
    dispense_angle: float = 0.0
    stop_angle: float = 90.0
    min_angle: float = 0.0
    max_angle: float = 180.0


class ProvisioningConfig(BaseModel):
    """Local provisioning listener served while no Wi-Fi credentials are stored."""

    host: str = "0.0.0.0"
    port: int = 80
    access_point_ssid: str = "PawFeeds_Setup"
    max_request_body_bytes: int = 4096


class RuntimeConfig(BaseModel):
    """Orchestrator loop timing."""

    tick_interval_ms: int = 100
    error_idle_seconds: int = 10
    stream_retry_seconds: float = 5.0  # minimum gap between stream start attempts


class LoggingConfig(BaseModel):
    """Optional file sink for runtime logs."""

    file: str = ""
    level: str = "INFO"
    rotation: str = "5 MB"
    retention: int = 3


class Config(BaseSettings):
    """Root configuration for pawfeeds."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    cloud: CloudConfig = Field(default_factory=CloudConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    actuator: ActuatorConfig = Field(default_factory=ActuatorConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def preferences_path(self) -> Path:
        """Get expanded preferences database path."""
        return Path(self.storage.preferences_path).expanduser()

    model_config = ConfigDict(
        env_prefix="PAWFEEDS_",
        env_nested_delimiter="__"
    )
