"""
Configuration via Pydantic BaseSettings. Single source of truth for all env vars.

Each group reads its own env prefix (SERVER_, DATABASE_, ...).
"""

from typing import List, Literal

from pydantic_settings import BaseSettings

Environment = Literal["development", "production", "serverless"]
StartupProfile = Literal["normal", "emergency"]


class ServerConfig(BaseSettings):
    """Process-level configuration and the deployment-mode signal."""

    environment: Environment = "production"
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"
    log_dir: str = ""
    startup_profile: StartupProfile = "normal"
    version: str = "1.0.0"

    model_config = {"env_prefix": "SERVER_"}

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_serverless(self) -> bool:
        return self.environment == "serverless"


class DatabaseConfig(BaseSettings):
    """Database liveness probing and background monitoring."""

    url: str = ""
    probe_timeout_seconds: float = 5.0
    monitor_enabled: bool = True
    monitor_interval_seconds: float = 300.0

    model_config = {"env_prefix": "DATABASE_"}


class RoutesConfig(BaseSettings):
    """Business route groups, imported in priority order."""

    modules: List[str] = ["empire.api.routes.system"]

    model_config = {"env_prefix": "ROUTES_"}


class AssetsConfig(BaseSettings):
    """Client asset serving (static build or development proxy)."""

    dist_dir: str = "dist/public"
    public_dir: str = "public"
    dev_server_url: str = "http://localhost:5173"
    dev_server_timeout_seconds: float = 2.0

    model_config = {"env_prefix": "ASSETS_"}


class TelemetryConfig(BaseSettings):
    """Per-request API log lines."""

    enabled: bool = True
    api_prefix: str = "/api"
    max_line_length: int = 80

    model_config = {"env_prefix": "TELEMETRY_"}


class BrainConfig(BaseSettings):
    """Local AI brain connector, probed once after the server is ready."""

    enabled: bool = True
    url: str = "http://localhost:11434"
    delay_seconds: float = 2.0
    timeout_seconds: float = 3.0

    model_config = {"env_prefix": "BRAIN_"}


class Settings:
    """Aggregated settings from all config groups."""

    def __init__(self):
        self.server = ServerConfig()
        self.database = DatabaseConfig()
        self.routes = RoutesConfig()
        self.assets = AssetsConfig()
        self.telemetry = TelemetryConfig()
        self.brain = BrainConfig()
