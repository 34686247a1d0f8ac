"""Configuration management using Pydantic settings."""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Simulator settings loaded from MESH_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MESH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Tick scheduling
    tick_ms: int = 1000
    time_compression: float = 1.0
    autostart: bool = True
    seed: int = 42

    # Mesh
    max_range_km: float = 3.0
    gateway_lat: Optional[float] = 53.19745
    gateway_lng: Optional[float] = 10.84507

    # Advisory service (network analysis); disabled when unset
    advisory_url: Optional[str] = None
    advisory_timeout_s: float = 10.0

    # Vite dev server origins
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:5174",
        "http://localhost:5175",
    ]

    @property
    def gateway(self):
        if self.gateway_lat is None or self.gateway_lng is None:
            return None
        return (self.gateway_lat, self.gateway_lng)


settings = Settings()
