"""
Lane Blocker Configuration
==========================

This module handles configuration loading for the lane blocker.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    LANE_BLOCKER_CONFIG              -> path of the config file
    LANE_BLOCKER_FEED_URL            -> feed.url
    LANE_BLOCKER_FEED_ENABLED        -> feed.enabled
    LANE_BLOCKER_RMF_FRAME           -> blocker.rmf_frame
    LANE_BLOCKER_OBSTACLE_TTL        -> blocker.obstacle_ttl_sec
    LANE_BLOCKER_PROXIMITY_THRESHOLD -> blocker.proximity_threshold
    LANE_BLOCKER_LANE_WIDTH          -> blocker.lane_width
    LANE_BLOCKER_CLOSURE_THRESHOLD   -> blocker.closure_threshold
    LANE_BLOCKER_MITIGATION          -> blocker.mitigation
    LANE_BLOCKER_PORT                -> server.port
    LANE_BLOCKER_LOG_LEVEL           -> logging.level
    PORT                             -> server.port (Cloud Run)

Example:
    from lane_blocker.config import settings

    print(settings.blocker.closure_threshold)
    print(settings.feed.url)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from lane_blocker.models.output import Mitigation


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AgentConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="lane-blocker", description="Service name")
    version: str = Field(default="v0.1.0", description="Protocol version")


class FeedConfig(BaseModel):
    """Obstacle feed connection configuration."""

    enabled: bool = Field(default=True, description="Connect to the obstacle feed")
    url: str = Field(
        default="ws://localhost:8000/ws/obstacles",
        description="WebSocket URL of the obstacle feed",
    )
    reconnect_backoff_ms: int = Field(
        default=500,
        ge=100,
        description="Backoff in milliseconds between reconnect attempts",
    )
    max_reconnect_attempts: int = Field(
        default=0,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )
    max_queue_size: int = Field(
        default=50,
        ge=1,
        description="Maximum size of internal message buffer",
    )


class BlockerConfig(BaseModel):
    """Lane blocking parameters."""

    rmf_frame: str = Field(
        default="map",
        description="Common frame all obstacles are transformed into",
    )
    obstacle_ttl_sec: float = Field(
        default=1.0,
        gt=0,
        description="Time an unrefreshed obstacle stays tracked (seconds)",
    )
    proximity_threshold: float = Field(
        default=0.25,
        ge=0,
        description="Maximum obstacle/lane separation counted as vicinity (meters)",
    )
    lane_width: float = Field(
        default=0.5,
        gt=0,
        description="Width of every lane corridor (meters)",
    )
    closure_threshold: int = Field(
        default=5,
        ge=1,
        description="Vicinity obstacle count at which a lane closes",
    )
    reopen_threshold: int = Field(
        default=0,
        ge=0,
        description="Vicinity obstacle count at or below which a closed lane reopens",
    )
    process_period_sec: float = Field(
        default=1.0,
        gt=0,
        description="Period of the full recompute pass (seconds)",
    )
    cull_period_sec: float = Field(
        default=1.0,
        gt=0,
        description="Period of the cull pass (seconds)",
    )
    transform_timeout_sec: float = Field(
        default=0.5,
        gt=0,
        description="Timeout for one frame transform lookup (seconds)",
    )
    incremental_recompute: bool = Field(
        default=True,
        description="Recompute observed obstacles right after ingestion",
    )
    max_pass_ms: float = Field(
        default=500.0,
        gt=0,
        description="Full passes slower than this are logged as warnings",
    )
    mitigation: Mitigation = Field(
        default=Mitigation.CLOSURE,
        description="Requests to emit: closure, speed_limit or both",
    )
    speed_limit: float = Field(
        default=0.5,
        gt=0,
        description="Speed limit (m/s) used by speed_limit mitigation",
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> "BlockerConfig":
        if self.reopen_threshold >= self.closure_threshold:
            raise ValueError("reopen_threshold must be below closure_threshold")
        return self


class StaticTransformConfig(BaseModel):
    """Fixed transform mapping child_frame into parent_frame."""

    parent_frame: str
    child_frame: str
    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0


class TransformsConfig(BaseModel):
    """Static transform tree configuration."""

    static: List[StaticTransformConfig] = Field(default_factory=list)


class GraphsConfig(BaseModel):
    """Navigation graphs loaded at startup."""

    paths: List[str] = Field(
        default_factory=list,
        description="Paths of navigation graph JSON files",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8002, ge=1, le=65535, description="Bind port")
    request_history_size: int = Field(
        default=100,
        ge=1,
        description="Number of recent requests kept for GET /requests",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the lane blocker.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    agent: AgentConfig = Field(default_factory=AgentConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    blocker: BlockerConfig = Field(default_factory=BlockerConfig)
    transforms: TransformsConfig = Field(default_factory=TransformsConfig)
    graphs: GraphsConfig = Field(default_factory=GraphsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("LANE_BLOCKER_CONFIG")

    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    # Build settings object
    settings = Settings.model_validate(config_data)

    return settings


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Feed settings
    if env_url := os.environ.get("LANE_BLOCKER_FEED_URL"):
        config_data.setdefault("feed", {})["url"] = env_url
    if env_enabled := os.environ.get("LANE_BLOCKER_FEED_ENABLED"):
        config_data.setdefault("feed", {})["enabled"] = env_enabled.lower() in ("1", "true", "yes")

    # Blocker settings
    if env_frame := os.environ.get("LANE_BLOCKER_RMF_FRAME"):
        config_data.setdefault("blocker", {})["rmf_frame"] = env_frame
    if env_ttl := os.environ.get("LANE_BLOCKER_OBSTACLE_TTL"):
        config_data.setdefault("blocker", {})["obstacle_ttl_sec"] = float(env_ttl)
    if env_prox := os.environ.get("LANE_BLOCKER_PROXIMITY_THRESHOLD"):
        config_data.setdefault("blocker", {})["proximity_threshold"] = float(env_prox)
    if env_width := os.environ.get("LANE_BLOCKER_LANE_WIDTH"):
        config_data.setdefault("blocker", {})["lane_width"] = float(env_width)
    if env_closure := os.environ.get("LANE_BLOCKER_CLOSURE_THRESHOLD"):
        config_data.setdefault("blocker", {})["closure_threshold"] = int(env_closure)
    if env_mitigation := os.environ.get("LANE_BLOCKER_MITIGATION"):
        config_data.setdefault("blocker", {})["mitigation"] = env_mitigation

    # Server settings (Cloud Run uses PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("LANE_BLOCKER_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("LANE_BLOCKER_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
