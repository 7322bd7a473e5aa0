"""
Configuration management for LadderStream
"""

import yaml
from pathlib import Path
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ResolutionSpec


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    public_url: str = "http://localhost:3000"  # Prefix for every URL handed to clients


class StorageConfig(BaseModel):
    upload_directory: str = "./uploads"
    output_directory: str = "./output"
    mount_path: str = "/output"  # Where the output tree is served


class TranscodingConfig(BaseModel):
    ffmpeg_path: str = "auto"
    segment_duration_simple: int = Field(default=10, gt=0)
    segment_duration_adaptive: int = Field(default=3, gt=0)
    task_timeout: int = Field(default=3600, gt=0)  # Hard limit per resolution
    stall_timeout: int = Field(default=120, gt=0)  # Seconds without FFmpeg output
    cancel_on_failure: bool = False  # Stop sibling encodes once one fails
    measure_bandwidth: bool = False  # Use measured bitrate in master playlist
    video_profile: str = "baseline"
    video_level: str = "3.0"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: Optional[str] = None


def default_ladder() -> List[ResolutionSpec]:
    return [
        ResolutionSpec(width=426, height=240, label="240p"),
        ResolutionSpec(width=640, height=360, label="360p"),
        ResolutionSpec(width=1280, height=720, label="720p"),
        ResolutionSpec(width=1920, height=1080, label="1080p"),
    ]


class LadderStreamConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    ladder: List[ResolutionSpec] = Field(default_factory=default_ladder)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("ladder")
    @classmethod
    def _unique_labels(cls, ladder: List[ResolutionSpec]) -> List[ResolutionSpec]:
        seen = set()
        for spec in ladder:
            if spec.label in seen:
                raise ValueError(f"Duplicate resolution label in ladder: {spec.label}")
            seen.add(spec.label)
        return ladder


class EnvSettings(BaseSettings):
    """Environment overrides, read once at load time."""
    model_config = SettingsConfigDict(env_prefix="LADDERSTREAM_")

    config: Optional[str] = None


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "ladderstream.yaml",
        Path.cwd() / "ladderstream.yml",
        Path.cwd() / "config" / "ladderstream.yaml",
        Path.home() / ".config" / "ladderstream" / "ladderstream.yaml",
        Path("/etc/ladderstream/ladderstream.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> LadderStreamConfig:
    """Load configuration from YAML file or use defaults."""
    config_path = config_path or EnvSettings().config
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return LadderStreamConfig(**yaml_data)

    return LadderStreamConfig()


# Global config instance
_config: Optional[LadderStreamConfig] = None


def get_config() -> LadderStreamConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: LadderStreamConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
