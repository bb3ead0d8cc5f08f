"""Configuration management for mediabot."""

from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings


# Media containers picked up by the folder scanner
MEDIA_EXTENSIONS = [
    "mp4", "mkv", "avi", "mov", "wmv", "flv", "webm", "m4v",
    "mpg", "mpeg", "ts", "mts", "m2ts", "3gp", "asf", "rm", "rmvb",
]


class Settings(BaseSettings):
    """Application settings loaded from environment or config file."""

    # Database
    database_path: str = ""

    # Metadata providers
    tmdb_api_key: str = ""
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    tvdb_api_key: str = ""
    tvdb_base_url: str = "https://api4.thetvdb.com/v4"
    default_provider: str = "tmdb"
    request_timeout_seconds: float = 10.0
    provider_delay_seconds: float = 0.5
    max_provider_results: int = 10
    max_episode_lookups: int = 3

    # Confidence bands
    confidence_high: float = 0.8
    confidence_medium: float = 0.6

    # Server
    host: str = "0.0.0.0"
    port: int = 8096
    debug: bool = False

    # File handling
    media_extensions: list[str] = MEDIA_EXTENSIONS
    subtitle_extensions: list[str] = [".srt", ".sub", ".ass", ".ssa", ".vtt", ".idx", ".sup"]
    image_extensions: list[str] = [".jpg", ".jpeg", ".png", ".tbn"]
    metadata_extensions: list[str] = [".nfo"]

    # Naming
    default_template: str = "{n} - {s00e00} - {t}"
    movie_template: str = "{n} ({y})"
    season_folder_format: str = "Season {season}"

    # Metadata writing
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    sidecar_suffix: str = ".metadata.json"
    encoder_tag: str = "MediaBot"

    # Undo journal
    undo_max_operations: int = 50

    class Config:
        env_prefix = "MEDIABOT_"
        env_file = ".env"


class Preferences(BaseModel):
    """Per-user preferences supplied by the settings collaborator."""

    create_backup: bool = False
    write_metadata: bool = True


# Global settings instance
settings = Settings()


def get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_dir = get_project_root() / "data"
    data_dir.mkdir(exist_ok=True)
    return data_dir


def get_database_path() -> Path:
    """Get the SQLite database path."""
    if settings.database_path:
        return Path(settings.database_path)
    return get_data_dir() / "mediabot.db"
