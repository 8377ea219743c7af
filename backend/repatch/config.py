"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class RenderEngineConfig(BaseModel):
    """External render engine connection and render defaults.

    output_url_template qualifies relative output references returned by
    the engine; it receives ``bucket``, ``region`` and ``key``.
    """

    base_url: str = "http://localhost:3100"
    api_key: str = ""
    region: str = "us-east-1"
    function_name: str = "remotion-render-4-0-355-mem2048mb-disk2048mb-300sec"
    serve_url: str = ""
    composition: str = "basecomp"
    codec: str = "h264"
    image_format: str = "jpeg"
    privacy: str = "public"
    max_retries: int = 1
    output_url_template: str = "https://{bucket}.s3.{region}.amazonaws.com/{key}"
    poll_interval: int = 5
    stale_after_seconds: int = 900
    request_timeout: float = 60.0


class GitHubConfig(BaseModel):
    """Commit history service configuration."""

    api_url: str = "https://api.github.com"
    token: str = ""
    per_page: int = 100
    max_pages: int = 10
    stats_sample_size: int = 20
    concurrency: int = 5
    release_window_days: int = 30


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration for the Vertex AI summarizer."""

    project_id: str = ""
    location: str = "us-central1"
    global_models: list[str] = ["gemini-3-flash-preview", "gemini-3-pro-preview"]


class OllamaConfig(BaseModel):
    """Ollama endpoint used for ollama/ model IDs."""

    endpoint: str = ""
    api_key: str = ""
    use_cloud: bool = False


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    summarizer_llm: str = "gemini-2.5-flash"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    max_highlights: int = 3
    recent_commit_limit: int = 10
    status_cache_ttl: float = 2.0
    retry_max_attempts: int = 3


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///repatch.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def strip_database_url(cls, v):
        """Tolerate stray whitespace from .env files."""
        if isinstance(v, str):
            return v.strip()
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: REPATCH_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="REPATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    render_engine: RenderEngineConfig = RenderEngineConfig()
    github: GitHubConfig = GitHubConfig()
    google_cloud: GoogleCloudConfig = GoogleCloudConfig()
    ollama: OllamaConfig = OllamaConfig()
    models: ModelsConfig = ModelsConfig()
    pipeline: PipelineConfig = PipelineConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
