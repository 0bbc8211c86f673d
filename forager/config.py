"""Configuration management using Pydantic Settings."""

import logging
import tempfile
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from forager.concurrency import default_max_concurrency
from forager.conversions.config import ToolsConfig
from forager.services.cds.config import CDSConfig
from forager.services.ingest.config import IngestConfig

logger = logging.getLogger(__name__)


class SchedulerConfig(BaseModel):
    """Periodic run settings."""

    interval_minutes: int = 360
    max_cycles_per_run: int = 12  # Each cycle advances the cursor one month


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")
    output_dir: Path = Path("public/mdi")
    temp_dir: Path = Path(tempfile.gettempdir()) / "forager-cache"

    # API Keys
    cds_api_key: str = ""
    logfire_token: str = ""

    # Clip polygon applied to every layer (optional)
    clip_by: Path | None = None

    # Upper bound on datasets converted at once
    max_concurrency: int = Field(default_factory=default_max_concurrency, ge=1)

    # Nested configuration sections
    cds: CDSConfig = Field(default_factory=CDSConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", "output_dir", "temp_dir", mode="after")
    @classmethod
    def resolve_dir(cls, v: Path) -> Path:
        """Resolve directories to absolute paths."""
        return v.resolve()

    @field_validator("clip_by", mode="before")
    @classmethod
    def empty_clip_is_none(cls, v: object) -> object:
        return v or None

    @property
    def state_dir(self) -> Path:
        return self.data_dir / "state"

    @property
    def sources_state_dir(self) -> Path:
        return self.state_dir / "sources"

    @property
    def datasets_state_dir(self) -> Path:
        return self.state_dir / "datasets"

    @property
    def cache_dir(self) -> Path:
        """Permanent artifacts (baselines)."""
        return self.data_dir / "cache"

    @property
    def atomic_dir(self) -> Path:
        """Scratch space for atomic writes; same filesystem as the state."""
        return self.data_dir / "atomic"

    @property
    def heartbeat_path(self) -> Path:
        return self.data_dir / "heart.json"

    @property
    def catalog_path(self) -> Path:
        return self.data_dir / "datasets.yaml"

    def ensure_dirs(self) -> None:
        """Create every working directory."""
        for path in (
            self.sources_state_dir,
            self.datasets_state_dir,
            self.cache_dir,
            self.atomic_dir,
            self.temp_dir,
            self.output_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m forager init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in ["cds", "tools", "ingest", "scheduler"]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name] or {}

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            if "max_concurrency" in yaml_config:
                self.max_concurrency = int(yaml_config["max_concurrency"])

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
