"""Configuration management for TestMind."""

from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file at import time
load_dotenv()

CONFIG_FILE_NAMES = (
    "testmind.yaml",
    "testmind.yml",
    ".testmind.yaml",
    ".testmind/config.json",
)


class DiffConfig(BaseModel):
    """Diff generation and patch application."""

    context_lines: int = Field(default=3, ge=0)
    lookahead: int = Field(default=10, ge=1)
    create_backup: bool = True
    backup_dir: Path | None = None  # defaults to <dir-of-file>/.testmind-backups
    validation_mode: Literal["strict", "fuzzy"] = "strict"
    allow_partial: bool = False
    dry_run: bool = False


class VisualConfig(BaseModel):
    """Visual similarity weights and tolerances."""

    position_weight: float = 0.3
    size_weight: float = 0.2
    color_weight: float = 0.2
    text_weight: float = 0.3
    position_tolerance: float = 10.0  # pixels
    size_tolerance: float = 0.15  # relative


class LocatorConfig(BaseModel):
    """Element locator waterfall."""

    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    strategies: list[Literal["id", "css_selector", "xpath", "visual", "semantic"]] = Field(
        default_factory=lambda: ["id", "css_selector", "xpath", "visual", "semantic"]
    )
    enable_visual: bool = True
    enable_semantic: bool = True
    visual: VisualConfig = Field(default_factory=VisualConfig)


class ClassifierConfig(BaseModel):
    """Failure classification and flakiness detection."""

    llm_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    history_window: int = Field(default=10, ge=1)
    min_history: int = Field(default=3, ge=1)
    night_start_hour: int = Field(default=0, ge=0, le=23)
    night_end_hour: int = Field(default=6, ge=0, le=24)


class HealingConfig(BaseModel):
    """Healing behavior configuration."""

    enable_auto_fix: bool = False
    auto_fix_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    batch_concurrency: int = Field(default=3, ge=1)


class GeminiConfig(BaseModel):
    """Gemini AI configuration."""

    model: str = "gemini-2.0-flash"
    api_key: str | None = None  # falls back to GOOGLE_API_KEY / GEMINI_API_KEY
    max_retries: int = Field(default=3, ge=1)
    enabled: bool = False


class LangfuseConfig(BaseModel):
    """Langfuse observability configuration."""

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None


class Config(BaseSettings):
    """Main configuration for TestMind."""

    model_config = SettingsConfigDict(
        env_prefix="TESTMIND_",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_json: bool = False

    # Sub-configurations
    diff: DiffConfig = Field(default_factory=DiffConfig)
    locator: LocatorConfig = Field(default_factory=LocatorConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    healing: HealingConfig = Field(default_factory=HealingConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    langfuse: LangfuseConfig = Field(default_factory=LangfuseConfig)


def find_config_file(base_dir: Path | None = None) -> Path | None:
    """Return the first known config file under ``base_dir`` (default: cwd)."""
    base = base_dir or Path.cwd()
    for name in CONFIG_FILE_NAMES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from a YAML/JSON file and environment variables."""
    config_data: dict = {}

    if config_path is None:
        config_path = find_config_file()

    # JSON is a subset of YAML, so one loader covers both
    if config_path and config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if raw and "testmind" in raw:
                config_data = raw["testmind"] or {}
            elif raw:
                config_data = raw

    # Environment variables override file values
    return _merge_env(config_data)


def _merge_env(config_data: dict) -> Config:
    # Init kwargs beat env vars in pydantic-settings, so build the env view
    # first and lay file values underneath it.
    env_view = Config().model_dump(exclude_defaults=True)
    return Config(**_deep_merge(config_data, env_view))


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
