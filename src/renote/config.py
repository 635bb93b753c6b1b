"""Configuration for a renote run, loaded from YAML.

The label -> section table lives here rather than in code so it can be
versioned alongside the repository it describes and checked against real
tracker data without a release of renote itself.

A packaged default (renote/defaults/renote.yaml) is used when no file is
given. Example:

    version: 1
    tracker:
      page_size: 100
      max_attempts: 5
    classification:
      rules:
        - {label: kind/deprecation, section: deprecation, precedence: 10}
        - {label: kind/bug, section: resolved_issues, precedence: 100}
    exclude_labels: [wontfix]
"""

from __future__ import annotations

import os
from importlib import resources
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from renote.errors import ConfigError
from renote.schemas import Section

CONFIG_VERSION = 1
DEFAULT_CONFIG_NAME = "renote.yaml"


class TrackerConfig(BaseModel):
    """Tracker client settings.

    Attributes:
        base_url: GitHub REST API root
        page_size: Items per page (GitHub caps this at 100)
        max_attempts: Attempts per request before FetchExhausted
        backoff_min: First exponential backoff delay in seconds
        backoff_max: Upper bound for a single backoff delay
        concurrency: Queries fetched in parallel
        timeout: Deadline in seconds for fetching everything
        request_timeout: Per-request HTTP timeout in seconds
    """

    base_url: str = "https://api.github.com"
    page_size: int = Field(100, ge=1, le=100)
    max_attempts: int = Field(5, ge=1)
    backoff_min: float = Field(1.0, ge=0)
    backoff_max: float = Field(60.0, ge=0)
    concurrency: int = Field(4, ge=1)
    timeout: float = Field(300.0, gt=0)
    request_timeout: float = Field(30.0, gt=0)


class LabelRule(BaseModel):
    """Maps one label to a section. Lower precedence wins."""

    label: str = Field(..., min_length=1)
    section: Section
    precedence: int = 100


class ClassificationConfig(BaseModel):
    rules: list[LabelRule] = Field(default_factory=list)
    default_section: Section | None = None


class RenoteConfig(BaseModel):
    """Top-level configuration loaded from YAML.

    Pull requests returned by a query are skipped unless
    include_pull_requests is set; the issues they fix carry the labels.
    """

    version: int = CONFIG_VERSION
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    classification: ClassificationConfig = Field(default_factory=ClassificationConfig)
    exclude_labels: list[str] = Field(default_factory=list)
    since_days: int | None = Field(None, ge=1)
    include_pull_requests: bool = False


def parse_config(raw: dict, source: str = "<config>") -> RenoteConfig:
    """Validate an already-parsed YAML mapping."""
    try:
        config = RenoteConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {source}: {exc}") from exc

    if config.version != CONFIG_VERSION:
        raise ConfigError(
            f"Unsupported config version {config.version} in {source} "
            f"(expected {CONFIG_VERSION})"
        )
    return config


def read_yaml(path: str | Path) -> dict:
    """Read a YAML mapping from disk, wrapping every failure in ConfigError."""
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigError(f"File not found: {file_path}")

    try:
        raw = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read {file_path}: {exc.strerror or exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {file_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a mapping at the top of {file_path}")
    return raw


def default_resource(name: str) -> str:
    """Return the text of a file shipped in renote/defaults."""
    return (
        resources.files("renote").joinpath("defaults").joinpath(name)
        .read_text(encoding="utf-8")
    )


def load_config(path: str | Path | None = None) -> RenoteConfig:
    """Load and validate a renote config file.

    Args:
        path: Path to the YAML file. Falls back to the RENOTE_CONFIG
              environment variable, then to the packaged default.

    Returns:
        A validated RenoteConfig.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or fails
                     validation.
    """
    path = path or os.environ.get("RENOTE_CONFIG")
    if path:
        return parse_config(read_yaml(path), str(path))

    raw = yaml.safe_load(default_resource(DEFAULT_CONFIG_NAME)) or {}
    return parse_config(raw, DEFAULT_CONFIG_NAME)
