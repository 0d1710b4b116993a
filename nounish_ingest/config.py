"""
Pipeline configuration.

Settings are read from a YAML file (default: config/pipeline.yaml) and
validated with Pydantic. Deployment secrets and endpoints come from the
environment (optionally via a .env file) and override the file.

Expected YAML format:
```yaml
bucket: tf-premium-parquet
sources:
  casts:
    prefix: public-postgres/farcaster/v2/incremental/farcaster-casts
    staging_table: farcaster_casts
    production_table: farcaster_casts
    lookback_seconds: 600
    interval_seconds: 120
enrichment:
  allowed_root_parent_urls:
    - https://warpcast.com/~/channel/flows
  cohort_channels: [nouns, flows]
```
"""

import os
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from nounish_ingest.core.models import IngestionType

DEFAULT_CONFIG_PATH = Path("config/pipeline.yaml")

INCREMENTAL_PREFIX = "public-postgres/farcaster/v2/incremental"


class SourceSettings(BaseModel):
    """
    Per ingestion-type settings.

    Attributes:
        prefix: Object-storage prefix listed by the discovery loop
        staging_table: Table in the staging schema the files are copied into
        production_table: Table in the production schema rows are promoted to
        lookback_seconds: Cold-start floor; files older than now - lookback are ignored
        interval_seconds: Scheduler tick interval
        enabled: Whether the scheduler runs this type
    """

    prefix: str
    staging_table: str
    production_table: str
    lookback_seconds: int = Field(default=600, ge=0)
    interval_seconds: int = Field(default=120, gt=0)
    enabled: bool = True


def _default_sources() -> dict[IngestionType, SourceSettings]:
    return {
        IngestionType.PROFILES: SourceSettings(
            prefix=f"{INCREMENTAL_PREFIX}/farcaster-profile_with_addresses",
            staging_table="farcaster_profile_with_addresses",
            production_table="farcaster_profile",
            lookback_seconds=7 * 24 * 60 * 60,
            interval_seconds=120,
        ),
        IngestionType.CASTS: SourceSettings(
            prefix=f"{INCREMENTAL_PREFIX}/farcaster-casts",
            staging_table="farcaster_casts",
            production_table="farcaster_casts",
            lookback_seconds=10 * 60,
            interval_seconds=120,
        ),
        IngestionType.CHANNEL_MEMBERS: SourceSettings(
            prefix=f"{INCREMENTAL_PREFIX}/farcaster-channel_members",
            staging_table="farcaster_channel_members",
            production_table="farcaster_channel_members",
            lookback_seconds=10 * 60,
            interval_seconds=120,
        ),
    }


class EnrichmentSettings(BaseModel):
    """Cast and member enrichment tunables."""

    allowed_root_parent_urls: list[str] = Field(default_factory=lambda: [
        "https://warpcast.com/~/channel/vrbs",
        "chain://eip155:1/erc721:0x9c8ff314c9bc7f6e59a9d9225fb22946427edc03",
        "chain://eip155:1/erc721:0x558bfff0d583416f7c4e380625c7865821b8e95c",
        "https://warpcast.com/~/channel/flows",
    ])
    cohort_channels: list[str] = Field(default_factory=lambda: [
        "vrbs",
        "nouns",
        "gnars",
        "flows",
        "nouns-animators",
        "nouns-draws",
        "nouns-impact",
        "nouns-retro",
    ])
    permalink_host: str = "warpcast.com"
    job_batch_size: int = Field(default=50, gt=0)
    grant_batch_size: int = Field(default=10, gt=0)
    staging_page_size: int = Field(default=10000, gt=0)
    backfill_page_size: int = Field(default=1000, gt=0)
    backfill_fids_per_query: int = Field(default=2, gt=0)
    include_grant_context: bool = False
    builder_profile_batch_size: int = Field(default=1, gt=0)
    builder_profile_delay_seconds: float = Field(default=30.0, ge=0)


class QueueSettings(BaseModel):
    """Outbound embeddings queue endpoint."""

    base_url: str | None = None
    api_key: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)


class WatermarkSettings(BaseModel):
    """Where per-type watermarks are persisted."""

    backend: Literal["file", "postgres"] = "file"
    directory: Path = Path("data/timestamps")


class SnapshotSettings(BaseModel):
    """CSV snapshot location and refresh cadence."""

    data_dir: Path = Path("data")
    refresh_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)
    grants_db_url: str | None = None
    export_page_size: int = Field(default=10000, gt=0)


class PipelineSettings(BaseModel):
    """Top-level pipeline settings."""

    bucket: str = "tf-premium-parquet"
    aws_region: str = "us-east-1"
    sources: dict[IngestionType, SourceSettings] = Field(default_factory=_default_sources)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    watermark: WatermarkSettings = Field(default_factory=WatermarkSettings)
    snapshots: SnapshotSettings = Field(default_factory=SnapshotSettings)

    def source(self, ingestion_type: IngestionType) -> SourceSettings:
        """
        Settings for one ingestion type.

        Raises:
            KeyError: If the type is not configured
        """
        try:
            return self.sources[ingestion_type]
        except KeyError:
            raise KeyError(f"No source configured for ingestion type '{ingestion_type.value}'") from None


# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "S3_BUCKET": (None, "bucket"),
    "AWS_REGION": (None, "aws_region"),
    "EMBEDDINGS_QUEUE_URL": ("queue", "base_url"),
    "EMBEDDINGS_QUEUE_API_KEY": ("queue", "api_key"),
    "FLOWS_DB_URL": ("snapshots", "grants_db_url"),
    "DATA_DIR": ("snapshots", "data_dir"),
    "WATERMARK_BACKEND": ("watermark", "backend"),
    "WATERMARK_DIR": ("watermark", "directory"),
}


def _apply_env_overrides(raw: dict) -> dict:
    for env_var, (section, field) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if not value:
            continue
        if section is None:
            raw[field] = value
        else:
            raw.setdefault(section, {})[field] = value
    return raw


def load_settings(config_path: str | Path | None = None, use_env: bool = True) -> PipelineSettings:
    """
    Load pipeline settings.

    Args:
        config_path: YAML file to read (defaults to env var PIPELINE_CONFIG,
            then config/pipeline.yaml); a missing default file is not an error
        use_env: Whether to apply environment overrides

    Returns:
        Validated PipelineSettings

    Raises:
        FileNotFoundError: If an explicitly given config file does not exist
        ValueError: If the YAML is not a mapping
    """
    if use_env:
        load_dotenv()

    explicit = config_path or os.getenv("PIPELINE_CONFIG")
    path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    raw: dict = {}
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
    elif explicit:
        raise FileNotFoundError(f"Pipeline configuration file not found: {path}")

    if "sources" in raw:
        # Partial source sections are merged over the defaults
        merged = {t.value: s.model_dump() for t, s in _default_sources().items()}
        for type_name, overrides in (raw["sources"] or {}).items():
            key = IngestionType.parse(type_name).value
            merged[key] = {**merged.get(key, {}), **(overrides or {})}
        raw["sources"] = merged

    if use_env:
        raw = _apply_env_overrides(raw)

    return PipelineSettings.model_validate(raw)
