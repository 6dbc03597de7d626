"""Models for GitHub release assets and maintenance reports."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReleaseAsset(BaseModel):
    """One binary blob attached to a GitHub Release.

    Validated straight from the REST API payload; unknown keys are ignored.
    ``url`` is the API location of the asset (download it with
    ``Accept: application/octet-stream``), not the public browser URL.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    created_at: datetime
    url: str = ""
    size: int = 0
    browser_download_url: str = ""

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PruneReport(BaseModel):
    """Outcome of one pruning run, as three filename lists.

    ``kept`` holds orphans inside the retention window *and* orphans whose
    deletion failed.
    """

    model_config = ConfigDict(frozen=True)

    deleted: list[str] = Field(default_factory=list)
    kept: list[str] = Field(default_factory=list)
    referenced: list[str] = Field(default_factory=list)


class StaticSiteResult(BaseModel):
    """Summary of a generated static cache snapshot."""

    model_config = ConfigDict(frozen=True)

    narinfo_count: int
    nar_base_url: str
    output_dir: Path
