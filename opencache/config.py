"""Runtime configuration — env-driven, immutable, passed explicitly.

Settings are read from the environment (or a ``.env`` file) using the plain
variable names operators already set in CI, e.g. ``STORAGE_BACKEND`` or
``GITHUB_RELEASE_TAG``.  Matching is case-insensitive.

No module-level instance exists: build one ``CacheConfig`` at process start
and hand it to the server, storage factory and CLI commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageBackendName = Literal["local", "s3", "github-releases"]


class CacheConfig(BaseSettings):
    """Operational parameters for the cache endpoint and maintenance tools.

    Examples
    --------
    Serve from a GitHub release::

        export STORAGE_BACKEND=github-releases
        export GITHUB_OWNER=acme GITHUB_REPO=nix-cache GITHUB_TOKEN=...
        export SIGNING_KEY="cache.acme.dev-1:base64..."

    Or via ``.env``::

        STORAGE_BACKEND=s3
        S3_BUCKET=nix-cache
        S3_ENDPOINT=https://<account>.r2.cloudflarestorage.com
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # HTTP endpoint
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Cache metadata
    store_dir: str = "/nix/store"
    cache_priority: int = 30

    # Storage
    storage_backend: StorageBackendName = "local"
    local_storage_path: Path = Path("./cache")

    # S3-compatible storage
    s3_bucket: str = ""
    s3_region: str = "auto"
    s3_endpoint: str | None = None
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False

    # GitHub Releases storage
    github_token: str = ""
    github_owner: str = ""
    github_repo: str = ""
    github_release_tag: str = "nix-cache"
    github_prune_retention_days: int = Field(default=0, ge=0)
    github_api_url: str = "https://api.github.com"
    github_upload_url: str = "https://uploads.github.com"
    github_web_url: str = "https://github.com"
    github_timeout_seconds: float = 60.0

    # Trust and access
    signing_key: str = ""    # "<keyname>:<base64 secret key>"
    upload_secret: str = ""  # bearer token required for PUT requests

    # Static site generation
    output_dir: Path = Path("./static-cache")

    @property
    def signing_key_name(self) -> str:
        """Name part of the configured signing key, or ``""``."""
        return self.signing_key.partition(":")[0] if self.signing_key else ""
