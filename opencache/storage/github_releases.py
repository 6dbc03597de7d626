"""GitHub Releases storage backend — local narinfo, remote NARs.

narinfo records are authoritative on local disk (the HTTP server that just
wrote one can read it back immediately).  NAR files live as assets of a
single GitHub Release, reached through an eventually consistent, paginated
REST API.

Layout::

    GitHub Release assets:  <filename>            NAR files
                            <hash>.narinfo        narinfo mirror (optional)
    Local filesystem:       <local_path>/narinfo/<hash>.narinfo

Two maintenance operations sit on top of the storage protocol:

``fetch_all_narinfo``
    Pull every ``.narinfo`` asset that is missing locally, so the local
    directory becomes a superset of what all writers (matrix jobs, earlier
    runs) have published.  Run it before static site generation.

``prune_assets``
    Delete NAR assets that no local narinfo references.  Orphans younger
    than the retention window survive, which bounds the race between one
    job uploading a NAR and its narinfo becoming visible to another job's
    pruning run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from opencache.errors import (
    BackendTransientFailure,
    CacheError,
    InvalidResourceName,
    RemoteApiRejection,
)
from opencache.models import narinfo
from opencache.models.narinfo import NARINFO_SUFFIX
from opencache.models.release import PruneReport, ReleaseAsset
from opencache.storage import ByteStream, validate_name
from opencache.storage import _files

if TYPE_CHECKING:
    from opencache.config import CacheConfig

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
API_VERSION = "2022-11-28"
USER_AGENT = "opencache"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def release_download_base(web_url: str, owner: str, repo: str, tag: str) -> str:
    """Public download URL prefix shared by every asset of a release."""
    return (
        f"{web_url.rstrip('/')}/{owner}/{repo}/releases/download/"
        f"{quote(tag, safe='')}"
    )


class GitHubReleasesStorage:
    """Hybrid store: narinfo on local disk, NARs as GitHub Release assets.

    The release is resolved from ``release_tag`` on first use (created if it
    does not exist) and its id is cached for the lifetime of the object.
    The cache is never invalidated; a release deleted out-of-band needs a
    process restart.

    Parameters
    ----------
    token:
        GitHub token with ``contents: write`` on the repository.
    owner, repo:
        Repository holding the release.
    local_path:
        Root directory for local narinfo (``<local_path>/narinfo``).
    release_tag:
        Tag of the release that carries the assets.
    mirror_narinfo:
        Also upload every narinfo as a release asset so other jobs can
        aggregate it.
    client:
        Optional ``httpx.AsyncClient``; one is created (and owned) otherwise.
    clock:
        Returns the current aware UTC time; used by the retention window.
    """

    def __init__(
        self,
        *,
        token: str,
        owner: str,
        repo: str,
        local_path: Path | str,
        release_tag: str = "nix-cache",
        api_url: str = "https://api.github.com",
        upload_url: str = "https://uploads.github.com",
        web_url: str = "https://github.com",
        mirror_narinfo: bool = True,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not owner or not repo:
            raise ValueError("GitHubReleasesStorage requires owner and repo")
        self.token = token
        self.owner = owner
        self.repo = repo
        self.release_tag = release_tag
        self.mirror_narinfo = mirror_narinfo
        self._api_url = api_url.rstrip("/")
        self._upload_url = upload_url.rstrip("/")
        self._web_url = web_url.rstrip("/")
        self._clock = clock

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

        self._release_id: int | None = None
        self._release_lock = asyncio.Lock()

        self._narinfo_dir = Path(local_path) / "narinfo"
        self._narinfo_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: CacheConfig) -> GitHubReleasesStorage:
        return cls(
            token=config.github_token,
            owner=config.github_owner,
            repo=config.github_repo,
            local_path=config.local_storage_path,
            release_tag=config.github_release_tag,
            api_url=config.github_api_url,
            upload_url=config.github_upload_url,
            web_url=config.github_web_url,
            timeout=config.github_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitHubReleasesStorage:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def narinfo_dir(self) -> Path:
        return self._narinfo_dir

    @property
    def _repo_api(self) -> str:
        return f"{self._api_url}/repos/{self.owner}/{self.repo}"

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": API_VERSION,
        }
        headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method, url, headers=headers or self._headers(), **kwargs
            )
        except httpx.HTTPError as exc:
            raise BackendTransientFailure(f"GitHub {method} {url} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Release resolution
    # ------------------------------------------------------------------

    async def _get_release_id(self) -> int:
        if self._release_id is None:
            async with self._release_lock:
                if self._release_id is None:
                    self._release_id = await self._resolve_release()
        return self._release_id

    async def _resolve_release(self) -> int:
        tag = self.release_tag
        logger.info("Looking up release by tag: %s", tag)
        resp = await self._request(
            "GET", f"{self._repo_api}/releases/tags/{quote(tag, safe='')}"
        )
        if resp.is_success:
            release_id = int(resp.json()["id"])
            logger.info("Found existing release id=%d", release_id)
            return release_id
        if resp.status_code != 404:
            raise BackendTransientFailure(
                f"Release lookup for tag {tag!r} failed: {resp.status_code} {resp.text}"
            )

        logger.info("Release %s not found, creating it", tag)
        resp = await self._request(
            "POST",
            f"{self._repo_api}/releases",
            json={
                "tag_name": tag,
                "name": f"Nix Binary Cache ({tag})",
                "body": "Nix binary cache NAR files managed by opencache.",
                "draft": False,
                "prerelease": False,
            },
        )
        if not resp.is_success:
            raise RemoteApiRejection(f"create release {tag!r}", resp.status_code, resp.text)
        release_id = int(resp.json()["id"])
        logger.info("Created release id=%d", release_id)
        return release_id

    # ------------------------------------------------------------------
    # Asset primitives
    # ------------------------------------------------------------------

    async def list_assets(self) -> list[ReleaseAsset]:
        """Every asset on the release, across all pages.

        Raises
        ------
        BackendTransientFailure
            If any page cannot be fetched or decoded.  A partial listing is
            never returned.
        """
        release_id = await self._get_release_id()
        assets: list[ReleaseAsset] = []
        page = 1
        while True:
            resp = await self._request(
                "GET",
                f"{self._repo_api}/releases/{release_id}/assets",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            if not resp.is_success:
                raise BackendTransientFailure(
                    f"Listing release assets (page {page}) failed: "
                    f"{resp.status_code} {resp.text}"
                )
            try:
                batch = resp.json()
                assets.extend(ReleaseAsset.model_validate(item) for item in batch)
            except ValueError as exc:
                raise BackendTransientFailure(
                    f"Unexpected asset listing payload on page {page}: {exc}"
                ) from exc
            if len(batch) < PAGE_SIZE:
                return assets
            page += 1

    async def _find_asset(self, name: str) -> ReleaseAsset | None:
        for asset in await self.list_assets():
            if asset.name == name:
                return asset
        return None

    async def _delete_asset(self, asset: ReleaseAsset) -> None:
        resp = await self._request(
            "DELETE", f"{self._repo_api}/releases/assets/{asset.id}"
        )
        if not resp.is_success:
            raise RemoteApiRejection(
                f"delete release asset {asset.name} (id={asset.id})",
                resp.status_code,
                resp.text,
            )

    async def _replace_asset(self, name: str, body: bytes, content_type: str) -> None:
        """Upload *body* as asset *name*, deleting any asset of that name first.

        The API has no atomic replace.  A failed delete is logged and the
        upload still runs; if the old asset lingers the upload is rejected
        as a duplicate and surfaces as ``RemoteApiRejection``.
        """
        release_id = await self._get_release_id()

        existing = await self._find_asset(name)
        if existing is not None:
            logger.info("Deleting existing asset %s (id=%d)", name, existing.id)
            try:
                await self._delete_asset(existing)
            except CacheError as exc:
                logger.warning("Could not delete existing asset %s: %s", name, exc)

        resp = await self._request(
            "POST",
            f"{self._upload_url}/repos/{self.owner}/{self.repo}/releases/{release_id}/assets",
            params={"name": name},
            content=body,
            headers=self._headers(**{"Content-Type": content_type}),
        )
        if not resp.is_success:
            logger.error("Failed to upload asset %s: %d %s", name, resp.status_code, resp.text)
            raise RemoteApiRejection(
                f"upload release asset {name}", resp.status_code, resp.text
            )

    async def _download(self, asset: ReleaseAsset) -> httpx.Response:
        """Open a streamed download of *asset*; the caller must close it."""
        request = self._client.build_request(
            "GET", asset.url, headers=self._headers(Accept="application/octet-stream")
        )
        try:
            return await self._client.send(request, stream=True, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise BackendTransientFailure(
                f"Downloading asset {asset.name} failed: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # narinfo (local filesystem, mirrored to the release)
    # ------------------------------------------------------------------

    def _narinfo_path(self, hash: str) -> Path:
        return self._narinfo_dir / f"{validate_name(hash)}{NARINFO_SUFFIX}"

    async def has_narinfo(self, hash: str) -> bool:
        return await _files.path_exists(self._narinfo_path(hash))

    async def get_narinfo(self, hash: str) -> str | None:
        return await _files.read_text(self._narinfo_path(hash))

    async def put_narinfo(self, hash: str, content: str) -> None:
        """Write narinfo locally, then mirror it as ``<hash>.narinfo`` asset.

        The mirror lets other jobs writing to the same release discover this
        record through ``fetch_all_narinfo``.  A rejected mirror upload is
        raised: without it another job's pruning run could orphan the NAR
        this record points at.
        """
        path = self._narinfo_path(hash)
        logger.info("Storing narinfo %s", hash)
        await _files.write_text(path, content)
        if self.mirror_narinfo:
            await self._replace_asset(
                path.name, content.encode("utf-8"), "text/plain"
            )

    async def fetch_all_narinfo(self) -> int:
        """Download every ``.narinfo`` asset missing from the local directory.

        Local files are never overwritten.  Individual download failures are
        logged and skipped; a listing failure aborts.

        Returns
        -------
        int
            Number of narinfo files fetched.
        """
        logger.info("Fetching all narinfo from release %s", self.release_tag)
        assets = await self.list_assets()
        narinfo_assets = [a for a in assets if a.name.endswith(NARINFO_SUFFIX)]

        fetched = 0
        for asset in narinfo_assets:
            try:
                local_file = self._narinfo_dir / validate_name(asset.name)
            except InvalidResourceName:
                logger.warning("Skipping asset with unsafe name %r", asset.name)
                continue
            if await _files.path_exists(local_file):
                continue

            try:
                resp = await self._request(
                    "GET",
                    asset.url,
                    headers=self._headers(Accept="application/octet-stream"),
                    follow_redirects=True,
                )
            except BackendTransientFailure as exc:
                logger.warning("Could not download narinfo asset %s: %s", asset.name, exc)
                continue
            if not resp.is_success:
                logger.warning(
                    "Could not download narinfo asset %s: %d", asset.name, resp.status_code
                )
                continue

            await _files.write_bytes(local_file, resp.content)
            fetched += 1

        logger.info(
            "Fetched %d narinfo file(s) from release (%d total on release)",
            fetched,
            len(narinfo_assets),
        )
        return fetched

    # ------------------------------------------------------------------
    # NAR (release assets)
    # ------------------------------------------------------------------

    async def has_nar(self, filename: str) -> bool:
        return await self._find_asset(validate_name(filename)) is not None

    async def get_nar_stream(self, filename: str) -> ByteStream | None:
        asset = await self._find_asset(validate_name(filename))
        if asset is None:
            return None

        resp = await self._download(asset)
        if resp.status_code == 404:
            await resp.aclose()
            return None
        if not resp.is_success:
            await resp.aread()
            await resp.aclose()
            raise BackendTransientFailure(
                f"Downloading asset {filename} failed: {resp.status_code} {resp.text}"
            )
        return _iter_response(resp, filename)

    async def put_nar_stream(
        self, filename: str, stream: AsyncIterable[bytes]
    ) -> None:
        """Upload a NAR as a release asset.

        The upload API needs a Content-Length up front, so the whole NAR is
        buffered in memory first.  Very large NARs are better served by the
        S3 backend.
        """
        validate_name(filename)
        buffer = bytearray()
        async for chunk in stream:
            buffer.extend(chunk)

        logger.info("Uploading NAR asset %s (%d bytes)", filename, len(buffer))
        await self._replace_asset(filename, bytes(buffer), "application/octet-stream")
        logger.info("Uploaded asset %s", filename)

    def nar_download_url(self, filename: str) -> str:
        """Public, unauthenticated download URL for a NAR asset."""
        return f"{self.nar_base_url}/{quote(filename, safe='')}"

    @property
    def nar_base_url(self) -> str:
        """Download URL prefix shared by every asset of the release."""
        return release_download_base(
            self._web_url, self.owner, self.repo, self.release_tag
        )

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    async def referenced_nar_filenames(self) -> set[str]:
        """NAR filenames named by the ``URL:`` field of every local narinfo.

        Raises on unreadable files: pruning against an incomplete reference
        set could delete live artifacts.
        """
        referenced: set[str] = set()
        for name in await _files.list_names(self._narinfo_dir, NARINFO_SUFFIX):
            text = await _files.read_text(self._narinfo_dir / name, errors="replace")
            if text is None:
                continue
            referenced.update(narinfo.referenced_nar_filenames(text))
        return referenced

    async def prune_assets(self, retention_days: int = 0) -> PruneReport:
        """Delete NAR assets not referenced by any local narinfo.

        Parameters
        ----------
        retention_days:
            Grace period for orphans.  With ``retention_days > 0`` an orphan
            is only deleted once its ``created_at`` is strictly older than
            ``now - retention_days``; ``0`` deletes orphans immediately.

        Returns
        -------
        PruneReport
            ``deleted``; ``kept`` (inside the window or failed to delete);
            ``referenced``.  ``.narinfo`` assets are never candidates.
        """
        if retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {retention_days}")
        logger.info("Starting asset pruning (retention_days=%d)", retention_days)

        assets, referenced = await asyncio.gather(
            self.list_assets(), self.referenced_nar_filenames()
        )
        logger.info(
            "Found %d release asset(s), %d referenced NAR filename(s)",
            len(assets),
            len(referenced),
        )

        cutoff = (
            self._clock() - timedelta(days=retention_days) if retention_days > 0 else None
        )
        deleted: list[str] = []
        kept: list[str] = []
        referenced_names: list[str] = []

        for asset in assets:
            if asset.name.endswith(NARINFO_SUFFIX):
                continue
            if asset.name in referenced:
                referenced_names.append(asset.name)
                continue
            if cutoff is not None and asset.created_at >= cutoff:
                logger.info(
                    "Keeping orphaned asset %s (created %s, within retention window)",
                    asset.name,
                    asset.created_at.isoformat(),
                )
                kept.append(asset.name)
                continue

            logger.info("Deleting orphaned asset %s (id=%d)", asset.name, asset.id)
            try:
                await self._delete_asset(asset)
            except CacheError as exc:
                logger.error("Failed to delete asset %s: %s", asset.name, exc)
                kept.append(asset.name)
                continue
            deleted.append(asset.name)

        logger.info(
            "Pruning complete: %d deleted, %d kept (orphaned), %d referenced",
            len(deleted),
            len(kept),
            len(referenced_names),
        )
        return PruneReport(deleted=deleted, kept=kept, referenced=referenced_names)


async def _iter_response(resp: httpx.Response, name: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in resp.aiter_bytes():
            yield chunk
    except httpx.HTTPError as exc:
        raise BackendTransientFailure(f"Download of {name} interrupted: {exc}") from exc
    finally:
        await resp.aclose()
