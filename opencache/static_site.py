"""Static cache snapshot — narinfo files plus redirects, deployable to a CDN.

Output layout::

    <output_dir>/nix-cache-info
    <output_dir>/<hash>.narinfo      copied byte-for-byte
    <output_dir>/_redirects          Cloudflare Pages: /nar/* -> release assets

NARs are not copied; ``_redirects`` sends ``/nar/<filename>`` to the public
download URL of the matching release asset.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from opencache.models.narinfo import NARINFO_SUFFIX, CacheInfo
from opencache.models.release import StaticSiteResult

logger = logging.getLogger(__name__)


def render_redirects(nar_base_url: str) -> str:
    """Cloudflare Pages ``_redirects`` rule sending NAR requests upstream."""
    return f"/nar/:filename  {nar_base_url.rstrip('/')}/:filename  302\n"


def generate_static_site(
    narinfo_dir: Path,
    output_dir: Path,
    nar_base_url: str,
    *,
    store_dir: str = "/nix/store",
    priority: int = 30,
) -> StaticSiteResult:
    """Write a static snapshot of every narinfo in *narinfo_dir*.

    A missing *narinfo_dir* yields an empty snapshot; ``nix-cache-info`` and
    ``_redirects`` are still written.
    """
    narinfo_dir = Path(narinfo_dir)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    info = CacheInfo(store_dir=store_dir, priority=priority)
    (output_dir / "nix-cache-info").write_text(info.to_text(), encoding="utf-8")

    count = 0
    if narinfo_dir.is_dir():
        for source in sorted(narinfo_dir.glob(f"*{NARINFO_SUFFIX}")):
            if not source.is_file() or source.name.startswith("."):
                continue
            shutil.copyfile(source, output_dir / source.name)
            count += 1
    else:
        logger.warning("narinfo directory %s does not exist; snapshot is empty", narinfo_dir)

    base = nar_base_url.rstrip("/")
    (output_dir / "_redirects").write_text(render_redirects(base), encoding="utf-8")

    logger.info("Generated static cache with %d narinfo file(s) in %s", count, output_dir)
    return StaticSiteResult(narinfo_count=count, nar_base_url=base, output_dir=output_dir)
