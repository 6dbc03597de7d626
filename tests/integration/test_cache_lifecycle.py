"""Integration test — upload, sign, aggregate, snapshot and prune.

Two CI jobs share one GitHub release.  Job A serves the cache over HTTP and
receives a NAR plus its narinfo from a Nix client.  Job B later aggregates
every published narinfo, generates the static site and prunes the release.
"""

from __future__ import annotations

import asyncio

from starlette.testclient import TestClient

from opencache.config import CacheConfig
from opencache.core.signing import verify_narinfo
from opencache.models.narinfo import NarinfoRecord
from opencache.server import create_app
from opencache.static_site import generate_static_site
from tests.conftest import make_github_storage

NAR_FILE = "1w1fff338fvdw53sqgamddn1b2xgds473pv6y13gizdbqjv4i5p3.nar.xz"
NAR_BYTES = b"\xfd7zXZ\x00" + bytes(range(256)) * 40
HASH = "p4pclmv1gyja5kzc26npqpia1qqxrf0l"
AUTH = {"Authorization": "Bearer ci-upload-token"}


class TestCacheLifecycle:
    def test_two_jobs_share_one_release(self, tmp_dir, release, keypair, narinfo_text):
        secret, public = keypair
        release.add("stale-orphan.nar.xz", b"old")

        # -- Job A: a Nix client pushes through the HTTP endpoint ----------
        config = CacheConfig(
            storage_backend="github-releases",
            signing_key=secret,
            upload_secret="ci-upload-token",
            local_storage_path=tmp_dir / "job-a",
        )
        storage_a = make_github_storage(tmp_dir / "job-a")
        with TestClient(create_app(config, storage=storage_a)) as client:
            assert client.put(f"/nar/{NAR_FILE}", content=NAR_BYTES, headers=AUTH).status_code == 200
            upload = client.put(
                f"/{HASH}.narinfo",
                content=narinfo_text + "Sig: cache.nixos.org-1:dGhpcmQtcGFydHk=\n",
                headers=AUTH,
            )
            assert upload.status_code == 200

            assert client.head(f"/{HASH}.narinfo").status_code == 200
            served = NarinfoRecord.parse(client.get(f"/{HASH}.narinfo").text)
            assert served.signatures and len(served.signatures) == 1
            assert verify_narinfo(served, served.signatures[0], public)

            assert client.get(f"/nar/{NAR_FILE}").content == NAR_BYTES

        assert sorted(release.names()) == sorted(
            ["stale-orphan.nar.xz", NAR_FILE, f"{HASH}.narinfo"]
        )

        # -- Job B: aggregate, snapshot, prune ------------------------------
        async def job_b():
            async with make_github_storage(tmp_dir / "job-b") as storage_b:
                fetched = await storage_b.fetch_all_narinfo()
                result = generate_static_site(
                    storage_b.narinfo_dir, tmp_dir / "site", storage_b.nar_base_url
                )
                report = await storage_b.prune_assets(retention_days=0)
                return fetched, result, report

        fetched, result, report = asyncio.run(job_b())

        assert fetched == 1
        assert result.narinfo_count == 1
        published = NarinfoRecord.parse((tmp_dir / "site" / f"{HASH}.narinfo").read_text())
        assert verify_narinfo(published, published.signatures[0], public)
        assert (tmp_dir / "site" / "_redirects").read_text().startswith(
            "/nar/:filename  https://github.test/acme/nix-cache/releases/download/nix-cache/"
        )

        assert report.deleted == ["stale-orphan.nar.xz"]
        assert report.referenced == [NAR_FILE]
        assert sorted(release.names()) == sorted([NAR_FILE, f"{HASH}.narinfo"])
