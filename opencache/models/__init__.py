"""opencache data models — all Pydantic v2, all frozen (immutable)."""

from opencache.models.narinfo import (
    NAR_URL_PREFIX,
    NARINFO_SUFFIX,
    CacheInfo,
    NarinfoRecord,
    referenced_nar_filenames,
)
from opencache.models.release import PruneReport, ReleaseAsset, StaticSiteResult

__all__ = [
    # narinfo
    "NarinfoRecord",
    "CacheInfo",
    "referenced_nar_filenames",
    "NARINFO_SUFFIX",
    "NAR_URL_PREFIX",
    # release / maintenance
    "ReleaseAsset",
    "PruneReport",
    "StaticSiteResult",
]
