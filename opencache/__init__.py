"""opencache: Nix binary cache server and maintenance tools.

  - Nix HTTP binary cache protocol (nix-cache-info, narinfo, NAR)
  - Ed25519 narinfo signing via PyNaCl; server re-signs every upload
  - Pluggable storage: local disk, S3-compatible, GitHub Releases hybrid
  - Static snapshot generation for CDN hosting
  - Release asset pruning with a retention window
"""

__version__ = "0.1.0"
__description__ = "Nix binary cache on local disk, S3 or GitHub Releases"

from opencache.config import CacheConfig
from opencache.server import create_app
from opencache.storage import create_storage

__all__ = ["CacheConfig", "create_app", "create_storage", "__version__"]
