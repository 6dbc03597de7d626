"""HTTP endpoint speaking the Nix binary cache protocol."""

from opencache.server.app import create_app

__all__ = ["create_app"]
