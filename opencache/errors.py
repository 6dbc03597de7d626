"""Error taxonomy shared by the signing layer, storage backends and server.

Absence and failure are kept apart: ``NotFound`` (or a ``None``/``False``
return) always means *confirmed* absence, while anything that prevented an
answer is a ``BackendTransientFailure``.  The HTTP layer maps these to status
codes; nothing inside the storage layer swallows them.
"""

from __future__ import annotations


class CacheError(RuntimeError):
    """Base class for every error raised by opencache."""


class NotFound(CacheError):
    """Raised when a keyed resource is confirmed not to exist."""


class InvalidKeyFormat(CacheError, ValueError):
    """Raised for a malformed ``<name>:<base64>`` signing or verification key.

    Fatal to the calling operation; never retried.
    """


class InvalidResourceName(CacheError, ValueError):
    """Raised when a hash or filename cannot safely name a single file."""


class BackendTransientFailure(CacheError):
    """Raised when a backend could not complete an operation.

    Covers network errors, unexpected API statuses and disk errors during
    existence checks, reads, writes, listings and deletes.
    """


class RemoteApiRejection(CacheError):
    """Raised when the remote service rejects a mutating call.

    Parameters
    ----------
    operation:
        Short description of the call, e.g. ``"upload asset foo.nar"``.
    status:
        HTTP status code returned by the service.
    body:
        Response body, kept verbatim for diagnosis.
    """

    def __init__(self, operation: str, status: int, body: str = "") -> None:
        self.operation = operation
        self.status = status
        self.body = body
        super().__init__(f"Failed to {operation}: {status} {body}".rstrip())
