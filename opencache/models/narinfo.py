"""Narinfo and cache-info models — the Nix binary cache wire formats.

A narinfo is a newline-separated list of ``Key: value`` lines.  Only four
fields take part in the signed fingerprint (``StorePath``, ``NarHash``,
``NarSize``, ``References``); the rest are carried through for rendering.
"""

from __future__ import annotations

import posixpath

from pydantic import BaseModel, ConfigDict, Field

NARINFO_SUFFIX = ".narinfo"
NAR_URL_PREFIX = "nar/"


class NarinfoRecord(BaseModel):
    """Metadata for one cached store path.

    ``references`` holds full store paths in the order received; the order is
    part of the signed fingerprint and must never be changed.
    """

    model_config = ConfigDict(frozen=True)

    store_path: str
    nar_hash: str  # "<algorithm>:<digest>"
    nar_size: int = Field(ge=0)
    references: tuple[str, ...] = ()
    url: str | None = None
    compression: str | None = None
    file_hash: str | None = None
    file_size: int | None = None
    deriver: str | None = None
    signatures: tuple[str, ...] = ()

    @property
    def store_dir(self) -> str:
        """Directory of the store path, e.g. ``/nix/store``."""
        return posixpath.dirname(self.store_path)

    @property
    def nar_filename(self) -> str | None:
        """The NAR filename this record points at (``URL`` minus ``nar/``)."""
        if not self.url:
            return None
        return self.url.removeprefix(NAR_URL_PREFIX) or None

    @classmethod
    def parse(cls, text: str) -> NarinfoRecord:
        """Parse narinfo text.

        Lines without a colon and unknown keys are ignored.  ``References``
        entries given as bare ``<hash>-<name>`` basenames (the form Nix
        writes) are resolved against the directory of ``StorePath``.

        Raises
        ------
        ValueError
            If ``StorePath``, ``NarHash`` or ``NarSize`` is missing, or a
            size field is not a non-negative integer.
        """
        fields: dict[str, str] = {}
        references: list[str] = []
        signatures: list[str] = []

        for line in text.splitlines():
            key, sep, value = line.partition(":")
            if not sep:
                continue
            key = key.strip()
            value = value.strip()
            if key == "References":
                references.extend(value.split())
            elif key == "Sig":
                if value:
                    signatures.append(value)
            else:
                fields[key] = value

        missing = [k for k in ("StorePath", "NarHash", "NarSize") if not fields.get(k)]
        if missing:
            raise ValueError(f"narinfo is missing required field(s): {', '.join(missing)}")

        store_path = fields["StorePath"]
        store_dir = posixpath.dirname(store_path)
        resolved = tuple(
            ref if ref.startswith("/") else posixpath.join(store_dir, ref)
            for ref in references
        )

        return cls(
            store_path=store_path,
            nar_hash=fields["NarHash"],
            nar_size=_parse_size("NarSize", fields["NarSize"]),
            references=resolved,
            url=fields.get("URL") or None,
            compression=fields.get("Compression") or None,
            file_hash=fields.get("FileHash") or None,
            file_size=(
                _parse_size("FileSize", fields["FileSize"])
                if fields.get("FileSize")
                else None
            ),
            deriver=fields.get("Deriver") or None,
            signatures=tuple(signatures),
        )

    def to_text(self) -> str:
        """Render the record in narinfo wire format, ``Sig`` lines last."""
        lines = [f"StorePath: {self.store_path}"]
        if self.url:
            lines.append(f"URL: {self.url}")
        if self.compression:
            lines.append(f"Compression: {self.compression}")
        if self.file_hash:
            lines.append(f"FileHash: {self.file_hash}")
        if self.file_size is not None:
            lines.append(f"FileSize: {self.file_size}")
        lines.append(f"NarHash: {self.nar_hash}")
        lines.append(f"NarSize: {self.nar_size}")
        lines.append(
            "References: " + " ".join(posixpath.basename(r) for r in self.references)
        )
        if self.deriver:
            lines.append(f"Deriver: {self.deriver}")
        lines.extend(f"Sig: {sig}" for sig in self.signatures)
        return "\n".join(lines) + "\n"


def _parse_size(field: str, value: str) -> int:
    if not value.isdigit():
        raise ValueError(f"narinfo {field} is not a non-negative integer: {value!r}")
    return int(value)


def referenced_nar_filenames(text: str) -> set[str]:
    """Return every NAR filename named by a ``URL:`` line of *text*.

    Works on raw text so that records which would not fully parse still
    protect the NARs they point at.
    """
    filenames: set[str] = set()
    for line in text.splitlines():
        if line.startswith("URL:"):
            filename = line[len("URL:"):].strip().removeprefix(NAR_URL_PREFIX)
            if filename:
                filenames.add(filename)
    return filenames


class CacheInfo(BaseModel):
    """The ``/nix-cache-info`` document."""

    model_config = ConfigDict(frozen=True)

    store_dir: str = "/nix/store"
    want_mass_query: int = 1
    priority: int = 30

    def to_text(self) -> str:
        return (
            f"StoreDir: {self.store_dir}\n"
            f"WantMassQuery: {self.want_mass_query}\n"
            f"Priority: {self.priority}\n"
        )
