"""Narinfo fingerprinting and Ed25519 signing in Nix's key-string encoding.

Keys and signatures are strings of the form ``<name>:<base64>``.  The name is
everything before the *first* colon.  Secret keys arrive either as the
64-byte libsodium form (seed followed by public key, what
``nix-store --generate-binary-cache-key`` writes) or as a bare 32-byte seed;
public keys are always 32 bytes.

The signed message is the UTF-8 encoding of :func:`fingerprint`.  Any change
to its layout breaks interoperability with Nix clients.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import NamedTuple

import nacl.signing
from nacl.exceptions import BadSignatureError

from opencache.errors import InvalidKeyFormat
from opencache.models.narinfo import NarinfoRecord

logger = logging.getLogger(__name__)

SEED_BYTES = 32
COMBINED_SECRET_BYTES = 64
PUBLIC_KEY_BYTES = 32


class NixKey(NamedTuple):
    """A parsed ``<name>:<base64>`` key or signature string."""

    name: str
    key: bytes


def parse_key(key_string: str) -> NixKey:
    """Split a key string on its first colon and base64-decode the rest.

    Raises
    ------
    InvalidKeyFormat
        If there is no colon, or the key material is not valid base64.
    """
    name, sep, material = key_string.strip().partition(":")
    if not sep:
        raise InvalidKeyFormat(
            'Invalid Nix key format: expected "<keyname>:<base64-key>"'
        )
    try:
        key = base64.b64decode(material, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKeyFormat(f"Key {name!r} is not valid base64") from exc
    return NixKey(name, key)


def fingerprint(record: NarinfoRecord) -> str:
    """Return the canonical string Nix signs for *record*.

    ``1;<storePath>;<narHash>;<narSize>;<references joined by ",">`` — an
    empty reference list leaves the last field empty.
    """
    refs = ",".join(record.references)
    return f"1;{record.store_path};{record.nar_hash};{record.nar_size};{refs}"


def _signing_key(private_key_string: str) -> tuple[str, nacl.signing.SigningKey]:
    name, key = parse_key(private_key_string)
    if len(key) not in (SEED_BYTES, COMBINED_SECRET_BYTES):
        raise InvalidKeyFormat(
            f"Secret key {name!r} is {len(key)} bytes, expected "
            f"{SEED_BYTES} or {COMBINED_SECRET_BYTES}"
        )
    return name, nacl.signing.SigningKey(key[:SEED_BYTES])


def sign_narinfo(record: NarinfoRecord, private_key_string: str) -> str:
    """Sign *record* and return ``<keyname>:<base64 signature>``.

    Raises
    ------
    InvalidKeyFormat
        If the key string is malformed or not 32/64 bytes long.
    """
    name, signing_key = _signing_key(private_key_string)
    signed = signing_key.sign(fingerprint(record).encode("utf-8"))
    return f"{name}:{base64.b64encode(signed.signature).decode('ascii')}"


def parse_public_key(public_key_string: str) -> NixKey:
    """Parse a public key string and check it holds exactly 32 bytes."""
    key = parse_key(public_key_string)
    if len(key.key) != PUBLIC_KEY_BYTES:
        raise InvalidKeyFormat(
            f"Public key {key.name!r} is {len(key.key)} bytes, expected {PUBLIC_KEY_BYTES}"
        )
    return key


def verify_narinfo(
    record: NarinfoRecord, signature_string: str, public_key_string: str
) -> bool:
    """Check *signature_string* against *record* under *public_key_string*.

    Returns ``False`` for a malformed signature, a signature made under a
    different key name, a tampered record or the wrong key.

    Raises
    ------
    InvalidKeyFormat
        If the public key string is malformed or not exactly 32 bytes.
    """
    key_name, pub = parse_public_key(public_key_string)

    try:
        sig_name, sig = parse_key(signature_string)
    except InvalidKeyFormat:
        logger.debug("Rejecting malformed signature string %r", signature_string)
        return False
    if sig_name != key_name:
        return False

    try:
        nacl.signing.VerifyKey(pub).verify(fingerprint(record).encode("utf-8"), sig)
    except (BadSignatureError, ValueError):
        # ValueError: signature of the wrong length
        return False
    return True


def resign_narinfo(content: str, private_key_string: str) -> str:
    """Replace every ``Sig:`` line in narinfo *content* with our own signature.

    Signatures already present (ours or a third party's) are never relayed;
    the cache always asserts its own authority.

    Raises
    ------
    ValueError
        If *content* is not a parseable narinfo.
    InvalidKeyFormat
        If the signing key is malformed.
    """
    record = NarinfoRecord.parse(content)
    sig = sign_narinfo(record, private_key_string)
    kept = [line for line in content.split("\n") if not line.startswith("Sig:")]
    trimmed = "\n".join(kept).rstrip()
    return f"{trimmed}\nSig: {sig}\n"


def generate_keypair(name: str) -> tuple[str, str]:
    """Generate a key pair in ``nix-store --generate-binary-cache-key`` format.

    Returns
    -------
    tuple[str, str]
        ``(secret_key_string, public_key_string)``; the secret is the 64-byte
        seed-plus-public-key form.
    """
    if not name or ":" in name:
        raise InvalidKeyFormat(f"Key name must be non-empty without ':': {name!r}")
    sk = nacl.signing.SigningKey.generate()
    pub = sk.verify_key.encode()
    secret = base64.b64encode(sk.encode() + pub).decode("ascii")
    public = base64.b64encode(pub).decode("ascii")
    return f"{name}:{secret}", f"{name}:{public}"


def public_key_from_secret(private_key_string: str) -> str:
    """Derive the ``<name>:<base64>`` public key for a secret key string."""
    name, signing_key = _signing_key(private_key_string)
    pub = signing_key.verify_key.encode()
    return f"{name}:{base64.b64encode(pub).decode('ascii')}"
