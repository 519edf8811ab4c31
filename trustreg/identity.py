#!/usr/bin/env python3
"""trustreg.identity

Principal and issuer reference helpers.

Issuers and owners are opaque to the registry; this module only knows enough
about the common shapes to normalize and sanity-check them:

- `did:key` identifiers (Ed25519 only), encoded and decoded here
- other `did:<method>:...` identifiers, accepted as-is
- `0x`-prefixed 20-byte account addresses, lowercased
- anything else is an opaque handle
"""

from __future__ import annotations

import base64
import re
from enum import Enum
from typing import Any, Dict, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey


ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_DID_RE = re.compile(r"^did:[a-z0-9]+:.+$")

# Base58 implementation (no external deps)
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: str) -> bytes:
    if isinstance(s, str):
        s_bytes = s.encode("ascii")
    else:
        s_bytes = s
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    # Count leading zeros
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


# ---------------------------------------------------------------------------
# Principal classification
# ---------------------------------------------------------------------------


class PrincipalKind(Enum):
    """Shapes of principal identifiers the registry recognizes."""
    DID_KEY = "did:key"
    DID = "did"
    ADDRESS = "address"
    HANDLE = "handle"


def classify_principal(value: str) -> PrincipalKind:
    """Classify an identifier without validating it."""
    if value.startswith("did:key:"):
        return PrincipalKind.DID_KEY
    if _DID_RE.match(value):
        return PrincipalKind.DID
    if _ADDRESS_RE.match(value):
        return PrincipalKind.ADDRESS
    return PrincipalKind.HANDLE


def normalize_principal(value: str) -> str:
    """Canonical form used for identity comparison.

    Addresses are case-insensitive and get lowercased; every other shape is
    compared verbatim.
    """
    if _ADDRESS_RE.match(value):
        return value.lower()
    return value


def is_zero_address(value: str) -> bool:
    return normalize_principal(value) == ZERO_ADDRESS


# ---------------------------------------------------------------------------
# did:key (Ed25519)
# ---------------------------------------------------------------------------


def did_key_from_ed25519_public_key(pub: bytes) -> str:
    # multicodec 0xed01 + 32-byte pubkey (ed25519-pub)
    prefixed = bytes([0xED, 0x01]) + pub
    return "did:key:z" + b58encode(prefixed)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a `did:key` (Ed25519) and return a cryptography public key."""

    if not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... supported")
    decoded = b58decode(did[len("did:key:z"):])

    if not decoded.startswith(bytes([0xED, 0x01])):
        raise ValueError("did:key multicodec prefix not recognized for Ed25519")
    raw = decoded[2:]

    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")

    return Ed25519PublicKey.from_public_bytes(raw)


def is_valid_did_key(did: str) -> bool:
    try:
        ed25519_public_key_from_did_key(did)
    except ValueError:
        return False
    return True


def generate_ed25519_jwk(kid: str = "key-1") -> Tuple[str, Dict[str, Any]]:
    """Generate a fresh Ed25519 keypair.

    Returns ``(did, private_jwk)``. The JWK is OKP/Ed25519 with the private
    scalar in ``d``.
    """
    priv = Ed25519PrivateKey.generate()
    d = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    x = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    did = did_key_from_ed25519_public_key(x)
    jwk = {
        "kty": "OKP",
        "crv": "Ed25519",
        "x": b64url_encode(x),
        "d": b64url_encode(d),
        "kid": f"{did}#{kid}",
    }
    return did, jwk
