"""
trustreg — Trusted Issuers Registry

Access-controlled registry recording which claim issuers are trusted, and
for which claim topics.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                        TRUSTED ISSUERS REGISTRY                          │
    │                                                                          │
    │  SURFACE                                                                 │
    │    cli.py           trustreg command over a snapshot file               │
    │    persistence.py   Schema-validated snapshots, atomic writes           │
    │                                                                          │
    │  CORE                                                                    │
    │    registry.py      IssuerRegistry: issuer table, topic index           │
    │    ownership.py     Owner capability and its transfer                   │
    │    events.py        Registry notifications and the event bus            │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    hardening.py     Error taxonomy, input validation                    │
    │    identity.py      did:key and address principals                      │
    │    config.py        Layered configuration (defaults, YAML, env)         │
    │    observability.py Structured logging, hash-chained audit trail        │
    │    core.py          SHA-256, canonical JSON, document loading           │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Issuer: Opaque identifier of a claim issuer (a DID, an address, a handle).
    Issuers are compared by identity only.

    Claim Topic: Unsigned integer naming a category of claim. An issuer is
    trusted for a non-empty, duplicate-free set of topics.

    Owner: The single principal allowed to change the registry. Ownership
    can be handed over by the current owner.

Usage
─────

    from trustreg import IssuerRegistry

    registry = IssuerRegistry(owner="did:example:admin")
    registry.add_trusted_issuer("did:example:admin", "did:example:kyc", [1, 7])
    assert registry.has_claim_topic("did:example:kyc", 7)
"""

__version__ = "0.1.0"

from trustreg.events import (
    ClaimTopicsUpdated,
    Event,
    EventBus,
    OwnershipTransferred,
    TrustedIssuerAdded,
    TrustedIssuerRemoved,
)
from trustreg.hardening import (
    AlreadyExists,
    CapacityExceeded,
    InvalidArgument,
    NotFound,
    RegistryError,
    SnapshotError,
    Unauthorized,
)
from trustreg.ownership import AuthorizationProvider, OwnerAuthority
from trustreg.registry import IssuerRegistry, RegistryEntry

__all__ = [
    "__version__",
    "IssuerRegistry",
    "RegistryEntry",
    "AuthorizationProvider",
    "OwnerAuthority",
    "Event",
    "EventBus",
    "TrustedIssuerAdded",
    "TrustedIssuerRemoved",
    "ClaimTopicsUpdated",
    "OwnershipTransferred",
    "RegistryError",
    "Unauthorized",
    "AlreadyExists",
    "NotFound",
    "InvalidArgument",
    "CapacityExceeded",
    "SnapshotError",
]
