"""
Trusted Issuers Registry

Tracks which claim issuers are trusted, and for which claim topics.

Structure
─────────

    _entries    issuer -> RegistryEntry     O(1) membership and topic lookup;
                                            dict insertion order is the
                                            registration order, and replacing
                                            a value keeps its position
    _by_topic   topic -> {issuer}           reverse index; lookups list holders
                                            in registration order, so a restored
                                            snapshot answers identically

Both structures change together inside one critical section guarded by a
re-entrant lock. Every mutation validates all of its preconditions before
touching either structure, so a failed call leaves the registry untouched.
Reads take the same lock and hand out copies.

Mutations are restricted to the owner, as answered by the injected
``AuthorizationProvider``. Each successful mutation is audited and then
publishes exactly one event on the registry's ``EventBus``, in mutation order.

Example
───────

    registry = IssuerRegistry(owner="did:example:compliance-admin")
    registry.add_trusted_issuer("did:example:compliance-admin", "did:example:kyc-co", [1, 2])

    registry.is_trusted_issuer("did:example:kyc-co")   # True
    registry.has_claim_topic("did:example:kyc-co", 3)  # False
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from trustreg.config import ConfigError, ConfigValue, TrustRegConfig, get_config
from trustreg.core import canonical_digest
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
    Validators,
)
from trustreg.observability import (
    AuditOutcome,
    AuditTrail,
    correlation_id_var,
    get_logger,
)
from trustreg.ownership import AuthorizationProvider, OwnerAuthority, TransferableAuthority

log = get_logger("registry")

SNAPSHOT_TYPE = "TrustedIssuersRegistry"
SNAPSHOT_VERSION = 1


def _resolve_limit(name: str, explicit: Optional[int], configured: ConfigValue[int]) -> int:
    if explicit is not None:
        if isinstance(explicit, bool) or not isinstance(explicit, int) or explicit < 1:
            raise ValueError(f"{name} must be a positive integer, got {explicit!r}")
        return explicit
    value = configured.get()
    if configured.validator and not configured.validator(value):
        source = f"registry.{name}"
        if configured.env_var and configured.env_var in os.environ:
            source = configured.env_var
        raise ConfigError(f"{source} must be a positive integer, got {value!r}")
    return value


@dataclass(frozen=True)
class RegistryEntry:
    """An issuer and the claim topics it is trusted to emit."""
    issuer: str
    claim_topics: Tuple[int, ...]

    def has_topic(self, claim_topic: int) -> bool:
        return claim_topic in self.claim_topics

    def to_dict(self) -> Dict[str, Any]:
        return {"issuer": self.issuer, "claim_topics": list(self.claim_topics)}


class IssuerRegistry:
    """
    Access-controlled registry of trusted claim issuers.

    Exactly one of ``owner`` (builds an ``OwnerAuthority``) or ``authority``
    (any ``AuthorizationProvider``) must be given. Capacity limits default to
    the ``registry`` section of the active configuration.
    """

    def __init__(
        self,
        owner: Optional[str] = None,
        *,
        authority: Optional[AuthorizationProvider] = None,
        event_bus: Optional[EventBus] = None,
        audit: Optional[AuditTrail] = None,
        max_trusted_issuers: Optional[int] = None,
        max_claim_topics_per_issuer: Optional[int] = None,
        config: Optional[TrustRegConfig] = None,
    ):
        if (owner is None) == (authority is None):
            raise ValueError("Provide exactly one of owner or authority")

        cfg = config or get_config()
        self._authority: AuthorizationProvider = authority or OwnerAuthority(owner)
        self.event_bus = event_bus or EventBus()
        if audit is None and cfg.observability.audit_enabled.get():
            audit = AuditTrail()
        self.audit = audit
        self.max_trusted_issuers = _resolve_limit(
            "max_trusted_issuers", max_trusted_issuers, cfg.registry.max_trusted_issuers)
        self.max_claim_topics_per_issuer = _resolve_limit(
            "max_claim_topics_per_issuer", max_claim_topics_per_issuer,
            cfg.registry.max_claim_topics_per_issuer)

        self._entries: Dict[str, RegistryEntry] = {}
        self._by_topic: Dict[int, Set[str]] = {}
        self._lock = threading.RLock()

    # ─────────────────────────────────────────────────────────────────────
    # Ownership
    # ─────────────────────────────────────────────────────────────────────

    @property
    def authority(self) -> AuthorizationProvider:
        return self._authority

    @property
    def owner(self) -> Optional[str]:
        """Current owner, when the authorization provider exposes one."""
        return getattr(self._authority, "owner", None)

    def transfer_ownership_on_issuers_registry_contract(self, caller: str, new_owner: str) -> None:
        """
        Hand the owner capability to ``new_owner``.

        Raises:
            Unauthorized: caller is not the current owner
            InvalidArgument: new_owner is null, malformed, the zero address,
                or already the owner
        """
        with self._lock:
            with self._audited(caller, "transfer_ownership", str(new_owner)) as details:
                self._require_owner(caller, "transfer ownership")
                if not isinstance(self._authority, TransferableAuthority):
                    raise RegistryError(
                        f"{type(self._authority).__name__} does not support ownership transfer"
                    )
                previous, current = self._authority.transfer_ownership(caller, new_owner)
                details.update(previous_owner=previous, new_owner=current)
                log.info("Ownership transferred", operation="transfer_ownership",
                         previous_owner=previous, new_owner=current)
            self._publish(OwnershipTransferred(previous_owner=previous, new_owner=current))

    # ─────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────

    def add_trusted_issuer(self, caller: str, issuer: str, claim_topics: Sequence[int]) -> None:
        """
        Register ``issuer`` as trusted for ``claim_topics``.

        Topics are deduplicated, keeping first-seen order. The issuer is
        appended to the enumeration order.

        Raises:
            Unauthorized: caller is not the owner
            InvalidArgument: malformed issuer, or topics empty or malformed
            AlreadyExists: issuer is already registered
            CapacityExceeded: issuer or topic limit reached
        """
        with self._lock:
            with self._audited(caller, "add_trusted_issuer", str(issuer)) as details:
                self._require_owner(caller, "add trusted issuer")
                key = Validators.validate_issuer(issuer).unwrap()
                if key in self._entries:
                    raise AlreadyExists(key)
                topics = self._checked_topics(claim_topics)
                if len(self._entries) >= self.max_trusted_issuers:
                    raise CapacityExceeded.for_field(
                        "issuer",
                        f"Registry already holds the maximum of {self.max_trusted_issuers} trusted issuers",
                        issuer,
                    )

                self._entries[key] = RegistryEntry(issuer=key, claim_topics=topics)
                self._index(key, topics)

                details.update(claim_topics=list(topics))
                log.info("Trusted issuer added", operation="add_trusted_issuer",
                         issuer=key, claim_topics=list(topics))
            self._publish(TrustedIssuerAdded(issuer=key, claim_topics=topics))

    def remove_trusted_issuer(self, caller: str, issuer: str) -> None:
        """
        Remove ``issuer`` and its enumeration slot.

        Raises:
            Unauthorized: caller is not the owner
            InvalidArgument: malformed issuer
            NotFound: issuer is not registered
        """
        with self._lock:
            with self._audited(caller, "remove_trusted_issuer", str(issuer)):
                self._require_owner(caller, "remove trusted issuer")
                key = self._existing_key(issuer)

                entry = self._entries.pop(key)
                self._unindex(key, entry.claim_topics)

                log.info("Trusted issuer removed", operation="remove_trusted_issuer", issuer=key)
            self._publish(TrustedIssuerRemoved(issuer=key))

    def update_issuer_claim_topics(self, caller: str, issuer: str, claim_topics: Sequence[int]) -> None:
        """
        Replace the claim topics of ``issuer``; its enumeration position is kept.

        Raises:
            Unauthorized: caller is not the owner
            InvalidArgument: malformed issuer, or topics empty or malformed
            NotFound: issuer is not registered
            CapacityExceeded: topic limit reached
        """
        with self._lock:
            with self._audited(caller, "update_issuer_claim_topics", str(issuer)) as details:
                self._require_owner(caller, "update issuer claim topics")
                key = self._existing_key(issuer)
                topics = self._checked_topics(claim_topics)

                previous = self._entries[key]
                kept = set(topics)
                self._unindex(key, tuple(t for t in previous.claim_topics if t not in kept))
                self._entries[key] = RegistryEntry(issuer=key, claim_topics=topics)
                self._index(key, tuple(t for t in topics if t not in previous.claim_topics))

                details.update(claim_topics=list(topics), previous_claim_topics=list(previous.claim_topics))
                log.info("Claim topics updated", operation="update_issuer_claim_topics",
                         issuer=key, claim_topics=list(topics))
            self._publish(ClaimTopicsUpdated(issuer=key, claim_topics=topics))

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    def get_trusted_issuers(self) -> List[str]:
        """All registered issuers, in registration order."""
        with self._lock:
            return list(self._entries)

    def is_trusted_issuer(self, issuer: str) -> bool:
        """Whether ``issuer`` is registered. Malformed input is never trusted."""
        key = self._lookup_key(issuer)
        if key is None:
            return False
        with self._lock:
            return key in self._entries

    def get_trusted_issuer_claim_topics(self, issuer: str) -> List[int]:
        """
        Claim topics of a registered issuer.

        Raises:
            InvalidArgument: malformed issuer
            NotFound: issuer is not registered
        """
        return list(self.get_entry(issuer).claim_topics)

    def has_claim_topic(self, issuer: str, claim_topic: int) -> bool:
        """Whether ``issuer`` is registered and trusted for ``claim_topic``. Never raises."""
        key = self._lookup_key(issuer)
        if key is None or not Validators.validate_claim_topic(claim_topic).is_valid:
            return False
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.has_topic(claim_topic)

    def get_trusted_issuers_for_claim_topic(self, claim_topic: int) -> List[str]:
        """
        Issuers trusted for ``claim_topic``; empty when there are none.

        Raises:
            InvalidArgument: malformed topic
        """
        topic = Validators.validate_claim_topic(claim_topic).unwrap()
        with self._lock:
            holders = self._by_topic.get(topic)
            if not holders:
                return []
            return [key for key in self._entries if key in holders]

    def get_entry(self, issuer: str) -> RegistryEntry:
        """
        Registry entry of ``issuer``.

        Raises:
            InvalidArgument: malformed issuer
            NotFound: issuer is not registered
        """
        key = Validators.validate_issuer(issuer).unwrap()
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            raise NotFound(key)
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, issuer: object) -> bool:
        return isinstance(issuer, str) and self.is_trusted_issuer(issuer)

    def __iter__(self) -> Iterator[RegistryEntry]:
        with self._lock:
            return iter(list(self._entries.values()))

    def __repr__(self) -> str:
        return f"IssuerRegistry(owner={self.owner!r}, issuers={len(self)})"

    # ─────────────────────────────────────────────────────────────────────
    # Snapshots
    # ─────────────────────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data copy of the full state, taken atomically."""
        with self._lock:
            return {
                "type": SNAPSHOT_TYPE,
                "version": SNAPSHOT_VERSION,
                "owner": self.owner,
                "trusted_issuers": [entry.to_dict() for entry in self._entries.values()],
            }

    def digest(self) -> str:
        """SHA-256 of the snapshot's canonical JSON bytes."""
        return canonical_digest(self.snapshot())

    @classmethod
    def from_snapshot(
        cls,
        data: Dict[str, Any],
        *,
        authority: Optional[AuthorizationProvider] = None,
        **kwargs: Any,
    ) -> "IssuerRegistry":
        """
        Rebuild a registry from ``snapshot()`` output.

        Every registry invariant is re-checked; no events are published and
        nothing is audited. Without ``authority`` the snapshot's owner is used.

        Raises:
            SnapshotError: the snapshot is malformed or violates an invariant
        """
        if not isinstance(data, dict) or data.get("type") != SNAPSHOT_TYPE:
            raise SnapshotError(f"Not a {SNAPSHOT_TYPE} snapshot")
        if data.get("version") != SNAPSHOT_VERSION:
            raise SnapshotError(f"Unsupported snapshot version: {data.get('version')!r}")

        try:
            if authority is None:
                owner = data.get("owner")
                if owner is None:
                    raise SnapshotError("Snapshot has no owner and no authority was supplied")
                registry = cls(owner, **kwargs)
            else:
                registry = cls(authority=authority, **kwargs)

            entries = data.get("trusted_issuers")
            if not isinstance(entries, list):
                raise SnapshotError("trusted_issuers must be a list")
            if len(entries) > registry.max_trusted_issuers:
                raise SnapshotError(
                    f"Snapshot holds {len(entries)} issuers, limit is {registry.max_trusted_issuers}"
                )

            for i, item in enumerate(entries):
                if not isinstance(item, dict):
                    raise SnapshotError(f"trusted_issuers[{i}] must be an object")
                key = Validators.validate_issuer(item.get("issuer")).unwrap()
                if key in registry._entries:
                    raise SnapshotError(f"Duplicate issuer in snapshot: {key}")
                topics = registry._checked_topics(item.get("claim_topics"))
                registry._entries[key] = RegistryEntry(issuer=key, claim_topics=topics)
                registry._index(key, topics)
        except InvalidArgument as e:
            raise SnapshotError(f"Invalid snapshot: {e}") from e

        log.info("Registry restored from snapshot", operation="from_snapshot", issuers=len(registry))
        return registry

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────

    @contextmanager
    def _audited(self, caller: Any, action: str, resource_id: str) -> Iterator[Dict[str, Any]]:
        """Record the outcome of a mutation attempt and log failures."""
        details: Dict[str, Any] = {}
        try:
            yield details
        except Unauthorized as e:
            log.warning(f"{action} denied", operation=action, error_code=e.code,
                        caller=str(caller), resource_id=resource_id)
            self._record(caller, action, resource_id, AuditOutcome.DENIED, error_code=e.code)
            raise
        except RegistryError as e:
            log.warning(f"{action} rejected: {e}", operation=action, error_code=e.code,
                        caller=str(caller), resource_id=resource_id)
            self._record(caller, action, resource_id, AuditOutcome.FAILURE, error_code=e.code)
            raise
        self._record(caller, action, resource_id, AuditOutcome.SUCCESS, **details)

    def _record(self, caller: Any, action: str, resource_id: str, outcome: AuditOutcome, **details: Any) -> None:
        if self.audit is not None:
            self.audit.record(str(caller), action, resource_id, outcome, **details)

    def _require_owner(self, caller: str, action: str) -> None:
        if not self._authority.is_owner(caller):
            raise Unauthorized(caller, action)

    def _checked_topics(self, claim_topics: Any) -> Tuple[int, ...]:
        topics = Validators.validate_claim_topics(claim_topics).unwrap()
        if len(topics) > self.max_claim_topics_per_issuer:
            raise CapacityExceeded.for_field(
                "claim_topics",
                f"At most {self.max_claim_topics_per_issuer} claim topics per issuer",
                claim_topics,
            )
        return topics

    def _existing_key(self, issuer: str) -> str:
        key = Validators.validate_issuer(issuer).unwrap()
        if key not in self._entries:
            raise NotFound(key)
        return key

    @staticmethod
    def _lookup_key(issuer: Any) -> Optional[str]:
        result = Validators.validate_issuer(issuer)
        return result.sanitized_value if result.is_valid else None

    def _index(self, key: str, topics: Tuple[int, ...]) -> None:
        for topic in topics:
            self._by_topic.setdefault(topic, set()).add(key)

    def _unindex(self, key: str, topics: Tuple[int, ...]) -> None:
        for topic in topics:
            holders = self._by_topic.get(topic)
            if holders is None:
                continue
            holders.discard(key)
            if not holders:
                del self._by_topic[topic]

    def _publish(self, event: Event) -> None:
        cid = correlation_id_var.get()
        if cid:
            event.correlation_id = cid
        self.event_bus.publish(event)
