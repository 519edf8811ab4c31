"""Owner capability for the issuer registry.

The registry never decides on its own who may mutate it. It asks an
``AuthorizationProvider`` whether a caller is the current owner. The default
provider, ``OwnerAuthority``, holds a single owner principal and supports
handing it over to another principal.
"""

from __future__ import annotations

import threading
from typing import Protocol, Tuple, runtime_checkable

from trustreg.hardening import InvalidArgument, Unauthorized, Validators
from trustreg.identity import normalize_principal


@runtime_checkable
class AuthorizationProvider(Protocol):
    """Answers "is caller X the current owner"."""

    def is_owner(self, caller: str) -> bool:
        ...


@runtime_checkable
class TransferableAuthority(AuthorizationProvider, Protocol):
    """Authorization provider that also owns the transfer of its capability."""

    @property
    def owner(self) -> str:
        ...

    def transfer_ownership(self, caller: str, new_owner: str) -> Tuple[str, str]:
        ...


class OwnerAuthority:
    """
    Single-owner capability.

    Thread-safe. ``transfer_ownership`` returns ``(previous_owner, new_owner)``
    so the caller can publish the change.
    """

    def __init__(self, owner: str):
        self._owner = Validators.validate_principal(owner, "owner").unwrap()
        self._lock = threading.Lock()

    @property
    def owner(self) -> str:
        with self._lock:
            return self._owner

    def is_owner(self, caller: str) -> bool:
        if not isinstance(caller, str):
            return False
        with self._lock:
            return normalize_principal(caller.strip()) == self._owner

    def transfer_ownership(self, caller: str, new_owner: str) -> Tuple[str, str]:
        """
        Hand the capability to ``new_owner``.

        Raises:
            Unauthorized: caller is not the current owner
            InvalidArgument: new_owner is null, malformed, the zero address,
                or already the owner
        """
        with self._lock:
            if not isinstance(caller, str) or normalize_principal(caller.strip()) != self._owner:
                raise Unauthorized(caller, "transfer ownership")

            candidate = Validators.validate_principal(new_owner, "new_owner").unwrap()
            if candidate == self._owner:
                raise InvalidArgument.for_field("new_owner", "Already the current owner", new_owner)

            previous, self._owner = self._owner, candidate
            return previous, candidate

    def __repr__(self) -> str:
        return f"OwnerAuthority(owner={self.owner!r})"
