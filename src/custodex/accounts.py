"""Mapping from on-chain sender addresses to platform user identities."""

from abc import ABC, abstractmethod
from typing import Optional


class AccountResolver(ABC):
    """Resolves the platform identity that owns a sending address."""

    @abstractmethod
    def resolve(self, address: str) -> Optional[str]:
        """Return the owning identity, or None when the address is unknown."""
        pass


class LowercaseAddressResolver(AccountResolver):
    """Uses the lowercased sender address itself as the identity.

    Stand-in until wallet-to-account linking exists.
    """

    def resolve(self, address: str) -> Optional[str]:
        if not address:
            return None
        return address.lower()


class StaticAccountResolver(AccountResolver):
    """Resolves from a fixed address -> identity table."""

    def __init__(self, mapping: dict[str, str]):
        self._mapping = {addr.lower(): identity.lower() for addr, identity in mapping.items()}

    def resolve(self, address: str) -> Optional[str]:
        return self._mapping.get(address.lower())
