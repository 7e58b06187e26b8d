"""Explicit service container.

Built once by the entry point and passed to the engines and the API, so
nothing reaches for module-level singletons.
"""

from dataclasses import dataclass, field
from typing import Optional

from custodex.accounts import AccountResolver, LowercaseAddressResolver
from custodex.chain import LedgerClient, create_ledger_client
from custodex.config import Settings
from custodex.ledger.database import Database


@dataclass
class ServiceContainer:
    """Long-lived collaborators shared by both engines and the API."""

    settings: Settings
    database: Database
    ledger_client: LedgerClient
    resolver: AccountResolver = field(default_factory=LowercaseAddressResolver)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        resolver: Optional[AccountResolver] = None,
    ) -> "ServiceContainer":
        """Build the container from configuration."""
        return cls(
            settings=settings,
            database=Database(settings.database_url, echo=settings.debug),
            ledger_client=create_ledger_client(settings),
            resolver=resolver or LowercaseAddressResolver(),
        )

    async def close(self) -> None:
        """Release network and database resources."""
        await self.ledger_client.close()
        await self.database.close()
