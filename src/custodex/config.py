"""Application configuration using pydantic-settings.

Every value is sourced from the environment (or a local ``.env`` file).
The three stable tokens of the reference deployment are configured by
contract address; a token without an address is simply not monitored.
"""

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from custodex.errors import ConfigurationError


@dataclass(frozen=True)
class TokenConfig:
    """A monitored ERC-20 token."""

    symbol: str
    name: str
    address: str
    decimals: int = 18


# symbol -> display name, in monitoring order
SUPPORTED_TOKENS = {
    "DEUR": "Digital EUR",
    "DUSD": "Digital USD",
    "DCNY": "Digital CNH",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/custodex.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8080, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    dry_run: bool = Field(
        default=False, description="Use the in-memory simulated chain (no real transactions)"
    )

    # ======================
    # Chain
    # ======================
    rpc_url: str = Field(
        default="",
        validation_alias=AliasChoices("RPC_URL", "POLYGON_RPC_URL"),
        description="JSON-RPC endpoint of the chain",
    )
    rpc_timeout: float = Field(default=30.0, description="JSON-RPC request timeout (seconds)")
    chain_id: int = Field(default=137, description="Chain ID used when signing (137 = Polygon)")
    log_block_range: int = Field(
        default=2000, description="Maximum block span per eth_getLogs request"
    )
    receipt_timeout: int = Field(
        default=120, description="Seconds to wait for a withdrawal receipt"
    )

    # ======================
    # Platform wallet
    # ======================
    platform_wallet_address: str = Field(default="", description="Platform deposit/withdrawal address")
    platform_wallet_private_key: Optional[str] = Field(
        default=None, description="Signing key for outbound payments"
    )

    # ======================
    # Tokens
    # ======================
    deur_token_address: str = Field(default="", description="Digital EUR contract address")
    dusd_token_address: str = Field(default="", description="Digital USD contract address")
    dcny_token_address: str = Field(default="", description="Digital CNH contract address")
    token_decimals: int = Field(default=18, description="Decimals shared by the stable tokens")

    # ======================
    # Deposits
    # ======================
    min_confirmations: int = Field(default=12, ge=0, description="Finality threshold in blocks")
    deposit_poll_interval: float = Field(default=30.0, description="Seconds between deposit scans")
    deposit_start_delay: float = Field(default=5.0, description="Delay before the first deposit scan")
    deposit_start_block: Optional[int] = Field(
        default=None, description="Initial cursor for a token never scanned before"
    )
    rescan_blocks: int = Field(
        default=0, ge=0, description="Blocks behind the cursor re-queried every scan"
    )
    pending_refresh_batch: int = Field(
        default=100, description="Pending deposits re-checked per cycle"
    )

    # ======================
    # Withdrawals
    # ======================
    withdrawal_fee_percent: Decimal = Field(
        default=Decimal("1.0"), ge=0, lt=100, description="Fee charged on withdrawals (%)"
    )
    max_daily_withdrawal: Decimal = Field(
        default=Decimal("10000"), description="Per-user daily withdrawal cap"
    )
    withdrawal_poll_interval: float = Field(
        default=60.0, description="Seconds between settlement ticks"
    )
    withdrawal_start_delay: float = Field(
        default=10.0, description="Delay before the first settlement tick"
    )
    withdrawal_batch_size: int = Field(default=10, description="Withdrawals claimed per tick")
    withdrawal_delay_seconds: float = Field(
        default=2.0, description="Pause between consecutive withdrawals"
    )
    broadcast_max_attempts: int = Field(
        default=1, ge=1, description="Attempts for broadcasts that never reached the network"
    )
    broadcast_retry_backoff: float = Field(
        default=5.0, description="Initial backoff between broadcast attempts (seconds)"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def tokens(self) -> list[TokenConfig]:
        """Tokens that have a contract address configured."""
        addresses = {
            "DEUR": self.deur_token_address,
            "DUSD": self.dusd_token_address,
            "DCNY": self.dcny_token_address,
        }
        return [
            TokenConfig(
                symbol=symbol,
                name=name,
                address=addresses[symbol],
                decimals=self.token_decimals,
            )
            for symbol, name in SUPPORTED_TOKENS.items()
            if addresses[symbol]
        ]

    def get_token(self, currency: str) -> Optional[TokenConfig]:
        """Look up a configured token by symbol or display name."""
        wanted = currency.strip().lower()
        for token in self.tokens:
            if wanted in (token.symbol.lower(), token.name.lower()):
                return token
        return None

    def validate_for_service(self) -> None:
        """Fail fast when the service cannot talk to the chain or sign.

        Raises:
            ConfigurationError: If a required setting is missing
        """
        if self.dry_run:
            return

        missing = []
        if not self.rpc_url:
            missing.append("RPC_URL")
        if not self.platform_wallet_address:
            missing.append("PLATFORM_WALLET_ADDRESS")
        if not self.platform_wallet_private_key:
            missing.append("PLATFORM_WALLET_PRIVATE_KEY")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        if not self.tokens:
            raise ConfigurationError("No token contract addresses configured")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "rpc_url": self._rpc_host(self.rpc_url) if self.rpc_url else "(not set)",
            "platform_wallet_address": self.platform_wallet_address or "(not set)",
            "signing_key": "***" if self.platform_wallet_private_key else "(not set)",
            "tokens": {token.symbol: token.address for token in self.tokens},
            "deposits": {
                "min_confirmations": self.min_confirmations,
                "poll_interval": self.deposit_poll_interval,
                "rescan_blocks": self.rescan_blocks,
            },
            "withdrawals": {
                "fee_percent": str(self.withdrawal_fee_percent),
                "max_daily": str(self.max_daily_withdrawal),
                "poll_interval": self.withdrawal_poll_interval,
                "batch_size": self.withdrawal_batch_size,
                "broadcast_max_attempts": self.broadcast_max_attempts,
            },
        }

    @staticmethod
    def _rpc_host(url: str) -> str:
        """Scheme and host of an RPC URL, with any path or query masked."""
        parts = urlsplit(url)
        if not parts.hostname:
            return "***"
        host = parts.hostname if parts.port is None else f"{parts.hostname}:{parts.port}"
        masked = "/***" if parts.path.strip("/") or parts.query else ""
        return f"{parts.scheme}://{host}{masked}"

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials embedded in a URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
