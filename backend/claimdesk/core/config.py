from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


RESOLUTION_POLICIES = {"bookkeeping_first", "ledger_canonical"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/claimdesk.db",
        description="SQLAlchemy compatible database URL for the claim notification outbox",
    )
    ledger_rpc_url: AnyUrl | str = Field(
        default="http://localhost:8545",
        description="JSON-RPC endpoint of the chain hosting the campaign contracts",
    )
    bookkeeping_base_url: AnyUrl | str = Field(
        default="http://localhost:8000",
        description="Base URL of the off-chain bookkeeping service",
    )
    bookkeeping_markets_path: str = Field(
        default="/markets",
        description="Relative path for the bookkeeping market lookup endpoint",
    )
    bookkeeping_bets_path: str = Field(
        default="/bet/me/user-bets",
        description="Relative path listing the authenticated user's bets",
    )
    bookkeeping_claims_path: str = Field(
        default="/bet/claims",
        description="Relative path receiving confirmed claim notifications",
    )
    bookkeeping_api_token: str | None = Field(
        default=None,
        description="Optional bearer token used for service-to-service bookkeeping calls",
    )
    token_decimals: int = Field(
        default=6,
        description="Implied decimal places of the settlement token",
        ge=0,
        le=36,
    )
    source_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to each ledger or bookkeeping read",
        gt=0,
    )
    claim_confirmation_timeout_seconds: float = Field(
        default=120.0,
        description="How long a claim transaction may take to confirm before it is treated as rejected",
        gt=0,
    )
    resolution_policy: str = Field(
        default="bookkeeping_first",
        description="Outcome precedence when both sources report resolution (bookkeeping_first|ledger_canonical)",
    )
    claim_sync_batch_size: int = Field(
        default=50,
        description="Number of pending claim notifications redelivered per batch",
        ge=1,
    )
    claim_sync_max_attempts: int = Field(
        default=5,
        description="Delivery attempts after which a claim notification is left for manual review",
        ge=1,
    )
    claim_sync_backoff_seconds: list[float] | tuple[float, ...] | str = Field(
        default_factory=lambda: [1.0, 2.0, 4.0],
        description="Comma-separated list or array of backoff delays (seconds) between delivery attempts",
    )

    @field_validator("resolution_policy")
    @classmethod
    def _validate_resolution_policy(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in RESOLUTION_POLICIES:
            raise ValueError(
                "resolution_policy must be one of: " + ", ".join(sorted(RESOLUTION_POLICIES))
            )
        return normalized

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_url(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("claim_sync_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float]:
        if value in (None, "", []):
            return [1.0, 2.0, 4.0]
        if isinstance(value, str):
            tokens = [token.strip() for token in value.split(",") if token.strip()]
            if not tokens:
                raise ValueError("CLAIM_SYNC_BACKOFF_SECONDS must contain at least one value")
            value = tokens
        if isinstance(value, (list, tuple)):
            backoff: list[float] = []
            for item in value:
                try:
                    delay = float(item)
                except (TypeError, ValueError) as exc:
                    raise ValueError("CLAIM_SYNC_BACKOFF_SECONDS entries must be numeric") from exc
                if delay <= 0:
                    raise ValueError("CLAIM_SYNC_BACKOFF_SECONDS entries must be positive")
                backoff.append(delay)
            if not backoff:
                raise ValueError("CLAIM_SYNC_BACKOFF_SECONDS must contain at least one value")
            return backoff
        raise ValueError(
            "CLAIM_SYNC_BACKOFF_SECONDS must be provided as a comma-separated string or list of numbers"
        )

    @property
    def ledger_is_canonical(self) -> bool:
        return self.resolution_policy == "ledger_canonical"

    @property
    def claim_sync_backoff_schedule(self) -> tuple[float, ...]:
        sequence = tuple(float(value) for value in self.claim_sync_backoff_seconds)
        if not sequence:
            return (1.0,)
        return sequence


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
