from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

PAYOUT_MODES = ("custodial", "onchain")
ALLOCATION_POLICIES = ("equal", "weighted")
REWARD_TOKENS = ("USDC", "ETH")


class PayoutSettings(BaseSettings):
    """
    Reward and payout configuration, read from the environment once and
    handed to each component explicitly.
    """

    payout_mode: str = Field("custodial", alias="PAYOUT_MODE")
    queue_enabled: bool = Field(False, alias="PAYOUTS_QUEUE_ENABLED")

    reward_token: str = Field("USDC", alias="REWARD_TOKEN")
    total_pool: str = Field("0", alias="REWARD_TOTAL_POOL_UNITS")
    allocation_policy: str = Field("equal", alias="REWARD_ALLOCATION_MODE")
    top_n: int = Field(10, alias="REWARD_TOP_N")
    weekly_cron: str = Field("5 0 * * 1", alias="REWARD_WEEKLY_CRON")

    max_attempts: int = Field(3, alias="PAYOUTS_MAX_ATTEMPTS")
    backoff_seconds: int = Field(5, alias="PAYOUTS_BACKOFF_SECONDS")
    worker_concurrency: int = Field(5, alias="PAYOUTS_WORKER_CONCURRENCY")
    dedupe_ttl_seconds: int = Field(24 * 60 * 60, alias="PAYOUTS_DEDUPE_TTL_SECONDS")

    custodial_api_key: str = Field("", alias="CIRCLE_API_KEY")
    custodial_api_base: str = Field("https://api.circle.com", alias="CIRCLE_API_BASE")
    custodial_wallet_id: str = Field("", alias="CIRCLE_WALLET_ID")
    custodial_entity_secret: str = Field("", alias="CIRCLE_ENTITY_SECRET")
    custodial_blockchain: str = Field("BASE", alias="CIRCLE_BLOCKCHAIN")
    custodial_usdc_token_address: str = Field("", alias="CIRCLE_USDC_TOKEN_ADDRESS_BASE")
    custodial_timeout_seconds: int = Field(15, alias="CIRCLE_TIMEOUT_SECONDS")

    onchain_rpc_url: str = Field("", alias="BASE_RPC_URL")
    onchain_private_key: str = Field("", alias="DISTRIBUTOR_PRIVATE_KEY")
    onchain_usdc_address: str = Field("", alias="USDC_ADDRESS_BASE")
    onchain_chain_id: int = Field(8453, alias="BASE_CHAIN_ID")
    onchain_receipt_timeout_seconds: int = Field(300, alias="ONCHAIN_RECEIPT_TIMEOUT_SECONDS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True

    @field_validator("payout_mode", "allocation_policy", mode="before")
    @classmethod
    def _lowercase(cls, value: str | None) -> str:
        return str(value or "").strip().lower()

    @field_validator("reward_token", mode="before")
    @classmethod
    def _uppercase(cls, value: str | None) -> str:
        return str(value or "").strip().upper()

    @field_validator("payout_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in PAYOUT_MODES:
            raise ValueError(f"PAYOUT_MODE must be one of {PAYOUT_MODES}")
        return value

    @field_validator("allocation_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        if value not in ALLOCATION_POLICIES:
            raise ValueError(f"REWARD_ALLOCATION_MODE must be one of {ALLOCATION_POLICIES}")
        return value

    @field_validator("reward_token")
    @classmethod
    def _check_token(cls, value: str) -> str:
        if value not in REWARD_TOKENS:
            raise ValueError(f"REWARD_TOKEN must be one of {REWARD_TOKENS}")
        return value

    @field_validator("total_pool", mode="before")
    @classmethod
    def _check_pool(cls, value) -> str:
        text = str(value if value is not None else "0").strip() or "0"
        if not text.isdigit():
            raise ValueError("REWARD_TOTAL_POOL_UNITS must be a non-negative integer in smallest units")
        return str(int(text))

    @field_validator("weekly_cron")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        fields = str(value or "").split()
        if len(fields) != 5:
            raise ValueError("REWARD_WEEKLY_CRON must have five fields: minute hour day month weekday")
        return " ".join(fields)

    @field_validator("top_n", "max_attempts", "worker_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("backoff_seconds", "dedupe_ttl_seconds")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must be >= 0")
        return value

    @property
    def total_pool_units(self) -> int:
        return int(self.total_pool)


@lru_cache(maxsize=1)
def get_payout_settings() -> PayoutSettings:
    return PayoutSettings()
