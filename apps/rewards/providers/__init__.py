from __future__ import annotations

from apps.rewards.config import PayoutSettings
from apps.rewards.providers.base import (
    PayoutConfigurationError,
    PayoutMode,
    PayoutProvider,
    PayoutProviderError,
)


def get_payout_provider(mode: str, config: PayoutSettings) -> PayoutProvider:
    from apps.rewards.providers.custodial import CustodialPayoutProvider
    from apps.rewards.providers.onchain import OnchainPayoutProvider

    mode = str(mode or "").strip().lower()
    if mode == PayoutMode.CUSTODIAL:
        return CustodialPayoutProvider(config)
    if mode == PayoutMode.ONCHAIN:
        return OnchainPayoutProvider(config)
    raise PayoutConfigurationError(f"Unknown payout mode: {mode}")


__all__ = [
    "PayoutConfigurationError",
    "PayoutMode",
    "PayoutProvider",
    "PayoutProviderError",
    "get_payout_provider",
]
