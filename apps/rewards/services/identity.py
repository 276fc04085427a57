from __future__ import annotations

from typing import Dict, Iterable, Protocol

from apps.users.models import User


class IdentityStore(Protocol):
    def resolve_wallet_addresses(self, recipient_ids: Iterable[int]) -> Dict[int, str]: ...


class UserIdentityStore:
    """Resolves recipients to the wallet bound at sign-in; blank wallets are omitted."""

    def resolve_wallet_addresses(self, recipient_ids: Iterable[int]) -> Dict[int, str]:
        ids = [int(recipient_id) for recipient_id in recipient_ids]
        if not ids:
            return {}
        rows = User.objects.filter(id__in=ids, is_active=True).values_list("id", "wallet_address")
        return {user_id: wallet.strip() for user_id, wallet in rows if wallet and wallet.strip()}


def get_identity_store() -> UserIdentityStore:
    return UserIdentityStore()
