from __future__ import annotations

import base64
import logging
import uuid

import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from apps.rewards.config import PayoutSettings
from apps.rewards.models import RewardToken
from apps.rewards.providers.base import PayoutConfigurationError, PayoutMode, PayoutProvider, PayoutProviderError
from apps.rewards.services.amounts import to_decimal_string, token_decimals

logger = logging.getLogger(__name__)

TRANSFER_PATH = "/v1/w3s/developer/transactions/transfer"
PUBLIC_KEY_PATH = "/v1/w3s/config/entity/publicKey"


class CustodialPayoutProvider(PayoutProvider):
    """
    Transfers through a developer-controlled custodial wallet API.

    Every call carries a fresh idempotency key and a freshly encrypted
    entity secret; the rail's public key is fetched once per provider.
    """

    mode = PayoutMode.CUSTODIAL

    def __init__(self, config: PayoutSettings, session: requests.Session | None = None) -> None:
        if not config.custodial_api_key:
            raise PayoutConfigurationError("CIRCLE_API_KEY is not configured.")
        if not config.custodial_wallet_id:
            raise PayoutConfigurationError("CIRCLE_WALLET_ID is not configured.")
        if not config.custodial_entity_secret:
            raise PayoutConfigurationError("CIRCLE_ENTITY_SECRET is not configured (32-byte hex).")
        try:
            self._entity_secret = bytes.fromhex(config.custodial_entity_secret.strip())
        except ValueError as exc:
            raise PayoutConfigurationError("CIRCLE_ENTITY_SECRET must be hex encoded.") from exc

        self.base_url = config.custodial_api_base.rstrip("/")
        self.api_key = config.custodial_api_key
        self.wallet_id = config.custodial_wallet_id
        self.blockchain = config.custodial_blockchain
        self.usdc_token_address = config.custodial_usdc_token_address or config.onchain_usdc_address
        self.timeout = config.custodial_timeout_seconds
        self.session = session or requests.Session()
        self._public_key = None

    def _headers(self, request_id: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

    def _load_public_key(self):
        if self._public_key is not None:
            return self._public_key
        url = self.base_url + PUBLIC_KEY_PATH
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise PayoutProviderError(f"custodial public key fetch failed: {exc}") from exc
        if not response.ok:
            raise PayoutProviderError(f"custodial public key fetch failed: http_{response.status_code}")
        try:
            pem = ((response.json() or {}).get("data") or {}).get("publicKey") or ""
        except ValueError as exc:
            raise PayoutProviderError(f"custodial public key response was not JSON: {exc}") from exc
        if not pem:
            raise PayoutProviderError("custodial public key response had no publicKey")
        try:
            public_key = serialization.load_pem_public_key(pem.encode("utf-8"))
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise PayoutProviderError(f"custodial public key is not a usable PEM key: {exc}") from exc
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise PayoutProviderError("custodial public key is not an RSA key")
        self._public_key = public_key
        return self._public_key

    def entity_secret_ciphertext(self) -> str:
        ciphertext = self._load_public_key().encrypt(
            self._entity_secret,
            padding.OAEP(
                mgf=padding.MGF1(algorithm=hashes.SHA256()),
                algorithm=hashes.SHA256(),
                label=None,
            ),
        )
        return base64.b64encode(ciphertext).decode("ascii")

    def transfer(self, token: str, destination: str, amount: int) -> str:
        token = str(token or "").upper()
        if token == RewardToken.ETH:
            token_address = ""
        elif token == RewardToken.USDC:
            if not self.usdc_token_address:
                raise PayoutConfigurationError("CIRCLE_USDC_TOKEN_ADDRESS_BASE is not configured.")
            token_address = self.usdc_token_address
        else:
            raise PayoutConfigurationError(f"Unsupported reward token: {token}")

        idempotency_key = str(uuid.uuid4())
        body = {
            "walletId": self.wallet_id,
            "destinationAddress": destination,
            "idempotencyKey": idempotency_key,
            "entitySecretCiphertext": self.entity_secret_ciphertext(),
            "amounts": [to_decimal_string(amount, token_decimals(token))],
            "feeLevel": "MEDIUM",
            "blockchain": self.blockchain,
            "tokenAddress": token_address,
        }
        url = self.base_url + TRANSFER_PATH
        try:
            response = self.session.post(
                url,
                json=body,
                headers=self._headers(idempotency_key),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("payouts.custodial_request_failed", extra={"error": str(exc)})
            raise PayoutProviderError(f"custodial transfer request failed: {exc}") from exc

        if not response.ok:
            logger.warning(
                "payouts.custodial_rejected",
                extra={"status_code": response.status_code, "idempotency_key": idempotency_key},
            )
            raise PayoutProviderError(f"custodial transfer failed: {response.status_code} {response.text[:500]}")

        try:
            payload = response.json() or {}
        except ValueError:
            payload = {}
        transfer_id = (payload.get("data") or {}).get("id") if isinstance(payload, dict) else None
        return str(transfer_id or idempotency_key)
