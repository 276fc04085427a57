from __future__ import annotations

from abc import ABC, abstractmethod

from django.core.exceptions import ImproperlyConfigured
from django.db import models


class PayoutMode(models.TextChoices):
    CUSTODIAL = "custodial", "Custodial wallet API"
    ONCHAIN = "onchain", "Direct on-chain transfer"


class PayoutProviderError(Exception):
    """A transfer attempt failed; the allocation may be retried."""


class PayoutConfigurationError(ImproperlyConfigured):
    """The selected rail is missing credentials or addresses. Never retried."""


class PayoutProvider(ABC):
    mode: str = ""

    @abstractmethod
    def transfer(self, token: str, destination: str, amount: int) -> str:
        """
        Move ``amount`` smallest units of ``token`` to ``destination`` and
        return the rail's settlement reference (transfer id or tx hash).
        """
