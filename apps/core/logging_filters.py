from __future__ import annotations

import logging

REQUEST_FIELDS = ("request", "request_body", "data", "body")
SECRET_MARKERS = ("secret", "private_key", "api_key", "authorization", "ciphertext", "password")
REDACTED = "[redacted]"


class StripRequestBodyFilter(logging.Filter):
    """
    Drop request payloads from log records and mask any ``extra`` field whose
    name looks like a payout credential.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for attr in REQUEST_FIELDS:
            if hasattr(record, attr):
                setattr(record, attr, None)
        for attr in list(vars(record)):
            lowered = attr.lower()
            if any(marker in lowered for marker in SECRET_MARKERS):
                setattr(record, attr, REDACTED)
        return True
