from __future__ import annotations

from django.core.exceptions import ValidationError

TOKEN_DECIMALS = {
    "USDC": 6,
    "ETH": 18,
}


def token_decimals(token: str) -> int:
    try:
        return TOKEN_DECIMALS[str(token).upper()]
    except KeyError as exc:
        raise ValueError(f"Unsupported reward token: {token}") from exc


def to_decimal_string(amount: int, decimals: int) -> str:
    """
    Render an integer amount of smallest units as a plain decimal string.

    ``to_decimal_string(1_500_000, 6) == "1.5"``; whole amounts carry no
    decimal point. Integer arithmetic only.
    """
    amount = int(amount)
    if amount < 0:
        raise ValueError("Amounts must be non-negative.")
    if decimals < 0:
        raise ValueError("decimals must be non-negative.")
    if decimals == 0:
        return str(amount)
    base = 10**decimals
    whole, frac = divmod(amount, base)
    if frac == 0:
        return str(whole)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{frac_text}"


def human_amount(amount: int, token: str) -> str:
    return to_decimal_string(amount, token_decimals(token))


def parse_smallest_units(value) -> int:
    """Accept an int or a base-10 integer string; reject everything else."""
    if isinstance(value, bool):
        raise ValidationError("Amount must be an integer in smallest units.")
    if isinstance(value, int):
        amount = value
    else:
        text = str(value if value is not None else "").strip()
        if not text.isdigit():
            raise ValidationError("Amount must be a non-negative integer string in smallest units.")
        amount = int(text)
    if amount < 0:
        raise ValidationError("Amount must be non-negative.")
    return amount
