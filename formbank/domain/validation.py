"""Input checks applied before any store or gateway call"""

from typing import Any, Optional

from formbank.domain.exceptions import ValidationError


def require_positive_amount(amount: Any, label: str = "amount") -> int:
    """Whole positive digipog amount; bools are rejected even though they are ints"""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"Invalid {label}")
    return amount


def parse_secret(secret: Any) -> int:
    """
    Normalize a wallet PIN to an integer.

    The rail only accepts numeric secrets, so "0042" -> 42 and "abc" is rejected.
    """
    if secret is None or isinstance(secret, bool):
        raise ValidationError("PIN is required")
    if isinstance(secret, int):
        return secret
    text = str(secret).strip()
    if not text:
        raise ValidationError("PIN is required")
    if not text.isdigit():
        raise ValidationError("Invalid PIN - must be a number")
    return int(text)


def parse_receiver(sender_id: int, receiver_id: Optional[int]) -> Optional[int]:
    if receiver_id is None:
        return None
    if isinstance(receiver_id, bool) or not isinstance(receiver_id, int) or receiver_id < 1 or receiver_id == sender_id:
        raise ValidationError(
            "Invalid receiver. Use another user's ID or leave blank for \"anyone\"."
        )
    return receiver_id
