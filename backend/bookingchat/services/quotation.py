"""
Priced-offer messages.

A quotation is an ordinary chat message with `is_quotation` set and a
mandatory amount in the smallest whole currency unit. Quotations are never
amended: a new price is a new message, and earlier quotations in the same
chat stay as they were.
"""
from typing import Optional

from bookingchat.core.exceptions import Forbidden, ValidationFailed
from bookingchat.core.security import Actor
from bookingchat.services.visibility import can_send_quotation

CURRENCY_SYMBOL = "$"


def validate_amount(amount) -> int:
    # bool is an int subclass; True must not become a price of 1
    if amount is None:
        raise ValidationFailed("Quotation amount is required")
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationFailed("Quotation amount must be a whole number")
    if amount < 0:
        raise ValidationFailed("Quotation amount cannot be negative")
    return amount


def check_quotation(actor: Actor, is_quotation: bool, amount) -> Optional[int]:
    """
    Returns the amount to store: the validated amount for quotations, None
    otherwise. A stray amount on a plain message is rejected rather than
    silently dropped.
    """
    if not is_quotation:
        if amount is not None:
            raise ValidationFailed("Quotation amount is only allowed on quotation messages")
        return None
    if not can_send_quotation(actor):
        raise Forbidden("Only staff and admins can send quotations")
    return validate_amount(amount)


def format_amount(amount: int) -> str:
    return f"{CURRENCY_SYMBOL}{amount:,}"


def describe(message) -> str:
    """One-line summary of a quotation message, e.g. '$500 - parts+labor'."""
    text = format_amount(message.quotation_amount)
    description = (message.content or "").strip()
    return f"{text} - {description}" if description else text
