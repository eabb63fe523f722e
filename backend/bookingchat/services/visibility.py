"""
Who may see and write what in a booking chat.

Every function here is pure: callers pass the rows and the Actor, nothing is
read from the database. The checks run on the server before any message
content is transmitted, for REST listings and realtime fan-out alike.
"""
from typing import NamedTuple, Optional

from bookingchat.core.exceptions import Forbidden
from bookingchat.core.security import Actor


class Visibility(NamedTuple):
    """The two message attributes visibility depends on; safe to ship between processes."""
    is_private: bool
    sender_id: int

    @classmethod
    def of(cls, message) -> "Visibility":
        return cls(is_private=bool(message.is_private), sender_id=message.sender_id)


def can_see(message, viewer: Actor) -> bool:
    if not message.is_private:
        return True
    return viewer.is_admin or viewer.id == message.sender_id


def filter_visible(messages, viewer: Actor) -> list:
    return [m for m in messages if can_see(m, viewer)]


def can_send_private(actor: Actor) -> bool:
    return actor.is_team_member


def can_send_quotation(actor: Actor) -> bool:
    return actor.is_team_member


def can_access_booking(booking, actor: Actor) -> bool:
    """Customer of the booking, any admin, or the booking's assigned staff member."""
    if actor.is_admin:
        return True
    if actor.id == booking.customer_id:
        return True
    return actor.is_staff and booking.assigned_staff_id is not None and actor.id == booking.assigned_staff_id


def can_close_chat(booking, actor: Actor) -> bool:
    if actor.is_admin:
        return True
    return actor.is_staff and booking.assigned_staff_id == actor.id


def ensure_booking_access(booking, actor: Actor, detail: Optional[str] = None):
    if not can_access_booking(booking, actor):
        raise Forbidden(detail or "You are not a member of this chat")
