# backend/bookingchat/services/booking_service.py
# Thin seam to the booking collaborator: only what the chat lifecycle needs.
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.core.exceptions import NotFound, ValidationFailed
from bookingchat.db.models.booking import Booking
from bookingchat.db.models.user import User
from bookingchat.repositories.message_repository import ChatRepository


async def create_booking(
    db: AsyncSession,
    customer_id: int,
    title: str = "",
    assigned_staff_id: Optional[int] = None,
) -> Booking:
    """
    Creates a booking and its chat in one transaction; a booking never
    exists without exactly one open chat.
    """
    booking = Booking(customer_id=customer_id, title=title, assigned_staff_id=assigned_staff_id, status="pending")
    db.add(booking)
    await db.flush()
    await ChatRepository.create(db, booking.id)
    await db.commit()
    await db.refresh(booking)
    return booking


async def assign_staff(db: AsyncSession, booking_id: int, staff_id: Optional[int]) -> Booking:
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if staff_id is not None:
        staff = await db.get(User, staff_id)
        if staff is None or staff.role != "staff":
            raise ValidationFailed("Assignee must be a staff member")
    booking.assigned_staff_id = staff_id
    await db.commit()
    return booking


async def list_customer_bookings(db: AsyncSession, customer_id: int) -> List[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.customer_id == customer_id).order_by(Booking.created_at.desc())
    )
    return list(result.scalars().all())
