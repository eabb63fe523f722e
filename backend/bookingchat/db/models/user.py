from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bookingchat.db.database import Base
from bookingchat.db.models.base import get_utc_now


class User(Base):
    """Read-side mirror of the identity store; only what chat rendering needs."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="customer", index=True)  # customer, staff, admin
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_utc_now)
