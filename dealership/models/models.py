from sqlalchemy import Integer, String, DateTime, ForeignKey, Text, Enum as SQLEnum, Boolean, Numeric, Date
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime, date, timezone
from decimal import Decimal
from dealership.database import Base
import enum
from typing import List as TypingList, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, enum.Enum):
    """Account role carried in the JWT and checked on every socket event."""
    USER = "user"
    ADMIN = "admin"

    @property
    def counterpart(self) -> "Role":
        return Role.USER if self is Role.ADMIN else Role.ADMIN


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(SQLEnum(Role, values_callable=lambda x: [e.value for e in x]), default=Role.USER, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Relationships
    sent_messages: Mapped[TypingList["Message"]] = relationship("Message", back_populates="sender", foreign_keys="Message.sender_id")


class VehicleStatus(str, enum.Enum):
    """Listing status of a vehicle on the lot"""
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    brand: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g., Toyota, Renault
    model: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g., Corolla, Clio
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    mileage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    fuel_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    transmission: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[VehicleStatus] = mapped_column(SQLEnum(VehicleStatus, values_callable=lambda x: [e.value for e in x]), default=VehicleStatus.AVAILABLE, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Personnel(Base):
    __tablename__ = "personnel"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    salary: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    hire_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Message(Base):
    """
    One chat message between a buyer and an admin.

    There is no conversations table: a conversation exists as long as at
    least one row carries its conversation_key. Each side tracks its own
    read state; the sender's side is read at insert time.
    """
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    conversation_key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    listing_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True)
    sender_role: Mapped[Role] = mapped_column(SQLEnum(Role, values_callable=lambda x: [e.value for e in x]), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)  # Encrypted content
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    read_by_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_by_user: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    sender: Mapped["User"] = relationship("User", back_populates="sent_messages", foreign_keys=[sender_id])
    receiver: Mapped["User"] = relationship("User", foreign_keys=[receiver_id])
    listing: Mapped[Optional["Vehicle"]] = relationship("Vehicle")
