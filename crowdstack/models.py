import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive values are UTC; SQLite hands them back without tzinfo.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    name: Mapped[str] = mapped_column(String, index=True)
    owner_user_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    venue_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    organizer_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    invite_codes: Mapped[list["InviteQRCode"]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "venue_id": self.venue_id,
            "organizer_id": self.organizer_id,
            "created_at": str(self.created_at) if self.created_at else None,
        }


class Attendee(Base):
    __tablename__ = "attendees"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)


class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    attendee_id: Mapped[str] = mapped_column(ForeignKey("attendees.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    attendee: Mapped[Attendee] = relationship()

    __table_args__ = (UniqueConstraint("event_id", "attendee_id", name="uniq_event_attendee"),)


class InviteToken(Base):
    __tablename__ = "invite_tokens"

    token: Mapped[str] = mapped_column(String, primary_key=True)
    role: Mapped[str] = mapped_column(String, index=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class InviteQRCode(Base):
    __tablename__ = "invite_qr_codes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    created_by: Mapped[str] = mapped_column(String)
    creator_role: Mapped[str] = mapped_column(String)
    invite_code: Mapped[str] = mapped_column(String, unique=True, index=True)
    qr_token: Mapped[str] = mapped_column(String, unique=True)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    promoter_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    event: Mapped[Event] = relationship(back_populates="invite_codes")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "created_by": self.created_by,
            "creator_role": self.creator_role,
            "invite_code": self.invite_code,
            "qr_token": self.qr_token,
            "max_uses": self.max_uses,
            "used_count": self.used_count,
            "expires_at": as_utc(self.expires_at).isoformat() if self.expires_at else None,
            "promoter_id": self.promoter_id,
            "created_at": str(self.created_at) if self.created_at else None,
        }


class UserRole(Base):
    __tablename__ = "user_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    role: Mapped[str] = mapped_column(String)
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "role", name="uniq_user_role"),)


class VenueUser(Base):
    __tablename__ = "venue_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    venue_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    role: Mapped[str] = mapped_column(String, default="admin")

    __table_args__ = (UniqueConstraint("venue_id", "user_id", name="uniq_venue_user"),)


class OrganizerUser(Base):
    __tablename__ = "organizer_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organizer_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    role: Mapped[str] = mapped_column(String, default="admin")

    __table_args__ = (UniqueConstraint("organizer_id", "user_id", name="uniq_organizer_user"),)


class EventDoorStaff(Base):
    __tablename__ = "event_door_staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)

    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uniq_event_door_staff"),)


class EventPromoter(Base):
    __tablename__ = "event_promoters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)

    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uniq_event_promoter"),)


class CheckIn(Base):
    __tablename__ = "checkins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id: Mapped[str] = mapped_column(String, index=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    # "event" under single_use, the UTC date under per_day
    scope_key: Mapped[str] = mapped_column(String)
    checked_in_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("registration_id", "scope_key", name="uniq_registration_scope"),)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[str] = mapped_column(String, index=True)
    ip: Mapped[str] = mapped_column(String)
    user_agent: Mapped[str] = mapped_column(String)
    event_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    actor_user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)
    reason_code: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
