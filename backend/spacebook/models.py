from __future__ import annotations

from datetime import datetime, time
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String, Text, Time


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    STUDENT = "Student"
    SPACE_MANAGER = "Space_Manager"
    ADMINISTRATOR = "Administrator"


class SpaceStatus(StrEnum):
    AVAILABLE = "Available"
    MAINTENANCE = "Maintenance"
    CLOSED = "Closed"
    DELETED = "Deleted"


class ReservationStatus(StrEnum):
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"
    NO_SHOW = "No_Show"


class CancellationReason(StrEnum):
    USER_REQUESTED = "User_Requested"
    ADMINISTRATIVE = "Administrative"
    SPACE_MAINTENANCE = "Space_Maintenance"


def _enum_column(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole), nullable=False, default=UserRole.STUDENT)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_preferences: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Campus(Base):
    __tablename__ = "campuses"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    buildings: Mapped[list["Building"]] = relationship(back_populates="campus")


class Building(Base):
    __tablename__ = "buildings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    campus_id: Mapped[int] = mapped_column(ForeignKey("campuses.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    campus: Mapped["Campus"] = relationship(back_populates="buildings")
    spaces: Mapped[list["StudySpace"]] = relationship(back_populates="building")


class StudySpace(Base):
    __tablename__ = "study_spaces"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="chk_spaces_capacity"),
        Index("idx_spaces_building", "building_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    room_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    floor: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    room_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    noise_level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amenities: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    accessibility_features: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    status: Mapped[SpaceStatus] = mapped_column(
        _enum_column(SpaceStatus),
        nullable=False,
        default=SpaceStatus.AVAILABLE,
    )
    weekday_opens_at: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    weekday_closes_at: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    weekend_opens_at: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    weekend_closes_at: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    building: Mapped["Building"] = relationship(back_populates="spaces")
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="space")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="chk_res_time"),
        UniqueConstraint("confirmation_code", name="uq_reservations_confirmation_code"),
        Index("idx_res_space_start", "space_id", "starts_at"),
        Index("idx_res_user_start", "user_id", "starts_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    space_id: Mapped[int] = mapped_column(ForeignKey("study_spaces.id"), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    purpose: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus),
        nullable=False,
        default=ReservationStatus.CONFIRMED,
    )
    confirmation_code: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    cancellation_reason: Mapped[Optional[CancellationReason]] = mapped_column(
        _enum_column(CancellationReason),
        nullable=True,
    )

    space: Mapped["StudySpace"] = relationship(back_populates="reservations")

    @property
    def duration_minutes(self) -> int:
        return int((self.ends_at - self.starts_at).total_seconds() // 60)
