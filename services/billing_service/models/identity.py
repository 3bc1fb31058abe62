import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.billing_service.models.enums import (
    BillingType,
    ContactType,
    ContactVerificationStatus,
    EnrollmentStatus,
    GraduationStatus,
    PaymentFrequency,
    Program,
    enum_values,
)
from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy import UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Person(Base):
    """Canonical identity record; one row per unique human."""

    __tablename__ = "persons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    contact_points: Mapped[list["ContactPoint"]] = relationship(
        back_populates="person", lazy="selectin"
    )

    def __repr__(self):
        return f"<Person {self.id} {self.name}>"


class ContactPoint(Base):
    """Email/phone owned by a person.

    Values are stored normalized. They are NOT unique across persons:
    siblings routinely share a household phone or a parent's email.
    """

    __tablename__ = "contact_points"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("persons.id", ondelete="CASCADE"), index=True, nullable=False
    )
    type: Mapped[ContactType] = mapped_column(
        SAEnum(
            ContactType,
            name="contact_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    value: Mapped[str] = mapped_column(String(320), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_status: Mapped[ContactVerificationStatus] = mapped_column(
        SAEnum(
            ContactVerificationStatus,
            name="contact_verification_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=ContactVerificationStatus.UNVERIFIED,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    person: Mapped[Person] = relationship(back_populates="contact_points")

    __table_args__ = (
        UniqueConstraint("person_id", "type", "value", name="uq_contact_point_person"),
        Index("ix_contact_points_type_value", "type", "value"),
    )

    def __repr__(self):
        return f"<ContactPoint {self.type.value}:{self.value}>"


class ProgramProfile(Base):
    """Enrollment of one person in one program, with its billing attributes."""

    __tablename__ = "program_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("persons.id"), index=True, nullable=False
    )
    program: Mapped[Program] = mapped_column(
        SAEnum(
            Program,
            name="program_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    status: Mapped[EnrollmentStatus] = mapped_column(
        SAEnum(
            EnrollmentStatus,
            name="enrollment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=EnrollmentStatus.REGISTERED,
        nullable=False,
    )

    # Billing inputs; all optional until an admin finishes setup
    graduation_status: Mapped[Optional[GraduationStatus]] = mapped_column(
        SAEnum(
            GraduationStatus,
            name="graduation_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    payment_frequency: Mapped[Optional[PaymentFrequency]] = mapped_column(
        SAEnum(
            PaymentFrequency,
            name="payment_frequency_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    billing_type: Mapped[Optional[BillingType]] = mapped_column(
        SAEnum(
            BillingType,
            name="billing_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )

    # Shared by siblings billed together (Dugsi family billing)
    family_reference_id: Mapped[Optional[str]] = mapped_column(
        String(64), index=True, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("person_id", "program", name="uq_program_profile_person"),
    )

    def __repr__(self):
        return f"<ProgramProfile {self.id} {self.program.value}>"
