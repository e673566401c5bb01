import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    user_id = Column(String(36), nullable=True, index=True)  # Auth account, null until claimed
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    # Recall risk modifiers maintained by the patient profile screens
    is_smoker = Column(Boolean, default=False, nullable=False)
    perio_risk = Column(String(10), nullable=True)  # low, medium, high
    is_pediatric = Column(Boolean, default=False, nullable=False)
    preferred_days = Column(JSON, default=list, nullable=True)  # 0=Sunday .. 6=Saturday
    preferred_time_bands = Column(JSON, default=list, nullable=True)  # morning, afternoon, evening

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointments = relationship("Appointment", back_populates="patient")


class Dentist(Base):
    __tablename__ = "dentists"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    dentist_id = Column(String(36), ForeignKey("dentists.id"), nullable=False, index=True)
    appointment_date = Column(DateTime(timezone=True), nullable=False, index=True)  # UTC
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    # Status workflow: pending → confirmed → completed | cancelled | no_show
    status = Column(String(50), default="confirmed", nullable=False, index=True)
    urgency = Column(String(20), default="medium", nullable=False)  # low, medium, high, emergency
    duration_minutes = Column(Integer, default=60, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="appointments")


class AppointmentSlot(Base):
    """One bookable (dentist, date, time) cell of the availability grid"""

    __tablename__ = "appointment_slots"
    __table_args__ = (
        UniqueConstraint("dentist_id", "slot_date", "slot_time", name="uq_slot_dentist_date_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dentist_id = Column(String(36), ForeignKey("dentists.id"), nullable=False, index=True)
    slot_date = Column(Date, nullable=False, index=True)  # Clinic-local date
    slot_time = Column(Time, nullable=False)  # Clinic-local time of day
    is_available = Column(Boolean, default=True, nullable=False)
    emergency_only = Column(Boolean, default=False, nullable=False)
    # Holder of the slot: a temporary hold token or a real appointment id (no FK on purpose)
    appointment_id = Column(String(64), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PatientRecall(Base):
    __tablename__ = "patient_recalls"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    source_appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    dentist_id = Column(String(36), ForeignKey("dentists.id"), nullable=True, index=True)
    treatment_key = Column(String(50), nullable=False)
    treatment_label = Column(String(255), nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    suggested_slots = Column(JSON, default=list, nullable=False)  # [{"date": ..., "time": ...}]
    booked_appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True)
    # Status workflow: suggested → booked | snoozed | declined | expired
    status = Column(String(20), default="suggested", nullable=False, index=True)
    snooze_until = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RescheduleSuggestionLog(Base):
    __tablename__ = "reschedule_suggestions"

    id = Column(Integer, primary_key=True, index=True)
    original_appointment_id = Column(
        String(36), ForeignKey("appointments.id"), nullable=False, index=True
    )
    reason = Column(String(50), nullable=False)
    suggested_slots = Column(JSON, default=list, nullable=False)
    accepted_slot = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)  # e.g. recall, appointment_rescheduled
    severity = Column(String(20), default="normal", nullable=False)  # low, normal, high
    action_url = Column(String(500), nullable=True)  # One-tap deep link
    extra_data = Column(JSON, default=dict, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, index=True)
    event_name = Column(String(100), nullable=False, index=True)
    dentist_id = Column(String(36), nullable=True, index=True)
    payload = Column(JSON, default=dict, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
