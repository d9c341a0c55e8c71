# models.py
import enum
from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from database import Base


class Role(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class AppointmentStatus(str, enum.Enum):
    PENDING = "pendiente"
    CONFIRMED = "confirmada"
    CANCELLED = "cancelada"
    COMPLETED = "completada"


class Modality(str, enum.Enum):
    IN_PERSON = "presencial"
    REMOTE = "remota"


class RecordType(str, enum.Enum):
    CONSULTATION = "consulta"
    EMERGENCY = "emergencia"
    CHECKUP = "control"
    PROCEDURE = "procedimiento"


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(enum_cls, native_enum=False, values_callable=lambda e: [m.value for m in e], length=20),
        **kwargs,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = {'extend_existing': True}

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    password_hash = Column(String(100), nullable=False)
    role = _enum_column(Role, nullable=False, index=True)
    document_id = Column(String(50), unique=True, nullable=False)
    document_type = Column(String(20), nullable=True)
    birth_date = Column(Date, nullable=True)
    phone = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)

    # doctor profile
    specialty = Column(String(100), nullable=True)
    license_number = Column(String(50), nullable=True)
    schedule = Column(JSON, nullable=True)  # [{day, start_time, end_time}]

    # patient profile
    medical_history = Column(Text, nullable=True)
    health_coverage = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


ACTIVE_SLOT_INDEX = "uq_appointments_active_slot"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_patient_date", "patient_id", "date"),
        Index("ix_appointments_doctor_date", "doctor_id", "date"),
        # one live appointment per doctor slot, cancelled ones free the slot
        Index(
            ACTIVE_SLOT_INDEX,
            "doctor_id",
            "date",
            "start_time",
            unique=True,
            sqlite_where=text("status != 'cancelada'"),
            postgresql_where=text("status != 'cancelada'"),
        ),
        {'extend_existing': True},
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    type = _enum_column(Modality, nullable=False, default=Modality.IN_PERSON)
    status = _enum_column(AppointmentStatus, nullable=False, default=AppointmentStatus.PENDING, index=True)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    prescription = Column(JSON, nullable=True)  # {medications: [...], instructions}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("User", foreign_keys=[patient_id], lazy="joined")
    doctor = relationship("User", foreign_keys=[doctor_id], lazy="joined")


class MedicalRecord(Base):
    __tablename__ = "medical_records"
    __table_args__ = (
        Index("ix_medical_records_patient_date", "patient_id", "date"),
        Index("ix_medical_records_doctor_date", "doctor_id", "date"),
        {'extend_existing': True},
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(DateTime, nullable=False, default=datetime.utcnow)
    type = _enum_column(RecordType, nullable=False, index=True)
    symptoms = Column(JSON, nullable=False, default=list)
    diagnosis = Column(Text, nullable=True)
    treatment = Column(JSON, nullable=True)
    vital_signs = Column(JSON, nullable=True)
    attachments = Column(JSON, nullable=True)
    notes = Column(Text, nullable=False, default="")
    follow_up = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("User", foreign_keys=[patient_id], lazy="joined")
    doctor = relationship("User", foreign_keys=[doctor_id], lazy="joined")
