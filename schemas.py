# schemas.py
import datetime as dt
import re
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from models import AppointmentStatus, Modality, RecordType, Role

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
BLOOD_PRESSURE_PATTERN = re.compile(r"^(\d{2,3})/(\d{2,3})$")


def normalize_time(value: Any) -> Any:
    """Accept ``H:MM`` or ``HH:MM`` and return the zero-padded form."""
    if value is None:
        return value
    if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
        raise ValueError("La hora debe tener formato HH:mm")
    hours, minutes = value.strip().split(":")
    return f"{int(hours):02d}:{minutes}"


def strip_non_empty(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("El campo no puede estar vacío")
    return value


def reject_null(value: Any) -> Any:
    # only reached for explicit nulls, unset fields keep their default
    if value is None:
        raise ValueError("El campo no puede ser nulo")
    return value


def normalize_email(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# === Users & auth ===

class Weekday(str, Enum):
    MONDAY = "Lunes"
    TUESDAY = "Martes"
    WEDNESDAY = "Miércoles"
    THURSDAY = "Jueves"
    FRIDAY = "Viernes"
    SATURDAY = "Sábado"
    SUNDAY = "Domingo"


class ScheduleEntry(CamelModel):
    day: Weekday
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _check_times(cls, value):
        return normalize_time(value)


class RegisterRequest(CamelModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role
    document_id: str = Field(min_length=1)
    document_type: Optional[str] = None
    birth_date: Optional[dt.date] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    # doctor profile
    specialty: Optional[str] = None
    license_number: Optional[str] = None
    schedule: Optional[List[ScheduleEntry]] = None

    # patient profile
    medical_history: Optional[str] = None
    health_coverage: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        return normalize_email(value)

    @field_validator("name", "document_id", mode="before")
    @classmethod
    def _required_text(cls, value):
        return strip_non_empty(value)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        return normalize_email(value)


class UserPublic(CamelModel):
    id: int
    name: str
    email: str
    role: Role


class UserProfile(UserPublic):
    document_id: str
    document_type: Optional[str] = None
    birth_date: Optional[dt.date] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    specialty: Optional[str] = None
    license_number: Optional[str] = None
    schedule: Optional[List[ScheduleEntry]] = None
    medical_history: Optional[str] = None
    health_coverage: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class AuthResponse(CamelModel):
    message: Optional[str] = None
    token: str
    user: UserPublic


class PatientSummary(CamelModel):
    id: int
    name: str
    document_id: Optional[str] = None


class DoctorSummary(CamelModel):
    id: int
    name: str
    specialty: Optional[str] = None


# === Appointments ===

class PrescribedMedication(CamelModel):
    name: str
    dosage: str
    frequency: str
    duration: str

    @field_validator("name", "dosage", "frequency", "duration", mode="before")
    @classmethod
    def _required_text(cls, value):
        return strip_non_empty(value)


class Prescription(CamelModel):
    medications: List[PrescribedMedication] = []
    instructions: str = ""


class AppointmentCreate(CamelModel):
    patient_id: int
    doctor_id: int
    date: dt.date
    start_time: str = Field(validation_alias=AliasChoices("time", "startTime", "start_time"))
    end_time: Optional[str] = None
    reason: str
    type: Modality = Modality.IN_PERSON
    notes: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _check_times(cls, value):
        return normalize_time(value)

    @field_validator("reason", mode="before")
    @classmethod
    def _required_text(cls, value):
        return strip_non_empty(value)


class AppointmentUpdate(CamelModel):
    date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    type: Optional[Modality] = None
    status: Optional[AppointmentStatus] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[Prescription] = None

    @field_validator("date", "type", "status", "reason", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _check_times(cls, value):
        return normalize_time(reject_null(value))

    @field_validator("reason", "diagnosis", mode="before")
    @classmethod
    def _non_empty_text(cls, value):
        return strip_non_empty(value)


class AppointmentResponse(CamelModel):
    id: int
    patient: PatientSummary
    doctor: DoctorSummary
    date: dt.date
    start_time: str
    end_time: str
    type: Modality
    status: AppointmentStatus
    reason: str
    notes: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[Prescription] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


# === Medical records ===

class BloodPressure(CamelModel):
    systolic: int = Field(ge=10, le=999)
    diastolic: int = Field(ge=10, le=999)


class VitalSigns(CamelModel):
    blood_pressure: Optional[BloodPressure] = None
    heart_rate: Optional[int] = Field(default=None, ge=40, le=200)
    temperature: Optional[float] = Field(default=None, ge=35, le=42)
    respiratory_rate: Optional[int] = Field(default=None, ge=0)
    oxygen_saturation: Optional[float] = Field(default=None, ge=70, le=100)

    @field_validator("blood_pressure", mode="before")
    @classmethod
    def _parse_blood_pressure(cls, value):
        if isinstance(value, str):
            match = BLOOD_PRESSURE_PATTERN.match(value.strip())
            if not match:
                raise ValueError("Presión arterial inválida (formato: 120/80)")
            return {"systolic": int(match.group(1)), "diastolic": int(match.group(2))}
        return value


class TreatmentMedication(CamelModel):
    name: str
    dosage: str
    frequency: str
    duration: str
    start_date: dt.date
    end_date: Optional[dt.date] = None

    @field_validator("name", "dosage", "frequency", "duration", mode="before")
    @classmethod
    def _required_text(cls, value):
        return strip_non_empty(value)


class Procedure(CamelModel):
    name: str
    date: Optional[dt.date] = None
    notes: Optional[str] = None


class Treatment(CamelModel):
    medications: List[TreatmentMedication] = []
    procedures: Optional[List[Procedure]] = None
    recommendations: str = ""


class AttachmentType(str, Enum):
    IMAGE = "imagen"
    DOCUMENT = "documento"
    LAB = "laboratorio"


class Attachment(CamelModel):
    type: AttachmentType
    name: str
    url: str
    description: Optional[str] = None


class FollowUp(CamelModel):
    date: dt.date
    notes: str = ""


class MedicalRecordCreate(CamelModel):
    patient: int
    doctor: int
    date: Optional[dt.datetime] = None
    type: RecordType
    symptoms: List[str] = []
    diagnosis: Optional[str] = None
    treatment: Optional[Treatment] = None
    vital_signs: Optional[VitalSigns] = None
    attachments: Optional[List[Attachment]] = None
    notes: str = ""
    follow_up: Optional[FollowUp] = None

    @field_validator("diagnosis", mode="before")
    @classmethod
    def _non_empty_text(cls, value):
        return strip_non_empty(value)


class MedicalRecordUpdate(CamelModel):
    patient: Optional[int] = None
    doctor: Optional[int] = None
    date: Optional[dt.datetime] = None
    type: Optional[RecordType] = None
    symptoms: Optional[List[str]] = None
    diagnosis: Optional[str] = None
    treatment: Optional[Treatment] = None
    vital_signs: Optional[VitalSigns] = None
    attachments: Optional[List[Attachment]] = None
    notes: Optional[str] = None
    follow_up: Optional[FollowUp] = None

    @field_validator("patient", "doctor", "date", "type", "symptoms", "notes", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)

    @field_validator("diagnosis", mode="before")
    @classmethod
    def _non_empty_text(cls, value):
        return strip_non_empty(value)


class MedicalRecordResponse(CamelModel):
    id: int
    patient: PatientSummary
    doctor: DoctorSummary
    date: dt.datetime
    type: RecordType
    symptoms: List[str] = []
    diagnosis: Optional[str] = None
    treatment: Optional[Treatment] = None
    vital_signs: Optional[VitalSigns] = None
    attachments: Optional[List[Attachment]] = None
    notes: str = ""
    follow_up: Optional[FollowUp] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
