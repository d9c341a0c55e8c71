# graphql_schema.py
from datetime import date
from typing import List, Optional

import strawberry
from fastapi import Depends
from sqlalchemy.orm import Session
from strawberry.fastapi import GraphQLRouter
from strawberry.scalars import JSON

from access import Identity
from appointments import AppointmentScheduler
from auth import get_current_user
from database import get_db
from medical_records import MedicalRecordManager
from models import Appointment, AppointmentStatus, MedicalRecord, RecordType, User


@strawberry.type
class PersonType:
    id: int
    name: str
    document_id: Optional[str] = None
    specialty: Optional[str] = None


@strawberry.type
class BloodPressureType:
    systolic: Optional[int] = None
    diastolic: Optional[int] = None


@strawberry.type
class VitalSignsType:
    blood_pressure: Optional[BloodPressureType] = None
    heart_rate: Optional[int] = None
    temperature: Optional[float] = None
    respiratory_rate: Optional[int] = None
    oxygen_saturation: Optional[float] = None


@strawberry.type
class AppointmentType:
    id: int
    patient: PersonType
    doctor: PersonType
    date: str
    start_time: str
    end_time: str
    type: str
    status: str
    reason: str
    notes: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[JSON] = None


@strawberry.type
class MedicalRecordType:
    id: int
    patient: PersonType
    doctor: PersonType
    date: str
    type: str
    symptoms: List[str]
    diagnosis: Optional[str] = None
    treatment: Optional[JSON] = None
    vital_signs: Optional[VitalSignsType] = None
    attachments: Optional[List[JSON]] = None
    notes: str = ""
    follow_up: Optional[JSON] = None


# --- Helper Functions ---
def to_person_type(u: User) -> PersonType:
    return PersonType(id=u.id, name=u.name, document_id=u.document_id, specialty=u.specialty)


def to_vital_signs_type(vs: Optional[dict]) -> Optional[VitalSignsType]:
    if not vs:
        return None
    bp = vs.get("blood_pressure")
    return VitalSignsType(
        blood_pressure=BloodPressureType(systolic=bp.get("systolic"), diastolic=bp.get("diastolic")) if bp else None,
        heart_rate=vs.get("heart_rate"),
        temperature=vs.get("temperature"),
        respiratory_rate=vs.get("respiratory_rate"),
        oxygen_saturation=vs.get("oxygen_saturation"),
    )


def to_appointment_type(a: Appointment) -> AppointmentType:
    return AppointmentType(
        id=a.id,
        patient=to_person_type(a.patient),
        doctor=to_person_type(a.doctor),
        date=a.date.isoformat(),
        start_time=a.start_time,
        end_time=a.end_time,
        type=a.type.value,
        status=a.status.value,
        reason=a.reason,
        notes=a.notes,
        diagnosis=a.diagnosis,
        prescription=a.prescription,
    )


def to_record_type(r: MedicalRecord) -> MedicalRecordType:
    return MedicalRecordType(
        id=r.id,
        patient=to_person_type(r.patient),
        doctor=to_person_type(r.doctor),
        date=r.date.isoformat() if r.date else "",
        type=r.type.value,
        symptoms=list(r.symptoms or []),
        diagnosis=r.diagnosis,
        treatment=r.treatment,
        vital_signs=to_vital_signs_type(r.vital_signs),
        attachments=r.attachments,
        notes=r.notes or "",
        follow_up=r.follow_up,
    )


@strawberry.type
class Query:
    @strawberry.field
    def appointments(
        self,
        info: strawberry.Info,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: Optional[str] = None,
    ) -> List[AppointmentType]:
        scheduler = AppointmentScheduler(info.context["db"])
        found = scheduler.list(
            info.context["identity"],
            start_date=start_date,
            end_date=end_date,
            status=AppointmentStatus(status) if status else None,
        )
        return [to_appointment_type(a) for a in found]

    @strawberry.field
    def medical_records(
        self,
        info: strawberry.Info,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        type: Optional[str] = None,
    ) -> List[MedicalRecordType]:
        manager = MedicalRecordManager(info.context["db"])
        found = manager.list(
            info.context["identity"],
            patient_id=patient_id,
            doctor_id=doctor_id,
            start_date=start_date,
            end_date=end_date,
            type=RecordType(type) if type else None,
        )
        return [to_record_type(r) for r in found]


schema = strawberry.Schema(query=Query)


async def get_context(db: Session = Depends(get_db), identity: Identity = Depends(get_current_user)):
    return {"db": db, "identity": identity}


graphql_app = GraphQLRouter(schema, context_getter=get_context)
