# medical_records.py
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from access import PERMISSIONS, Identity, authorize_action, can_modify, can_view, scope_filters
from auth import get_current_user, require_role
from database import get_db
from directory import UserDirectory
from errors import AccessDenied, NotFound
from models import MedicalRecord, RecordType, Role
from schemas import MedicalRecordCreate, MedicalRecordResponse, MedicalRecordUpdate

logger = logging.getLogger(__name__)

JSON_FIELDS = ("treatment", "vital_signs", "attachments", "follow_up")
REFERENCE_FIELDS = {"patient": "patient_id", "doctor": "doctor_id"}


def _json_value(data, field):
    value = getattr(data, field)
    if value is None:
        return None
    if isinstance(value, list):
        return [item.model_dump(mode="json", exclude_none=True) for item in value]
    return value.model_dump(mode="json", exclude_none=True)


class MedicalRecordManager:
    def __init__(self, db: Session):
        self.db = db
        self.directory = UserDirectory(db)

    def create(self, identity: Identity, data: MedicalRecordCreate) -> MedicalRecord:
        authorize_action(identity, "medical_records.create")
        self._check_participants(data.patient, data.doctor)

        record = MedicalRecord(
            patient_id=data.patient,
            doctor_id=data.doctor,
            date=data.date or datetime.utcnow(),
            type=data.type,
            symptoms=list(data.symptoms),
            diagnosis=data.diagnosis,
            notes=data.notes,
            **{field: _json_value(data, field) for field in JSON_FIELDS},
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Medical record {record.id} created by user {identity.user_id}")
        return record

    def list(
        self,
        identity: Identity,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        type: Optional[RecordType] = None,
    ) -> List[MedicalRecord]:
        authorize_action(identity, "medical_records.list")
        query = self.db.query(MedicalRecord).filter_by(**scope_filters(identity))
        if patient_id is not None:
            query = query.filter(MedicalRecord.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(MedicalRecord.doctor_id == doctor_id)
        if start_date:
            query = query.filter(MedicalRecord.date >= datetime.combine(start_date, time.min))
        if end_date:
            query = query.filter(MedicalRecord.date < datetime.combine(end_date + timedelta(days=1), time.min))
        if type:
            query = query.filter(MedicalRecord.type == type)
        return query.order_by(MedicalRecord.date.desc()).all()

    def get(self, identity: Identity, record_id: int) -> MedicalRecord:
        record = self._load(record_id)
        if not can_view(identity, record.patient_id, record.doctor_id):
            raise AccessDenied("No tienes permiso para ver este registro")
        return record

    def update(self, identity: Identity, record_id: int, data: MedicalRecordUpdate) -> MedicalRecord:
        authorize_action(identity, "medical_records.update")
        record = self._load(record_id)
        if not can_modify(identity, record.doctor_id):
            raise AccessDenied("No tienes permiso para actualizar este registro")

        changes = data.model_dump(exclude_unset=True)
        if "patient" in changes or "doctor" in changes:
            self._check_participants(changes.get("patient", record.patient_id), changes.get("doctor", record.doctor_id))

        # shallow merge, nested blocks are replaced as a whole
        for field, value in changes.items():
            if field in JSON_FIELDS:
                value = _json_value(data, field)
            setattr(record, REFERENCE_FIELDS.get(field, field), value)

        self.db.commit()
        self.db.refresh(record)
        return record

    def _check_participants(self, patient_id: int, doctor_id: int):
        if not self.directory.find_by_id_and_role(patient_id, Role.PATIENT):
            raise NotFound("paciente", "Paciente no encontrado")
        if not self.directory.find_by_id_and_role(doctor_id, Role.DOCTOR):
            raise NotFound("doctor", "Doctor no encontrado")

    def _load(self, record_id: int) -> MedicalRecord:
        record = self.db.get(MedicalRecord, record_id)
        if not record:
            raise NotFound("registro médico", "Registro médico no encontrado")
        return record


def get_record_manager(db: Session = Depends(get_db)) -> MedicalRecordManager:
    return MedicalRecordManager(db)


router = APIRouter(prefix="/api/medical-records", tags=["medical-records"])


@router.post("", response_model=MedicalRecordResponse, status_code=status.HTTP_201_CREATED)
def add_record(
    data: MedicalRecordCreate,
    manager: MedicalRecordManager = Depends(get_record_manager),
    claims: Identity = Depends(require_role(PERMISSIONS["medical_records.create"])),
):
    return manager.create(claims, data)


@router.get("", response_model=List[MedicalRecordResponse])
def list_records(
    patient_id: Optional[int] = Query(None, alias="patientId"),
    doctor_id: Optional[int] = Query(None, alias="doctorId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    type: Optional[RecordType] = Query(None),
    manager: MedicalRecordManager = Depends(get_record_manager),
    claims: Identity = Depends(get_current_user),
):
    return manager.list(
        claims,
        patient_id=patient_id,
        doctor_id=doctor_id,
        start_date=start_date,
        end_date=end_date,
        type=type,
    )


@router.get("/{record_id}", response_model=MedicalRecordResponse)
def get_record(
    record_id: int,
    manager: MedicalRecordManager = Depends(get_record_manager),
    claims: Identity = Depends(get_current_user),
):
    return manager.get(claims, record_id)


@router.put("/{record_id}", response_model=MedicalRecordResponse)
def update_record(
    record_id: int,
    data: MedicalRecordUpdate,
    manager: MedicalRecordManager = Depends(get_record_manager),
    claims: Identity = Depends(require_role(PERMISSIONS["medical_records.update"])),
):
    return manager.update(claims, record_id, data)
