# appointments.py
"""
Appointment scheduling.

A slot is the (doctor, date, start time) triple; at most one appointment
that is not ``cancelada`` may hold it. The scheduler checks the slot before
inserting and the partial unique index on ``appointments`` catches the
requests that race past that check.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from access import PERMISSIONS, Identity, authorize_action, can_cancel, can_modify, can_view, scope_filters
from auth import get_current_user, require_role
from database import get_db
from directory import UserDirectory
from errors import AccessDenied, NotFound, SlotConflict, ValidationError
from models import ACTIVE_SLOT_INDEX, Appointment, AppointmentStatus, Role
from schemas import AppointmentCreate, AppointmentResponse, AppointmentUpdate
from utils import APPOINTMENT_DURATION_MINUTES

logger = logging.getLogger(__name__)

JSON_FIELDS = ("prescription",)
SLOT_COLUMNS = ("appointments.doctor_id", "appointments.date", "appointments.start_time")


def is_slot_collision(exc: IntegrityError) -> bool:
    """True when the driver reports the active-slot index, by name or by its columns."""
    detail = str(exc.orig)
    return ACTIVE_SLOT_INDEX in detail or all(column in detail for column in SLOT_COLUMNS)


def default_end_time(start_time: str, minutes: int = APPOINTMENT_DURATION_MINUTES) -> str:
    start = datetime.strptime(start_time, "%H:%M")
    end = start + timedelta(minutes=minutes)
    if end.date() != start.date():
        return "23:59"
    return end.strftime("%H:%M")


class AppointmentScheduler:
    def __init__(self, db: Session):
        self.db = db
        self.directory = UserDirectory(db)

    def find_active_in_slot(self, doctor_id: int, day: date, start_time: str) -> Optional[Appointment]:
        return (
            self.db.query(Appointment)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date == day,
                Appointment.start_time == start_time,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
            .first()
        )

    def create(self, identity: Identity, data: AppointmentCreate) -> Appointment:
        authorize_action(identity, "appointments.create")

        if not self.directory.find_by_id_and_role(data.patient_id, Role.PATIENT):
            raise NotFound("paciente", "Paciente no encontrado")
        if not self.directory.find_by_id_and_role(data.doctor_id, Role.DOCTOR):
            raise NotFound("doctor", "Doctor no encontrado")

        if self.find_active_in_slot(data.doctor_id, data.date, data.start_time):
            logger.warning(f"Slot taken for doctor {data.doctor_id} on {data.date} {data.start_time}")
            raise SlotConflict()

        if data.end_time and data.end_time <= data.start_time:
            raise ValidationError("La hora de fin debe ser posterior a la hora de inicio")

        appointment = Appointment(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            date=data.date,
            start_time=data.start_time,
            end_time=data.end_time or default_end_time(data.start_time),
            type=data.type,
            reason=data.reason,
            notes=data.notes,
            status=AppointmentStatus.PENDING,
        )
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment.id} booked for doctor {appointment.doctor_id}")
        return appointment

    def list(
        self,
        identity: Identity,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        authorize_action(identity, "appointments.list")
        query = self.db.query(Appointment).filter_by(**scope_filters(identity))
        if start_date:
            query = query.filter(Appointment.date >= start_date)
        if end_date:
            query = query.filter(Appointment.date <= end_date)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()

    def get(self, identity: Identity, appointment_id: int) -> Appointment:
        appointment = self._load(appointment_id)
        if not can_view(identity, appointment.patient_id, appointment.doctor_id):
            raise AccessDenied("No tiene permisos para ver esta cita")
        return appointment

    def update(self, identity: Identity, appointment_id: int, data: AppointmentUpdate) -> Appointment:
        authorize_action(identity, "appointments.update")
        appointment = self._load(appointment_id)
        if not can_modify(identity, appointment.doctor_id):
            raise AccessDenied("No tiene permisos para modificar esta cita")

        changes = data.model_dump(exclude_unset=True)
        if "start_time" in changes and "end_time" not in changes:
            changes["end_time"] = default_end_time(changes["start_time"])
        end_time = changes.get("end_time", appointment.end_time)
        if end_time <= changes.get("start_time", appointment.start_time):
            raise ValidationError("La hora de fin debe ser posterior a la hora de inicio")

        # TODO: re-run find_active_in_slot when date or start_time change
        for field, value in changes.items():
            if field in JSON_FIELDS and value is not None:
                value = getattr(data, field).model_dump(mode="json")
            setattr(appointment, field, value)

        self._commit()
        self.db.refresh(appointment)
        return appointment

    def cancel(self, identity: Identity, appointment_id: int) -> Appointment:
        appointment = self._load(appointment_id)
        if not can_cancel(identity, appointment.patient_id, appointment.doctor_id):
            raise AccessDenied("No tiene permisos para cancelar esta cita")

        appointment.status = AppointmentStatus.CANCELLED
        self._commit()
        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment.id} cancelled by user {identity.user_id}")
        return appointment

    def _load(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if not appointment:
            raise NotFound("cita", "Cita no encontrada")
        return appointment

    def _commit(self):
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not is_slot_collision(e):
                raise
            logger.warning("Slot index rejected a concurrent booking")
            raise SlotConflict() from e


def get_scheduler(db: Session = Depends(get_db)) -> AppointmentScheduler:
    return AppointmentScheduler(db)


router = APIRouter(prefix="/api/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    claims: Identity = Depends(require_role(PERMISSIONS["appointments.create"])),
):
    return scheduler.create(claims, data)


@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    status: Optional[AppointmentStatus] = Query(None),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    claims: Identity = Depends(get_current_user),
):
    return scheduler.list(claims, start_date=start_date, end_date=end_date, status=status)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    claims: Identity = Depends(get_current_user),
):
    return scheduler.get(claims, appointment_id)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    claims: Identity = Depends(require_role(PERMISSIONS["appointments.update"])),
):
    return scheduler.update(claims, appointment_id, data)


@router.patch("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    claims: Identity = Depends(get_current_user),
):
    return scheduler.cancel(claims, appointment_id)
