# access.py
"""
Role checks and role-scoped visibility rules.

Everything here is a pure function over an ``Identity`` and the
participant ids of an appointment or medical record, so the rules can be
exercised without a database or a request.

The scheduler and record manager call ``authorize_action`` themselves, which
is the check the GraphQL queries and direct callers rely on. The REST
routers also declare ``require_role`` with the same ``PERMISSIONS`` entry so
a wrong role is turned away before the session is touched.
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional

from errors import AccessDenied
from models import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str
    role: Role


STAFF = frozenset({Role.ADMIN, Role.DOCTOR})
EVERYONE = frozenset(Role)

# allowed roles per operation, checked before any lookup
PERMISSIONS: Dict[str, FrozenSet[Role]] = {
    "auth.profile": EVERYONE,
    "appointments.create": STAFF,
    "appointments.list": EVERYONE,
    "appointments.read": EVERYONE,
    "appointments.update": STAFF,
    "appointments.cancel": EVERYONE,
    "medical_records.create": STAFF,
    "medical_records.list": EVERYONE,
    "medical_records.read": EVERYONE,
    "medical_records.update": STAFF,
}


def authorize(identity: Optional[Identity], allowed_roles: Iterable[Role]) -> Identity:
    if identity is None:
        raise AccessDenied("No autorizado")
    if identity.role not in frozenset(allowed_roles):
        logger.warning(f"Role {identity.role.value} denied for user {identity.user_id}")
        raise AccessDenied()
    return identity


def authorize_action(identity: Optional[Identity], action: str) -> Identity:
    return authorize(identity, PERMISSIONS[action])


def scope_filters(identity: Identity) -> Dict[str, int]:
    """Column filters that narrow a listing to the caller's own involvement."""
    if identity.role == Role.PATIENT:
        return {"patient_id": identity.user_id}
    if identity.role == Role.DOCTOR:
        return {"doctor_id": identity.user_id}
    return {}


def is_participant(identity: Identity, patient_id: int, doctor_id: int) -> bool:
    return identity.user_id in (patient_id, doctor_id)


def can_view(identity: Identity, patient_id: int, doctor_id: int) -> bool:
    return identity.role == Role.ADMIN or is_participant(identity, patient_id, doctor_id)


def can_modify(identity: Identity, doctor_id: int) -> bool:
    return identity.role == Role.ADMIN or identity.user_id == doctor_id


def can_cancel(identity: Identity, patient_id: int, doctor_id: int) -> bool:
    return can_view(identity, patient_id, doctor_id)
