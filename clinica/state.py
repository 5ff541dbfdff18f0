"""Appointment status rules.

Lifecycle:
- Created as Pendiente (unpaid)
- Pendiente -> Completada (visit done, payment flag independent)
- Pendiente -> Cancelada
- Completada and Cancelada are terminal for explicit transitions

Deletion is not a status transition, it removes the appointment.
"""
from enum import Enum
from typing import Dict, List


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states as sent on the wire."""
    PENDIENTE = "Pendiente"
    COMPLETADA = "Completada"
    CANCELADA = "Cancelada"


INITIAL_STATUS = AppointmentStatus.PENDIENTE

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETADA, AppointmentStatus.CANCELADA})


# Current status -> allowed next statuses (staying put is always allowed)
VALID_TRANSITIONS: Dict[AppointmentStatus, List[AppointmentStatus]] = {
    AppointmentStatus.PENDIENTE: [
        AppointmentStatus.COMPLETADA,
        AppointmentStatus.CANCELADA,
    ],
    AppointmentStatus.COMPLETADA: [],
    AppointmentStatus.CANCELADA: [],
}


def parse_status(value: str) -> AppointmentStatus:
    """
    Map a wire value to AppointmentStatus.

    Raises:
        ValueError: If value is not one of the three known statuses
    """
    return AppointmentStatus(value)


def is_valid_transition(current: str, new: str) -> bool:
    """
    Check an explicit status change against VALID_TRANSITIONS.

    Unknown current values (the backend enum is open) may only move to a
    known status; unknown targets are never valid.
    """
    try:
        target = parse_status(new)
    except ValueError:
        return False
    try:
        source = parse_status(current)
    except ValueError:
        return True
    if source == target:
        return True
    return target in VALID_TRANSITIONS[source]


def is_override(current: str, new: str) -> bool:
    """True when an edit moves an appointment out of a terminal status."""
    try:
        source = parse_status(current)
    except ValueError:
        return False
    return source in TERMINAL_STATUSES and new != source.value
