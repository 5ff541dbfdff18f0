"""Shared test fixtures."""
from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import pytest

from clinica.gateway import ClinicGateway
from clinica.models import Appointment, Arancel, Doctor, Page, Patient, User
from clinica.session import SessionContext
from clinica.storage import ClientStorage

TODAY = date(2025, 6, 10)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def storage():
    """ClientStorage over in-memory SQLite."""
    return ClientStorage(database_url="sqlite:///:memory:")


@pytest.fixture
def session(storage):
    """Authenticated session context."""
    ctx = SessionContext(storage)
    ctx.token = "access-token"
    ctx.refresh_token = "refresh-token"
    ctx.user = User(username="recepcion", nombre="Recepción", tipo_usuario="admin")
    return ctx


@pytest.fixture
def gateway():
    """Gateway double; tests set return values per endpoint."""
    return Mock(spec=ClinicGateway)


@pytest.fixture
def ana():
    return Patient(
        id=7,
        nombre="Ana Ruiz",
        sexo="F",
        fecha_nacimiento=date(1990, 3, 14),
        identificacion="0801199012345",
        edad=35,
        telefono="+504 9999-1234"
    )


@pytest.fixture
def dr_perez():
    return Doctor(id=3, nombre="Dr. Pérez", precio=Decimal("500.00"))


@pytest.fixture
def consulta_general():
    return Arancel(id=11, descripcion="Consulta General", precio=Decimal("300.00"), tipo="c")


@pytest.fixture
def rayos_x():
    return Arancel(id=21, descripcion="Rayos X", precio=Decimal("450.00"), tipo="p")


@pytest.fixture
def make_appointment():
    """Build an Appointment with sensible defaults."""
    def _create(appointment_id: int, **overrides) -> Appointment:
        data = {
            "id": appointment_id,
            "paciente": 7,
            "paciente_nombre": "Ana Ruiz",
            "doctor_especialidad": 3,
            "doctor_nombre": "Dr. Pérez",
            "arancel": 11,
            "arancel_descripcion": "Consulta General",
            "fecha_hora": "2025-06-11T14:00:00",
            "estado_pago": False,
            "estado": "Pendiente",
        }
        data.update(overrides)
        return Appointment(**data)
    return _create


@pytest.fixture
def make_page():
    def _create(results, count=None, next_url=None, previous_url=None) -> Page:
        return Page(
            results=results,
            count=len(results) if count is None else count,
            next=next_url,
            previous=previous_url
        )
    return _create
