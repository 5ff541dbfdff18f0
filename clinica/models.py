"""Pydantic models for backend request/response payloads.

Field names follow the backend wire format. Prices are Decimal (the backend
serializes them as strings). Appointments are frozen: the denormalized
patient/doctor/service names are display caches only the backend may change.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinica.schedule import parse_local_timestamp

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """Page-number paginated list response."""
    results: List[T] = Field(default_factory=list)
    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None


class LoginResponse(BaseModel):
    """Response of POST /usuarios/login/."""
    access: str
    refresh: str
    nombre: str
    tipo_usuario: str


class User(BaseModel):
    """Authenticated identity persisted alongside the token."""
    id: str = "user"
    username: Optional[str] = None
    nombre: str
    tipo_usuario: str


class Patient(BaseModel):
    """Patient record."""
    model_config = ConfigDict(extra="ignore")

    id: int
    nombre: str
    sexo: str = Field(..., pattern="^[MF]$")
    fecha_nacimiento: date
    identificacion: str
    edad: int = 0
    telefono: str


class Specialty(BaseModel):
    id: int
    descripcion: str


class Doctor(BaseModel):
    """Doctor roster entry (read-only from the client)."""
    model_config = ConfigDict(extra="ignore")

    id: int
    nombre: str
    identificacion: str = ""
    telefono: str = ""
    estado: bool = True
    precio: Decimal = Decimal("0")
    especialidades: List[Specialty] = Field(default_factory=list)


class Arancel(BaseModel):
    """Priced service: 'c' consulta or 'p' procedimiento."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    descripcion: str
    precio: Decimal
    tipo: str = Field(..., pattern="^[cp]$")


class Appointment(BaseModel):
    """
    Appointment ("cita").

    fecha_hora is the local wall-clock timestamp exactly as booked
    (YYYY-MM-DDTHH:MM:SS); estado is an open string enum.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    paciente: int
    paciente_nombre: str = ""
    doctor_especialidad: int
    doctor_nombre: str = ""
    arancel: int
    arancel_descripcion: str = ""
    fecha_hora: str
    estado_pago: bool = False
    estado: str = "Pendiente"

    @property
    def scheduled_at(self) -> datetime:
        """Wall-clock datetime, any offset in the payload is dropped unconverted."""
        return parse_local_timestamp(self.fecha_hora)


class MedicalRecord(BaseModel):
    """Weight/height entry of a patient's history; imc is derived."""
    model_config = ConfigDict(extra="ignore")

    id: int
    paciente: int
    fecha: date
    peso: float
    altura: float
    imc: float


class InvoiceDetail(BaseModel):
    """Invoice line: snapshot of the billed service."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    factura: Optional[int] = None
    id_arancel: int
    arancel_descripcion: str = ""
    arancel_tipo: str = ""
    arancel_precio: Decimal = Decimal("0")


class Invoice(BaseModel):
    """Invoice ("factura")."""
    model_config = ConfigDict(extra="ignore")

    id: int
    id_paciente: int
    fecha: date
    total: Decimal
    detalles: List[InvoiceDetail] = Field(default_factory=list)

    @field_validator("detalles", mode="before")
    @classmethod
    def default_details(cls, v):
        return v or []
