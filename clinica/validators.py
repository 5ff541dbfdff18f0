"""Entity form validators.

Pure functions: no network, no clock unless `today` is omitted. Each
validate_* returns {field: message} for every invalid field (empty when the
form is valid); ensure_valid() turns a non-empty result into
FormValidationError so submission is blocked before any request is built.

Messages are user-facing and follow the clinic's locale.
"""
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Union

from clinica import config
from clinica.exceptions import FormValidationError
from clinica.models import Arancel, Doctor, Patient
from clinica.schedule import PERIODS, is_on_grid
from clinica.state import AppointmentStatus, is_valid_transition


@dataclass
class AppointmentForm:
    """New-appointment form; errors is filled by the workflow on failure."""
    paciente: Optional[Patient] = None
    arancel: Optional[Arancel] = None
    doctor: Optional[Doctor] = None
    fecha: Optional[date] = None
    hora: str = "09:00"
    periodo: str = "AM"
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class AppointmentEditForm:
    """Edit form: only date, time and status may change."""
    fecha: Optional[date] = None
    hora: str = ""
    periodo: str = "AM"
    estado: str = AppointmentStatus.PENDIENTE.value
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class PatientForm:
    nombre: str = ""
    sexo: str = ""
    fecha_nacimiento: Optional[date] = None
    identificacion: str = ""
    telefono: str = ""
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class MedicalRecordForm:
    peso: Union[str, float, None] = None
    altura: Union[str, float, None] = None
    fecha: Optional[date] = None
    errors: Dict[str, str] = field(default_factory=dict)


def phone_pattern(country_code: str = config.PHONE_COUNTRY_CODE) -> re.Pattern:
    return re.compile(rf'^\+{re.escape(country_code)}\s\d{{4}}-\d{{4}}$')


def ensure_valid(errors: Dict[str, str]) -> None:
    """Raise FormValidationError if any field failed."""
    if errors:
        raise FormValidationError(errors)


def _today(today: Optional[date]) -> date:
    return today or date.today()


def _validate_schedule(errors: Dict[str, str], fecha, hora, periodo, today: date) -> None:
    if not fecha:
        errors["fecha"] = "La fecha de la cita es requerida"
    elif fecha < today:
        errors["fecha"] = "La fecha no puede ser anterior a hoy"

    if not hora:
        errors["hora"] = "La hora de la cita es requerida"
    elif periodo not in PERIODS or not is_on_grid(hora, periodo):
        errors["hora"] = "La hora seleccionada no es válida"


def validate_appointment_form(form: AppointmentForm, today: Optional[date] = None) -> Dict[str, str]:
    """
    Validate a new appointment.

    Patient, service and doctor must be selected; the date is compared with
    today's local calendar date (a date equal to today is accepted); the time
    must be a grid slot.
    """
    errors: Dict[str, str] = {}

    if not form.paciente:
        errors["paciente"] = "Debe seleccionar un paciente"
    if not form.arancel:
        errors["arancel"] = "Debe seleccionar un servicio"
    if not form.doctor:
        errors["doctor"] = "Debe seleccionar un doctor"

    _validate_schedule(errors, form.fecha, form.hora, form.periodo, _today(today))
    return errors


def validate_appointment_edit(
    form: AppointmentEditForm,
    current_status: str,
    today: Optional[date] = None,
    allow_override: bool = config.ALLOW_STATUS_OVERRIDE
) -> Dict[str, str]:
    """
    Validate an appointment edit.

    Args:
        form: New date, time and status
        current_status: Status of the stored appointment
        today: Local calendar date (default: date.today())
        allow_override: Permit leaving Completada/Cancelada

    Returns:
        Field errors
    """
    errors: Dict[str, str] = {}
    _validate_schedule(errors, form.fecha, form.hora, form.periodo, _today(today))

    if not form.estado:
        errors["estado"] = "El estado es requerido"
    elif form.estado not in {s.value for s in AppointmentStatus}:
        errors["estado"] = "Estado no válido"
    elif not allow_override and not is_valid_transition(current_status, form.estado):
        errors["estado"] = f"No se puede cambiar una cita {current_status} a {form.estado}"

    return errors


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    """Whole years between birth_date and today."""
    today = _today(today)
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def format_phone_number(value: str, country_code: str = config.PHONE_COUNTRY_CODE) -> str:
    """
    Normalize free-typed digits to '+<code> XXXX-XXXX'.

    A leading country code is recognized and not duplicated; extra digits
    beyond eight are dropped.
    """
    digits = re.sub(r'\D', '', value or '')
    if digits.startswith(country_code):
        digits = digits[len(country_code):]
    if len(digits) <= 4:
        return f"+{country_code} {digits}"
    return f"+{country_code} {digits[:4]}-{digits[4:8]}"


def validate_patient_form(
    form: PatientForm,
    today: Optional[date] = None,
    country_code: str = config.PHONE_COUNTRY_CODE
) -> Dict[str, str]:
    """Validate patient create/update input; birth date must be before today."""
    errors: Dict[str, str] = {}

    if not form.nombre.strip():
        errors["nombre"] = "El nombre es requerido"

    if not form.sexo:
        errors["sexo"] = "El sexo es requerido"
    elif form.sexo not in ("M", "F"):
        errors["sexo"] = "El sexo debe ser M o F"

    if not form.fecha_nacimiento:
        errors["fecha_nacimiento"] = "La fecha de nacimiento es requerida"
    elif form.fecha_nacimiento >= _today(today):
        errors["fecha_nacimiento"] = "La fecha de nacimiento debe ser anterior a hoy"

    identificacion = form.identificacion.strip()
    if not identificacion:
        errors["identificacion"] = "La identificación es requerida"
    elif len(identificacion) < config.MIN_IDENTIFICATION_LENGTH:
        errors["identificacion"] = (
            f"La identificación debe tener al menos {config.MIN_IDENTIFICATION_LENGTH} caracteres"
        )

    telefono = form.telefono.strip()
    if not telefono:
        errors["telefono"] = "El teléfono es requerido"
    elif not phone_pattern(country_code).match(telefono):
        errors["telefono"] = f"El formato debe ser +{country_code} XXXX-XXXX"

    return errors


def _parse_measure(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def calculate_imc(peso: float, altura: float) -> float:
    """
    Body mass index from weight (kg) and height (cm), one decimal.

    Raises:
        ValueError: If height is not positive
    """
    if altura <= 0:
        raise ValueError("altura must be positive")
    altura_m = altura / 100
    return round(peso / (altura_m ** 2), 1)


def imc_category(imc: float) -> str:
    if imc < 18.5:
        return "Bajo peso"
    if imc < 25:
        return "Normal"
    if imc < 30:
        return "Sobrepeso"
    return "Obesidad"


def validate_medical_record_form(form: MedicalRecordForm, today: Optional[date] = None) -> Dict[str, str]:
    """Weight in (0, 500] kg, height in (0, 250] cm, date not in the future."""
    errors: Dict[str, str] = {}

    peso = _parse_measure(form.peso)
    if peso is None:
        errors["peso"] = "El peso es requerido"
    elif not (0 < peso <= config.MAX_WEIGHT_KG):
        errors["peso"] = f"El peso debe ser un número válido entre 1 y {config.MAX_WEIGHT_KG} kg"

    altura = _parse_measure(form.altura)
    if altura is None:
        errors["altura"] = "La altura es requerida"
    elif not (0 < altura <= config.MAX_HEIGHT_CM):
        errors["altura"] = f"La altura debe ser un número válido entre 1 y {config.MAX_HEIGHT_CM} cm"

    if not form.fecha:
        errors["fecha"] = "La fecha es requerida"
    elif form.fecha > _today(today):
        errors["fecha"] = "La fecha no puede ser futura"

    return errors
