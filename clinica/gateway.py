"""Remote data gateway for the clinic backend.

Every backend call goes through ClinicGateway._request(), the single point
that attaches the bearer token and a request id, runs the call through the
circuit breaker, and turns any failure into ApiError with a human-readable
message (plus the server's detail when it sent one).

Methods are synchronous; workflows dispatch them with asyncio.to_thread.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, TypeAdapter, ValidationError

from clinica import config
from clinica.circuit_breaker import CircuitBreaker
from clinica.exceptions import ApiError, NotAuthenticated
from clinica.http_client import create_http_session
from clinica.logging_config import generate_request_id, get_logger
from clinica.models import (
    Appointment,
    Arancel,
    Doctor,
    Invoice,
    LoginResponse,
    MedicalRecord,
    Page,
    Patient,
    User,
)
from clinica.session import SessionContext
from clinica.state import AppointmentStatus

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

CONNECTION_ERROR_MESSAGE = "No se pudo conectar con el servidor. Por favor, intenta de nuevo."


def is_backend_failure(exc: Exception) -> bool:
    """Breaker predicate: transport errors and 5xx, not client errors."""
    if isinstance(exc, requests.exceptions.HTTPError):
        status = getattr(exc.response, "status_code", None)
        return status is None or status >= 500
    return isinstance(exc, requests.exceptions.RequestException)


def _error_from_response(response: Optional[requests.Response]) -> ApiError:
    if response is None:
        return ApiError(CONNECTION_ERROR_MESSAGE)

    detail = None
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        detail = body.get("detail")
        if isinstance(detail, (list, dict)):
            detail = str(detail)
    message = message or detail or f"Error {response.status_code}: {response.reason}"
    return ApiError(message, status_code=response.status_code, detail=detail)


def _page_params(page: int, search: str = "") -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if page > 1:
        params["page"] = page
    if search and search.strip():
        params["search"] = search.strip()
    return params


def _check_service_type(tipo: str) -> None:
    if tipo not in config.SERVICE_TYPES:
        raise ValueError(f"Unknown service type {tipo!r}; expected one of {sorted(config.SERVICE_TYPES)}")


def date_range_params(
    fecha_inicio: Optional[date] = None,
    fecha_fin: Optional[date] = None
) -> Dict[str, str]:
    """
    Report date filter: a lone start date is an exact-day filter ('fecha'),
    start and end make a range, a lone end date is an upper bound.
    """
    if fecha_inicio and fecha_fin:
        return {"fecha_inicio": fecha_inicio.isoformat(), "fecha_fin": fecha_fin.isoformat()}
    if fecha_inicio:
        return {"fecha": fecha_inicio.isoformat()}
    if fecha_fin:
        return {"fecha_fin": fecha_fin.isoformat()}
    return {}


class ClinicGateway:
    """Typed access to the clinic REST API."""

    def __init__(
        self,
        session: SessionContext,
        base_url: str = config.API_BASE_URL,
        http: Optional[requests.Session] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        """
        Args:
            session: Session context providing the bearer token
            base_url: API root, e.g. http://127.0.0.1:8000/api
            http: Configured requests session (default: create_http_session())
            breaker: Circuit breaker shared by all calls
        """
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.http = http or create_http_session()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.BREAKER_FAILURE_THRESHOLD,
            timeout=config.BREAKER_TIMEOUT_SECONDS,
            is_failure=is_backend_failure
        )

    # ------------------------------------------------------------------
    # Normalization point
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        authenticated: bool = True
    ) -> Any:
        """
        Perform one backend call.

        Returns:
            Decoded JSON body, or None for empty/204 responses

        Raises:
            NotAuthenticated: Gated call without a session
            BackendUnavailable: Circuit breaker open
            ApiError: Any transport or HTTP failure
        """
        if authenticated and not self.session.is_authenticated:
            raise NotAuthenticated()

        request_id = generate_request_id()
        headers = {"Content-Type": "application/json", "X-Request-ID": request_id}
        if authenticated:
            headers.update(self.session.authorization_header())

        url = f"{self.base_url}{path}"
        send = getattr(self.http, method.lower())
        log = logger.bind(request_id=request_id, method=method.upper(), path=path)

        try:
            response = self.breaker.call(send, url, params=params, json=json, headers=headers)
        except ApiError:
            log.warning("backend_unavailable")
            raise
        except requests.exceptions.HTTPError as e:
            error = _error_from_response(e.response)
            log.error("api_error", status_code=error.status_code, error=error.message)
            raise error from e
        except requests.exceptions.RequestException as e:
            log.error("api_connection_error", error=str(e))
            raise ApiError(CONNECTION_ERROR_MESSAGE, detail=str(e)) from e

        log.debug("api_ok", status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("Respuesta inválida del servidor", status_code=response.status_code) from e

    def _parse(self, model: Type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("unexpected_payload", model=model.__name__, error=str(e))
            raise ApiError("Respuesta inválida del servidor", detail=str(e)) from e

    def _parse_list(self, model: Type[M], data: Any) -> List[M]:
        if isinstance(data, dict) and "results" in data:
            data = data["results"]
        try:
            return TypeAdapter(List[model]).validate_python(data or [])
        except ValidationError as e:
            logger.error("unexpected_payload", model=model.__name__, error=str(e))
            raise ApiError("Respuesta inválida del servidor", detail=str(e)) from e

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def login(self, usuario: str, contrasena: str) -> User:
        """Authenticate and start the session. Returns the stored identity."""
        try:
            data = self._request(
                "POST",
                "/usuarios/login/",
                json={"usuario": usuario, "contrasena": contrasena},
                authenticated=False
            )
        except ApiError as e:
            if e.status_code is not None and e.message.startswith("Error "):
                raise ApiError("Error en el inicio de sesión", e.status_code, e.detail) from e
            raise
        response = self._parse(LoginResponse, data)
        return self.session.start(response, usuario)

    def logout(self) -> None:
        self.session.clear()

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def list_patients(self, page: int = 1, search: str = "") -> Page[Patient]:
        data = self._request("GET", "/pacientes/index/", params=_page_params(page, search))
        return self._parse(Page[Patient], data)

    def create_patient(self, payload: Dict[str, Any]) -> Patient:
        return self._parse(Patient, self._request("POST", "/pacientes/create/", json=payload))

    def update_patient(self, patient_id: int, payload: Dict[str, Any]) -> Patient:
        data = self._request("PUT", f"/pacientes/update/{patient_id}/", json=payload)
        return self._parse(Patient, data)

    def delete_patient(self, patient_id: int) -> None:
        self._request("DELETE", f"/pacientes/delete/{patient_id}/")

    def get_medical_history(self, patient_id: int) -> List[MedicalRecord]:
        data = self._request("GET", f"/pacientes/historicos/{patient_id}/")
        return self._parse_list(MedicalRecord, data)

    def create_medical_record(self, payload: Dict[str, Any]) -> MedicalRecord:
        data = self._request("POST", "/pacientes/historicos/create/", json=payload)
        return self._parse(MedicalRecord, data)

    # ------------------------------------------------------------------
    # Doctors and services
    # ------------------------------------------------------------------

    def list_doctors(self, page: int = 1, search: str = "") -> Page[Doctor]:
        data = self._request("GET", "/doctores/index/", params=_page_params(page, search))
        return self._parse(Page[Doctor], data)

    def list_all_doctors(self) -> List[Doctor]:
        return self._parse_list(Doctor, self._request("GET", "/doctores/index2/"))

    def list_aranceles(self, tipo: str, page: int = 1, search: str = "") -> Page[Arancel]:
        _check_service_type(tipo)
        params = {"tipo": tipo, **_page_params(page, search)}
        data = self._request("GET", "/procedimientos/aranceles/", params=params)
        return self._parse(Page[Arancel], data)

    def list_all_aranceles(self, tipo: Optional[str] = None) -> List[Arancel]:
        """Unpaginated catalog; without tipo, every service of both types."""
        if tipo:
            _check_service_type(tipo)
        params = {"tipo": tipo} if tipo else None
        data = self._request("GET", "/procedimientos/aranceles/all/", params=params)
        return self._parse_list(Arancel, data)

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def list_appointments(
        self,
        page: int = 1,
        search: str = "",
        estado: Optional[str] = None,
        estado_pago: Optional[bool] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Page[Appointment]:
        params = _page_params(page, search)
        if estado:
            params["estado"] = estado
        if estado_pago is not None:
            params["estado_pago"] = "True" if estado_pago else "False"
        if extra:
            params.update(extra)
        data = self._request("GET", "/citas/", params=params)
        return self._parse(Page[Appointment], data)

    def list_pending_appointments(self, patient_name: str) -> Page[Appointment]:
        """Unpaid Pendiente appointments matching a patient name search."""
        return self.list_appointments(
            search=patient_name,
            estado=AppointmentStatus.PENDIENTE.value,
            estado_pago=False
        )

    def list_completed_appointments(
        self,
        page: int = 1,
        fecha_inicio: Optional[date] = None,
        fecha_fin: Optional[date] = None,
        doctor_especialidad: Optional[int] = None
    ) -> Page[Appointment]:
        """Completada and paid appointments for the report view."""
        extra: Dict[str, Any] = {"page": page, **date_range_params(fecha_inicio, fecha_fin)}
        if doctor_especialidad:
            extra["doctor_especialidad"] = doctor_especialidad
        return self.list_appointments(
            estado=AppointmentStatus.COMPLETADA.value,
            estado_pago=True,
            extra=extra
        )

    def create_appointment(self, payload: Dict[str, Any]) -> Appointment:
        return self._parse(Appointment, self._request("POST", "/citas/crear/", json=payload))

    def update_appointment(self, appointment_id: int, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """PATCH selected fields. Returns the raw body (may be partial or empty)."""
        return self._request("PATCH", f"/citas/editar/{appointment_id}/", json=payload)

    def mark_appointment_paid(self, appointment_id: int) -> Optional[Dict[str, Any]]:
        return self.update_appointment(
            appointment_id,
            {"estado_pago": True, "estado": AppointmentStatus.COMPLETADA.value}
        )

    def delete_appointment(self, appointment_id: int) -> None:
        self._request("DELETE", f"/citas/eliminar/{appointment_id}/")

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        id_paciente: int,
        fecha: date,
        total: Decimal,
        arancel_ids: List[int]
    ) -> Optional[Invoice]:
        """
        Persist one invoice. Returns the parsed invoice when the backend echoes
        it, None when it answers with an empty or partial body.
        """
        payload = {
            "id_paciente": id_paciente,
            "fecha": fecha.isoformat(),
            "total": str(total),
            "detalles": [{"id_arancel": arancel_id} for arancel_id in arancel_ids],
        }
        data = self._request("POST", "/procedimientos/facturas/crear/", json=payload)
        if isinstance(data, dict) and "id" in data:
            return self._parse(Invoice, {"id_paciente": id_paciente, "fecha": fecha, "total": total, **data})
        return None

    def list_invoices(
        self,
        page: int = 1,
        fecha_inicio: Optional[date] = None,
        fecha_fin: Optional[date] = None
    ) -> Page[Invoice]:
        params = {"page": page, **date_range_params(fecha_inicio, fecha_fin)}
        data = self._request("GET", "/procedimientos/facturas/", params=params)
        return self._parse(Page[Invoice], data)
