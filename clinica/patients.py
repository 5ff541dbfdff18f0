"""Patient registry: list, search, CRUD and medical history."""
import asyncio
from datetime import date
from typing import Callable, List, Optional

from clinica import config
from clinica.debounce import Debouncer, RequestSequencer
from clinica.exceptions import ApiError
from clinica.gateway import ClinicGateway
from clinica.logging_config import get_logger
from clinica.models import MedicalRecord, Patient
from clinica.validators import (
    MedicalRecordForm,
    PatientForm,
    calculate_age,
    calculate_imc,
    ensure_valid,
    validate_medical_record_form,
    validate_patient_form,
)

logger = get_logger(__name__)


class PatientRegistry:
    """Paginated patient list with debounced search and write operations."""

    def __init__(
        self,
        gateway: ClinicGateway,
        today: Callable[[], date] = date.today,
        debounce_seconds: float = config.SEARCH_DEBOUNCE_SECONDS,
        country_code: str = config.PHONE_COUNTRY_CODE
    ):
        self.gateway = gateway
        self.today = today
        self.country_code = country_code

        self.patients: List[Patient] = []
        self.page = 1
        self.total = 0
        self.search = ""
        self.error: Optional[str] = None

        self._sequencer = RequestSequencer()
        self._search = Debouncer(debounce_seconds, self._apply_search)

    async def load_page(self, page: Optional[int] = None) -> bool:
        """Load a page of patients; a failure empties the list and sets error."""
        page = page or self.page
        ticket = self._sequencer.next()
        try:
            data = await asyncio.to_thread(self.gateway.list_patients, page, self.search)
        except ApiError as e:
            if self._sequencer.is_current(ticket):
                logger.error("patients_load_failed", page=page, error=e.message)
                self.patients = []
                self.error = e.message
            return False

        if not self._sequencer.is_current(ticket):
            return False
        self.page = page
        self.patients = data.results
        self.total = data.count
        self.error = None
        return True

    def on_search_input(self, text: str) -> None:
        self._search.trigger(text)

    async def _apply_search(self, text: str) -> None:
        text = text.strip()
        if text == self.search:
            return
        self.search = text
        await self.load_page(1)

    async def wait_idle(self) -> None:
        await self._search.wait()

    def _payload(self, form: PatientForm) -> dict:
        # edad always derives from the birth date at write time
        return {
            "nombre": form.nombre.strip(),
            "sexo": form.sexo,
            "fecha_nacimiento": form.fecha_nacimiento.isoformat(),
            "identificacion": form.identificacion.strip(),
            "edad": calculate_age(form.fecha_nacimiento, self.today()),
            "telefono": form.telefono.strip(),
        }

    def _validate(self, form: PatientForm) -> None:
        form.errors = validate_patient_form(form, today=self.today(), country_code=self.country_code)
        ensure_valid(form.errors)

    async def create_patient(self, form: PatientForm) -> Patient:
        """
        Validate and create a patient.

        Raises:
            FormValidationError: Invalid form
            ApiError: Backend failure; form.errors['general'] is set
        """
        self._validate(form)
        try:
            patient = await asyncio.to_thread(self.gateway.create_patient, self._payload(form))
        except ApiError as e:
            form.errors = {"general": e.message}
            raise

        self.patients.insert(0, patient)
        self.total += 1
        logger.info("patient_created", patient_id=patient.id)
        return patient

    async def update_patient(self, patient_id: int, form: PatientForm) -> Patient:
        self._validate(form)
        try:
            patient = await asyncio.to_thread(self.gateway.update_patient, patient_id, self._payload(form))
        except ApiError as e:
            form.errors = {"general": e.message}
            raise

        self.patients = [patient if p.id == patient_id else p for p in self.patients]
        logger.info("patient_updated", patient_id=patient_id)
        return patient

    async def delete_patient(self, patient_id: int) -> None:
        await asyncio.to_thread(self.gateway.delete_patient, patient_id)
        before = len(self.patients)
        self.patients = [p for p in self.patients if p.id != patient_id]
        if len(self.patients) != before:
            self.total = max(0, self.total - 1)
        logger.info("patient_deleted", patient_id=patient_id)

        if not self.patients and self.page > 1:
            await self.load_page(self.page - 1)

    async def medical_history(self, patient_id: int) -> List[MedicalRecord]:
        """Records of one patient, most recent first."""
        records = await asyncio.to_thread(self.gateway.get_medical_history, patient_id)
        return sorted(records, key=lambda r: r.fecha, reverse=True)

    async def add_medical_record(self, patient_id: int, form: MedicalRecordForm) -> MedicalRecord:
        """
        Validate and store a weight/height entry.

        IMC is computed here from weight and height; it is never taken as input.
        """
        form.errors = validate_medical_record_form(form, today=self.today())
        ensure_valid(form.errors)

        peso = float(form.peso)
        altura = float(form.altura)
        payload = {
            "paciente": patient_id,
            "fecha": form.fecha.isoformat(),
            "peso": peso,
            "altura": altura,
            "imc": calculate_imc(peso, altura),
        }
        try:
            record = await asyncio.to_thread(self.gateway.create_medical_record, payload)
        except ApiError as e:
            form.errors = {"general": e.message}
            raise
        logger.info("medical_record_created", patient_id=patient_id, imc=payload["imc"])
        return record
