"""Reports over completed appointments and invoices.

Appointment revenue is priced with the appointment's own service from the
catalog. A service missing from the catalog contributes nothing and is
logged, so an incomplete catalog shows up in the logs rather than as a
made-up amount.
"""
import asyncio
import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from clinica import config
from clinica.exceptions import ApiError
from clinica.gateway import ClinicGateway
from clinica.logging_config import get_logger
from clinica.models import Appointment, Arancel, Doctor, Invoice

logger = get_logger(__name__)


@dataclass
class ReportSummary:
    total_registros: int
    total_ingresos: Decimal
    fecha_inicio: Optional[date] = None
    fecha_fin: Optional[date] = None


class _PagedReport:
    def __init__(self, gateway: ClinicGateway, page_size: int = config.REPORT_PAGE_SIZE):
        self.gateway = gateway
        self.page_size = page_size
        self.page = 1
        self.total_count = 0
        self.fecha_inicio: Optional[date] = None
        self.fecha_fin: Optional[date] = None
        self.error: Optional[str] = None

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_count / self.page_size))

    def _fail(self, event: str, error: ApiError) -> None:
        logger.error(event, page=self.page, error=error.message)
        self.error = error.message
        self.total_count = 0


class AppointmentReport(_PagedReport):
    """Completada and paid appointments, filterable by date and doctor."""

    def __init__(self, gateway: ClinicGateway, page_size: int = config.REPORT_PAGE_SIZE):
        super().__init__(gateway, page_size)
        self.citas: List[Appointment] = []
        self.doctors: List[Doctor] = []
        self.prices: Dict[int, Arancel] = {}
        self.doctor_id: Optional[int] = None

    async def load_filters(self) -> None:
        """Load the doctor dropdown and the price catalog."""
        self.doctors, aranceles = await asyncio.gather(
            asyncio.to_thread(self.gateway.list_all_doctors),
            asyncio.to_thread(self.gateway.list_all_aranceles),
        )
        self.prices = {a.id: a for a in aranceles}

    async def load(
        self,
        page: int = 1,
        fecha_inicio: Optional[date] = None,
        fecha_fin: Optional[date] = None,
        doctor_id: Optional[int] = None
    ) -> bool:
        self.page = page
        self.fecha_inicio, self.fecha_fin, self.doctor_id = fecha_inicio, fecha_fin, doctor_id
        try:
            data = await asyncio.to_thread(
                self.gateway.list_completed_appointments,
                page,
                fecha_inicio,
                fecha_fin,
                doctor_id
            )
        except ApiError as e:
            self.citas = []
            self._fail("appointment_report_failed", e)
            return False

        self.citas = data.results
        self.total_count = data.count
        self.error = None
        return True

    def doctor_name(self) -> str:
        if not self.doctor_id:
            return "Todos los doctores"
        for doctor in self.doctors:
            if doctor.id == self.doctor_id:
                return doctor.nombre
        return "Doctor no encontrado"

    def price_of(self, cita: Appointment) -> Decimal:
        arancel = self.prices.get(cita.arancel)
        if arancel is None:
            logger.warning("report_price_unresolved", appointment_id=cita.id, arancel=cita.arancel)
            return Decimal("0")
        return arancel.precio

    @property
    def summary(self) -> ReportSummary:
        """Revenue of the loaded page; count is the backend total."""
        return ReportSummary(
            total_registros=self.total_count,
            total_ingresos=sum((self.price_of(c) for c in self.citas), Decimal("0")),
            fecha_inicio=self.fecha_inicio,
            fecha_fin=self.fecha_fin,
        )


class InvoiceReport(_PagedReport):
    """Invoices, filterable by date."""

    def __init__(self, gateway: ClinicGateway, page_size: int = config.REPORT_PAGE_SIZE):
        super().__init__(gateway, page_size)
        self.facturas: List[Invoice] = []

    async def load(
        self,
        page: int = 1,
        fecha_inicio: Optional[date] = None,
        fecha_fin: Optional[date] = None
    ) -> bool:
        self.page = page
        self.fecha_inicio, self.fecha_fin = fecha_inicio, fecha_fin
        try:
            data = await asyncio.to_thread(self.gateway.list_invoices, page, fecha_inicio, fecha_fin)
        except ApiError as e:
            self.facturas = []
            self._fail("invoice_report_failed", e)
            return False

        self.facturas = data.results
        self.total_count = data.count
        self.error = None
        return True

    @property
    def summary(self) -> ReportSummary:
        return ReportSummary(
            total_registros=self.total_count,
            total_ingresos=sum((f.total for f in self.facturas), Decimal("0")),
            fecha_inicio=self.fecha_inicio,
            fecha_fin=self.fecha_fin,
        )
