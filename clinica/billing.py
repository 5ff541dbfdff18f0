"""Billing aggregator.

Purpose: Build one patient's draft invoice from a cart of services,
auto-including the patient's unpaid pending appointments, then persist the
invoice and reconcile those appointments.

Pattern: Saga without compensation.
1. POST the invoice (awaited, never retried or reversed)
2. PATCH each reconciled appointment to paid/Completada, one at a time
3. Record every step in saga_log and return InvoiceResult

A failed reconciliation step is logged and recorded; it never aborts the
remaining steps or the invoice.
"""
import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set

from clinica import config
from clinica.exceptions import (
    ActionInProgress,
    ApiError,
    BillingIncomplete,
    DuplicateLineItem,
    UnknownService,
)
from clinica.debounce import RequestSequencer
from clinica.gateway import ClinicGateway
from clinica.logging_config import get_logger
from clinica.models import Appointment, Arancel, Patient

logger = get_logger(__name__)

PENDING_LINE_PREFIX = "pending-"


@dataclass
class CartLine:
    """One billed service; pending lines carry the source appointment id."""
    line_id: str
    arancel: Arancel
    appointment_id: Optional[int] = None

    @property
    def from_pending(self) -> bool:
        return self.appointment_id is not None

    @property
    def precio(self) -> Decimal:
        return self.arancel.precio


@dataclass
class SagaStep:
    step: str
    target_id: Optional[int]
    ok: bool
    error: Optional[str] = None


@dataclass
class InvoiceResult:
    """Outcome of submit(): the invoice plus per-appointment reconciliation."""
    invoice_id: Optional[int]
    total: Decimal
    reconciled: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def fully_reconciled(self) -> bool:
        return not self.failed


class BillingAggregator:
    """Draft invoice for one patient."""

    def __init__(
        self,
        gateway: ClinicGateway,
        today: Callable[[], date] = date.today,
        success_display_seconds: float = config.SUCCESS_DISPLAY_SECONDS
    ):
        self.gateway = gateway
        self.today = today
        self.success_display_seconds = success_display_seconds

        self.catalog: Dict[int, Arancel] = {}
        self.patient: Optional[Patient] = None
        self.fecha: Optional[date] = today()
        self.lines: List[CartLine] = []
        self.pending_appointments: List[Appointment] = []

        self.error: Optional[str] = None
        self.show_success = False
        self.submitting = False
        self.saga_log: List[SagaStep] = []

        self._line_ids = itertools.count(1)
        self._selections = RequestSequencer()
        self._clear_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Catalog and patient
    # ------------------------------------------------------------------

    async def load_catalog(self) -> List[Arancel]:
        """Load every service of both types; pending lines resolve against it."""
        aranceles = await asyncio.to_thread(self.gateway.list_all_aranceles)
        self.catalog = {a.id: a for a in aranceles}
        logger.info("billing_catalog_loaded", services=len(self.catalog))
        return aranceles

    async def select_patient(self, patient: Patient) -> List[CartLine]:
        """
        Select the patient to bill and pull in their pending appointments.

        Switching to a different patient starts an empty cart. Selecting the
        same patient again keeps the cart; lines are deduplicated by service
        id, so repeated selection never adds a line twice. A response that
        arrives after a newer selection is discarded.

        Returns:
            Lines added from pending appointments by this call
        """
        self._flush_scheduled_clear()
        if self.patient is None or self.patient.id != patient.id:
            self._reset_cart()
        self.patient = patient
        ticket = self._selections.next()

        try:
            page = await asyncio.to_thread(self.gateway.list_pending_appointments, patient.nombre)
        except ApiError as e:
            logger.error("pending_appointments_failed", paciente=patient.id, error=e.message)
            return []

        if not self._selections.is_current(ticket) or self.patient is None or self.patient.id != patient.id:
            logger.info("pending_appointments_discarded", paciente=patient.id)
            return []

        # The backend searches by name; keep only this patient's appointments
        self.pending_appointments = [a for a in page.results if a.paciente == patient.id]

        added = []
        for appointment in self.pending_appointments:
            arancel = self.catalog.get(appointment.arancel)
            if arancel is None:
                logger.warning(
                    "pending_service_not_in_catalog",
                    appointment_id=appointment.id,
                    arancel=appointment.arancel
                )
                continue
            if arancel.id in self.billed_service_ids:
                continue
            line = CartLine(
                line_id=f"{PENDING_LINE_PREFIX}{appointment.id}",
                arancel=arancel,
                appointment_id=appointment.id
            )
            self.lines.append(line)
            added.append(line)

        logger.info(
            "pending_appointments_included",
            paciente=patient.id,
            pending=len(self.pending_appointments),
            added=len(added)
        )
        return added

    def clear_patient(self) -> None:
        """Patient search cleared: drop selection and cart."""
        self._selections.next()
        self.patient = None
        self._reset_cart()

    def _reset_cart(self) -> None:
        self.lines = []
        self.pending_appointments = []
        self.error = None

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    @property
    def billed_service_ids(self) -> Set[int]:
        return {line.arancel.id for line in self.lines}

    @property
    def total(self) -> Decimal:
        """Sum of the present lines, recomputed on every read."""
        return sum((line.precio for line in self.lines), Decimal("0"))

    def add_service(self, arancel_id: int) -> CartLine:
        """
        Add a manual line.

        Raises:
            UnknownService: Id not in the loaded catalog
            DuplicateLineItem: Service already billed
        """
        arancel = self.catalog.get(arancel_id)
        if arancel is None:
            raise UnknownService(arancel_id)
        if arancel_id in self.billed_service_ids:
            raise DuplicateLineItem(arancel_id)

        line = CartLine(line_id=f"manual-{next(self._line_ids)}", arancel=arancel)
        self.lines.append(line)
        return line

    def remove_line(self, line_id: str) -> bool:
        before = len(self.lines)
        self.lines = [line for line in self.lines if line.line_id != line_id]
        return len(self.lines) != before

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _check_complete(self) -> None:
        if self.patient is None:
            raise BillingIncomplete("Por favor, selecciona un paciente")
        if self.fecha is None:
            raise BillingIncomplete("Por favor, selecciona la fecha para los exámenes")
        if not self.lines:
            raise BillingIncomplete("Por favor, agrega al menos un examen")

    async def submit(self, fecha: Optional[date] = None) -> InvoiceResult:
        """
        Persist the invoice, then reconcile the included pending appointments.

        Only appointments whose auto-included line is still in the cart are
        marked paid/Completada.

        Args:
            fecha: Invoice date (default: the current draft date)

        Raises:
            BillingIncomplete: Missing patient, date or lines
            ApiError: Invoice creation failed; cart and patient are kept
            ActionInProgress: A submission is already in flight
        """
        if self.submitting:
            raise ActionInProgress("submit")
        self._flush_scheduled_clear()
        if fecha is not None:
            self.fecha = fecha
        self._check_complete()

        total = self.total
        service_ids = [line.arancel.id for line in self.lines]
        to_reconcile = [line.appointment_id for line in self.lines if line.from_pending]

        self.submitting = True
        self.error = None
        self.saga_log = []
        try:
            try:
                invoice = await asyncio.to_thread(
                    self.gateway.create_invoice,
                    self.patient.id,
                    self.fecha,
                    total,
                    service_ids
                )
            except ApiError as e:
                self.error = e.message
                self.saga_log.append(SagaStep("create_invoice", None, False, e.message))
                logger.error("invoice_create_failed", paciente=self.patient.id, error=e.message)
                raise

            invoice_id = invoice.id if invoice else None
            self.saga_log.append(SagaStep("create_invoice", invoice_id, True))
            logger.info(
                "invoice_created",
                invoice_id=invoice_id,
                paciente=self.patient.id,
                total=str(total),
                lines=len(service_ids)
            )

            result = InvoiceResult(invoice_id=invoice_id, total=total)
            for appointment_id in to_reconcile:
                await self._reconcile(appointment_id, result)
        finally:
            self.submitting = False

        if result.failed:
            logger.warning(
                "invoice_partially_reconciled",
                invoice_id=invoice_id,
                reconciled=result.reconciled,
                failed=result.failed
            )

        self.show_success = True
        self._clear_task = asyncio.create_task(self._clear_after_display())
        return result

    async def _reconcile(self, appointment_id: int, result: InvoiceResult) -> None:
        try:
            await asyncio.to_thread(self.gateway.mark_appointment_paid, appointment_id)
        except ApiError as e:
            logger.error("appointment_reconcile_failed", appointment_id=appointment_id, error=e.message)
            self.saga_log.append(SagaStep("mark_paid", appointment_id, False, e.message))
            result.failed.append(appointment_id)
            return
        self.saga_log.append(SagaStep("mark_paid", appointment_id, True))
        result.reconciled.append(appointment_id)

    def _flush_scheduled_clear(self) -> None:
        """Run a pending post-success clear now so it cannot wipe newer work."""
        if self._clear_task is None:
            return
        if not self._clear_task.done():
            self._clear_task.cancel()
            self.clear()
        self._clear_task = None

    async def _clear_after_display(self) -> None:
        await asyncio.sleep(self.success_display_seconds)
        self.clear()

    def clear(self) -> None:
        """Reset the whole form: patient, date, lines and pending state."""
        self.show_success = False
        self.patient = None
        self.fecha = self.today()
        self._reset_cart()

    async def wait_idle(self) -> None:
        """Wait for a scheduled post-success clear."""
        if self._clear_task is not None:
            await self._clear_task
            self._clear_task = None
