"""Appointment workflow.

Purpose: Create, edit and delete appointments while keeping the visible,
paginated and searchable list consistent without a full reload after every
mutation.

Pattern: Async facade over the synchronous gateway. Network calls run in
worker threads (asyncio.to_thread); every state mutation happens back on the
event loop. List loads carry a sequence ticket and superseded responses are
dropped.
"""
import asyncio
from contextlib import contextmanager
from datetime import date
from typing import Callable, Optional, Set

from clinica import config
from clinica.debounce import Debouncer, RequestSequencer
from clinica.exceptions import ActionInProgress, ApiError
from clinica.gateway import ClinicGateway
from clinica.logging_config import get_logger
from clinica.models import Appointment
from clinica.schedule import build_local_timestamp, split_local_timestamp
from clinica.state import INITIAL_STATUS, is_override
from clinica.store import AppointmentListState
from clinica.validators import (
    AppointmentEditForm,
    AppointmentForm,
    ensure_valid,
    validate_appointment_edit,
    validate_appointment_form,
)

logger = get_logger(__name__)


class AppointmentWorkflow:
    """Appointment list plus create/update/delete operations."""

    def __init__(
        self,
        gateway: ClinicGateway,
        today: Callable[[], date] = date.today,
        debounce_seconds: float = config.SEARCH_DEBOUNCE_SECONDS,
        allow_override: bool = config.ALLOW_STATUS_OVERRIDE
    ):
        """
        Args:
            gateway: Backend access
            today: Local calendar date provider
            debounce_seconds: Quiet window for search input
            allow_override: Permit edits out of a terminal status
        """
        self.gateway = gateway
        self.today = today
        self.allow_override = allow_override
        self.state = AppointmentListState()
        self.search_text = ""

        self.delete_target: Optional[int] = None
        self.delete_error: Optional[str] = None
        self.deleting = False

        self._sequencer = RequestSequencer()
        self._search = Debouncer(debounce_seconds, self._apply_search)
        self._background: Set[asyncio.Task] = set()
        self._busy: Set[str] = set()

    @contextmanager
    def _action(self, name: str):
        """Per-action busy flag; a second submission is refused."""
        if name in self._busy:
            raise ActionInProgress(name)
        self._busy.add(name)
        try:
            yield
        finally:
            self._busy.discard(name)

    def is_busy(self, action: str) -> bool:
        return action in self._busy

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def load_page(self, page: Optional[int] = None) -> bool:
        """
        Load one page with the applied search.

        A failure clears the visible rows and leaves the message in
        state.error for a retry prompt.

        Returns:
            True if this response was applied
        """
        page = page or self.state.page
        search = self.state.search
        ticket = self._sequencer.next()
        self.state.loading = True

        try:
            data = await asyncio.to_thread(self.gateway.list_appointments, page, search)
        except ApiError as e:
            if not self._sequencer.is_current(ticket):
                return False
            logger.error("appointments_load_failed", page=page, search=search, error=e.message)
            self.state.loading = False
            self.state.fail(e.message)
            return False

        if not self._sequencer.is_current(ticket):
            return False
        self.state.loading = False
        self.state.replace_page(page, data)
        logger.debug("appointments_loaded", page=page, count=data.count)
        return True

    async def set_page(self, page: int) -> bool:
        """Move to another page keeping the applied search."""
        if page < 1:
            raise ValueError(f"Invalid page: {page}")
        return await self.load_page(page)

    def on_search_input(self, text: str) -> None:
        """Record a keystroke; the query runs after the debounce window."""
        self.search_text = text
        self._search.trigger(text)

    async def _apply_search(self, text: str) -> None:
        text = text.strip()
        if text == self.state.search:
            return
        self.state.search = text
        await self.load_page(1)

    async def wait_idle(self) -> None:
        """Wait for pending searches and background reloads."""
        await self._search.wait()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def create_appointment(self, form: AppointmentForm) -> Appointment:
        """
        Validate and create an appointment.

        On success the appointment is counted, shown at the top of page 1,
        and page 1 is reloaded in the background.

        Raises:
            FormValidationError: Invalid form; nothing was sent
            ApiError: Backend failure; form.errors['general'] is set
            ActionInProgress: A creation is already in flight
        """
        with self._action("create"):
            form.errors = validate_appointment_form(form, today=self.today())
            ensure_valid(form.errors)

            payload = {
                "paciente": form.paciente.id,
                "paciente_nombre": form.paciente.nombre,
                "doctor_especialidad": form.doctor.id,
                "doctor_nombre": form.doctor.nombre,
                "arancel": form.arancel.id,
                "arancel_descripcion": form.arancel.descripcion,
                "fecha_hora": build_local_timestamp(form.fecha, form.hora, form.periodo),
                "estado_pago": False,
                "estado": INITIAL_STATUS.value,
            }

            try:
                created = await asyncio.to_thread(self.gateway.create_appointment, payload)
            except ApiError as e:
                form.errors = {"general": e.message}
                raise

        logger.info(
            "appointment_created",
            appointment_id=created.id,
            paciente=created.paciente,
            fecha_hora=created.fecha_hora
        )
        if self.state.page == 1:
            self.state.prepend(created)
            self._spawn(self.load_page(1))
        else:
            self.state.total += 1
        return created

    def edit_form(self, appointment_id: int) -> AppointmentEditForm:
        """Prefill the edit form with the stored wall-clock date and time."""
        appointment = self.state.get(appointment_id)
        if appointment is None:
            raise KeyError(appointment_id)
        fecha, hora, periodo = split_local_timestamp(appointment.fecha_hora)
        return AppointmentEditForm(fecha=fecha, hora=hora, periodo=periodo, estado=appointment.estado)

    async def update_appointment(self, appointment_id: int, form: AppointmentEditForm) -> Optional[Appointment]:
        """
        Change date, time and status of an appointment.

        Only fecha_hora and estado are sent and patched locally; patient,
        doctor and service never change.

        Returns:
            The patched appointment, or None if it is no longer on the page
        """
        with self._action("update"):
            current = self.state.get(appointment_id)
            current_status = current.estado if current else form.estado

            form.errors = validate_appointment_edit(
                form,
                current_status,
                today=self.today(),
                allow_override=self.allow_override
            )
            ensure_valid(form.errors)

            fecha_hora = build_local_timestamp(form.fecha, form.hora, form.periodo)
            payload = {"fecha_hora": fecha_hora, "estado": form.estado}

            try:
                await asyncio.to_thread(self.gateway.update_appointment, appointment_id, payload)
            except ApiError as e:
                form.errors = {"general": e.message}
                raise

        if is_override(current_status, form.estado):
            logger.warning(
                "appointment_status_override",
                appointment_id=appointment_id,
                from_status=current_status,
                to_status=form.estado
            )
        logger.info("appointment_updated", appointment_id=appointment_id, **payload)
        return self.state.patch(appointment_id, **payload)

    # ------------------------------------------------------------------
    # Delete (confirmation flow)
    # ------------------------------------------------------------------

    def request_delete(self, appointment_id: int) -> None:
        """Open the confirmation for one appointment."""
        if self.deleting:
            raise ActionInProgress("delete")
        self.delete_target = appointment_id
        self.delete_error = None

    def close_delete(self) -> bool:
        """Dismiss the confirmation. Refused while the deletion is in flight."""
        if self.deleting:
            return False
        self.delete_target = None
        self.delete_error = None
        return True

    async def confirm_delete(self) -> None:
        """
        Delete the confirmed target.

        If the page empties and is not the first, step back one page;
        otherwise reload the current page.

        Raises:
            ApiError: Deletion failed; the row and the target are kept
        """
        if self.delete_target is None:
            raise ValueError("No appointment selected for deletion")
        if self.deleting:
            raise ActionInProgress("delete")

        appointment_id = self.delete_target
        self.deleting = True
        self.delete_error = None
        try:
            await asyncio.to_thread(self.gateway.delete_appointment, appointment_id)
        except ApiError as e:
            self.delete_error = e.message
            logger.error("appointment_delete_failed", appointment_id=appointment_id, error=e.message)
            raise
        finally:
            self.deleting = False

        self.delete_target = None
        self.state.remove(appointment_id)
        logger.info("appointment_deleted", appointment_id=appointment_id)

        if not self.state.order and self.state.page > 1:
            await self.load_page(self.state.page - 1)
        else:
            await self.load_page(self.state.page)
