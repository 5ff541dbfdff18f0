"""Tests for the billing aggregator."""
import asyncio
import threading
from datetime import date
from decimal import Decimal
from unittest.mock import call

import pytest

from clinica.billing import BillingAggregator, InvoiceResult
from clinica.exceptions import ApiError, BillingIncomplete, DuplicateLineItem, UnknownService
from clinica.models import Arancel, Invoice, Patient

TODAY = date(2025, 6, 10)


@pytest.fixture
def luis():
    return Patient(
        id=8,
        nombre="Luis Mejía",
        sexo="M",
        fecha_nacimiento=date(1985, 1, 2),
        identificacion="0801198500001",
        telefono="+504 3333-4444"
    )


@pytest.fixture
def billing(gateway, consulta_general, rayos_x):
    aggregator = BillingAggregator(gateway, today=lambda: TODAY, success_display_seconds=0)
    aggregator.catalog = {consulta_general.id: consulta_general, rayos_x.id: rayos_x}
    return aggregator


@pytest.fixture
def pending_rayos_x(make_appointment, make_page):
    """Ana's one unpaid Pendiente appointment for Rayos X."""
    return make_page([make_appointment(50, arancel=21, arancel_descripcion="Rayos X")])


def _invoice(invoice_id, total):
    return Invoice(id=invoice_id, id_paciente=7, fecha=TODAY, total=total)


class TestCatalog:

    @pytest.mark.asyncio
    async def test_load_catalog(self, gateway, consulta_general, rayos_x):
        gateway.list_all_aranceles.return_value = [consulta_general, rayos_x]
        aggregator = BillingAggregator(gateway, today=lambda: TODAY)

        await aggregator.load_catalog()

        gateway.list_all_aranceles.assert_called_once_with()
        assert set(aggregator.catalog) == {11, 21}


class TestPatientSelection:
    """Pending appointments are pulled into the cart."""

    @pytest.mark.asyncio
    async def test_pending_appointment_added(self, billing, gateway, ana, pending_rayos_x):
        gateway.list_pending_appointments.return_value = pending_rayos_x

        added = await billing.select_patient(ana)

        gateway.list_pending_appointments.assert_called_once_with("Ana Ruiz")
        assert [line.line_id for line in added] == ["pending-50"]
        assert added[0].from_pending
        assert added[0].arancel.descripcion == "Rayos X"
        assert billing.total == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_reselecting_same_patient_is_idempotent(self, billing, gateway, ana, pending_rayos_x):
        gateway.list_pending_appointments.return_value = pending_rayos_x

        for _ in range(3):
            await billing.select_patient(ana)

        assert [line.line_id for line in billing.lines] == ["pending-50"]
        assert billing.total == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_dedup_by_service_not_appointment(self, billing, gateway, ana, make_appointment, make_page):
        gateway.list_pending_appointments.return_value = make_page([
            make_appointment(50, arancel=21),
            make_appointment(51, arancel=21),
        ])

        await billing.select_patient(ana)

        assert len(billing.lines) == 1
        assert len(billing.pending_appointments) == 2

    @pytest.mark.asyncio
    async def test_other_patients_with_similar_name_ignored(
        self, billing, gateway, ana, make_appointment, make_page
    ):
        gateway.list_pending_appointments.return_value = make_page([
            make_appointment(60, paciente=8, paciente_nombre="Ana Ruiz Mejía", arancel=21),
        ])

        await billing.select_patient(ana)

        assert billing.lines == []
        assert billing.pending_appointments == []

    @pytest.mark.asyncio
    async def test_unknown_service_skipped(self, billing, gateway, ana, make_appointment, make_page):
        gateway.list_pending_appointments.return_value = make_page([make_appointment(50, arancel=999)])

        assert await billing.select_patient(ana) == []
        assert billing.lines == []

    @pytest.mark.asyncio
    async def test_switching_patient_clears_cart(self, billing, gateway, ana, luis, make_page):
        gateway.list_pending_appointments.return_value = make_page([])
        await billing.select_patient(ana)
        billing.add_service(11)

        await billing.select_patient(luis)

        assert billing.lines == []
        assert billing.patient == luis

    @pytest.mark.asyncio
    async def test_pending_query_failure_leaves_no_pending(self, billing, gateway, ana):
        gateway.list_pending_appointments.side_effect = ApiError("Error 500: Internal Server Error", 500)

        assert await billing.select_patient(ana) == []
        assert billing.pending_appointments == []
        assert billing.patient == ana

    @pytest.mark.asyncio
    async def test_late_response_for_previous_patient_discarded(
        self, billing, gateway, ana, luis, pending_rayos_x, make_page
    ):
        release_ana = threading.Event()

        def list_pending(nombre):
            if nombre == "Ana Ruiz":
                release_ana.wait(2)
                return pending_rayos_x
            return make_page([])

        gateway.list_pending_appointments.side_effect = list_pending

        first = asyncio.create_task(billing.select_patient(ana))
        await asyncio.sleep(0.02)
        await billing.select_patient(luis)
        release_ana.set()

        assert await first == []
        assert billing.patient == luis
        assert billing.lines == []
        assert billing.pending_appointments == []

    @pytest.mark.asyncio
    async def test_late_response_after_clearing_patient_discarded(self, billing, gateway, ana, pending_rayos_x):
        release = threading.Event()

        def list_pending(nombre):
            release.wait(2)
            return pending_rayos_x

        gateway.list_pending_appointments.side_effect = list_pending

        pending = asyncio.create_task(billing.select_patient(ana))
        await asyncio.sleep(0.02)
        billing.clear_patient()
        release.set()

        assert await pending == []
        assert billing.patient is None
        assert billing.lines == []


class TestCart:
    """Manual lines and totals."""

    def test_add_and_total(self, billing):
        billing.add_service(11)
        billing.add_service(21)
        assert billing.total == Decimal("750.00")

    def test_duplicate_rejected(self, billing):
        billing.add_service(21)
        with pytest.raises(DuplicateLineItem) as exc_info:
            billing.add_service(21)
        assert str(exc_info.value) == "Este examen ya está agregado"

    def test_unknown_service_rejected(self, billing):
        with pytest.raises(UnknownService):
            billing.add_service(404)

    def test_remove_line_recomputes_total(self, billing):
        line = billing.add_service(11)
        billing.add_service(21)

        assert billing.remove_line(line.line_id) is True
        assert billing.total == Decimal("450.00")
        assert billing.remove_line("missing") is False

    def test_empty_cart_total(self, billing):
        assert billing.total == Decimal("0")


class TestSubmit:
    """Invoice persistence and reconciliation saga."""

    @pytest.mark.asyncio
    async def test_rayos_x_scenario(self, billing, gateway, ana, pending_rayos_x):
        """Pending Rayos X: auto-added, manual duplicate rejected, invoiced and reconciled."""
        gateway.list_pending_appointments.return_value = pending_rayos_x
        gateway.create_invoice.return_value = _invoice(90, Decimal("450.00"))

        await billing.select_patient(ana)
        with pytest.raises(DuplicateLineItem):
            billing.add_service(21)

        result = await billing.submit(TODAY)

        gateway.create_invoice.assert_called_once_with(7, TODAY, Decimal("450.00"), [21])
        gateway.mark_appointment_paid.assert_called_once_with(50)
        assert result == InvoiceResult(invoice_id=90, total=Decimal("450.00"), reconciled=[50], failed=[])
        assert result.fully_reconciled
        assert billing.show_success

        await billing.wait_idle()
        assert billing.patient is None
        assert billing.lines == []
        assert billing.pending_appointments == []
        assert billing.fecha == TODAY
        assert not billing.show_success

    @pytest.mark.asyncio
    async def test_invoice_is_sent_before_reconciliation(self, billing, gateway, ana, pending_rayos_x):
        gateway.list_pending_appointments.return_value = pending_rayos_x
        gateway.create_invoice.return_value = _invoice(90, Decimal("450.00"))
        await billing.select_patient(ana)

        await billing.submit(TODAY)

        names = [c[0] for c in gateway.method_calls]
        assert names.index("create_invoice") < names.index("mark_appointment_paid")

    @pytest.mark.asyncio
    async def test_partial_reconciliation_failure(self, billing, gateway, ana, make_appointment, make_page):
        gateway.list_pending_appointments.return_value = make_page([
            make_appointment(50, arancel=21),
            make_appointment(51, arancel=11),
        ])
        gateway.create_invoice.return_value = _invoice(91, Decimal("750.00"))
        gateway.mark_appointment_paid.side_effect = [ApiError("Error 500: Internal Server Error", 500), None]
        await billing.select_patient(ana)

        result = await billing.submit(TODAY)

        assert gateway.mark_appointment_paid.call_args_list == [call(50), call(51)]
        assert result.reconciled == [51]
        assert result.failed == [50]
        assert not result.fully_reconciled
        assert [(s.step, s.target_id, s.ok) for s in billing.saga_log] == [
            ("create_invoice", 91, True),
            ("mark_paid", 50, False),
            ("mark_paid", 51, True),
        ]

    @pytest.mark.asyncio
    async def test_removed_pending_line_is_not_reconciled(self, billing, gateway, ana, pending_rayos_x):
        gateway.list_pending_appointments.return_value = pending_rayos_x
        gateway.create_invoice.return_value = _invoice(92, Decimal("300.00"))
        await billing.select_patient(ana)
        billing.remove_line("pending-50")
        billing.add_service(11)

        result = await billing.submit(TODAY)

        gateway.mark_appointment_paid.assert_not_called()
        assert result.reconciled == []

    @pytest.mark.asyncio
    async def test_failed_reselection_still_reconciles_pending_line(self, billing, gateway, ana, pending_rayos_x):
        gateway.list_pending_appointments.return_value = pending_rayos_x
        gateway.create_invoice.return_value = _invoice(93, Decimal("450.00"))
        await billing.select_patient(ana)

        gateway.list_pending_appointments.side_effect = ApiError("Error 500: Internal Server Error", 500)
        await billing.select_patient(ana)
        result = await billing.submit(TODAY)

        gateway.create_invoice.assert_called_once_with(7, TODAY, Decimal("450.00"), [21])
        gateway.mark_appointment_paid.assert_called_once_with(50)
        assert result.reconciled == [50]

    @pytest.mark.asyncio
    async def test_only_auto_included_appointment_reconciled(
        self, billing, gateway, ana, make_appointment, make_page
    ):
        gateway.list_pending_appointments.return_value = make_page([
            make_appointment(50, arancel=21),
            make_appointment(51, arancel=21),
        ])
        gateway.create_invoice.return_value = _invoice(94, Decimal("450.00"))
        await billing.select_patient(ana)

        result = await billing.submit(TODAY)

        gateway.mark_appointment_paid.assert_called_once_with(50)
        assert result.reconciled == [50]

    @pytest.mark.parametrize("pending_ids,manual_ids,expected", [
        ([21], [], "450.00"),
        ([21], [11], "750.00"),
        ([11, 21], [31], "1362.35"),
        ([], [11, 31], "912.35"),
        ([31], [11, 21], "1362.35"),
    ])
    @pytest.mark.asyncio
    async def test_invoice_total_is_sum_of_lines(
        self, billing, gateway, ana, make_appointment, make_page, pending_ids, manual_ids, expected
    ):
        billing.catalog[31] = Arancel(id=31, descripcion="Ultrasonido", precio=Decimal("612.35"), tipo="p")
        gateway.list_pending_appointments.return_value = make_page([
            make_appointment(50 + i, arancel=arancel_id) for i, arancel_id in enumerate(pending_ids)
        ])
        gateway.create_invoice.return_value = None
        await billing.select_patient(ana)
        for arancel_id in manual_ids:
            billing.add_service(arancel_id)

        await billing.submit(TODAY)

        _, _, total, service_ids = gateway.create_invoice.call_args.args
        assert sorted(service_ids) == sorted(pending_ids + manual_ids)
        assert total == sum((billing.catalog[i].precio for i in service_ids), Decimal("0"))
        assert total == Decimal(expected)

    @pytest.mark.asyncio
    async def test_invoice_failure_keeps_cart(self, billing, gateway, ana, pending_rayos_x):
        gateway.list_pending_appointments.return_value = pending_rayos_x
        gateway.create_invoice.side_effect = ApiError("Error 500: Internal Server Error", 500)
        await billing.select_patient(ana)

        with pytest.raises(ApiError):
            await billing.submit(TODAY)

        gateway.mark_appointment_paid.assert_not_called()
        assert billing.error == "Error 500: Internal Server Error"
        assert billing.patient == ana
        assert [line.line_id for line in billing.lines] == ["pending-50"]
        assert not billing.show_success
        assert not billing.submitting

    @pytest.mark.asyncio
    async def test_invoice_without_echoed_id(self, billing, gateway, ana, make_page):
        gateway.list_pending_appointments.return_value = make_page([])
        gateway.create_invoice.return_value = None
        await billing.select_patient(ana)
        billing.add_service(11)

        result = await billing.submit(TODAY)

        assert result.invoice_id is None
        assert result.total == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_requires_patient(self, billing, gateway):
        with pytest.raises(BillingIncomplete) as exc_info:
            await billing.submit(TODAY)
        assert str(exc_info.value) == "Por favor, selecciona un paciente"
        gateway.create_invoice.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_lines(self, billing, gateway, ana, make_page):
        gateway.list_pending_appointments.return_value = make_page([])
        await billing.select_patient(ana)

        with pytest.raises(BillingIncomplete) as exc_info:
            await billing.submit(TODAY)
        assert str(exc_info.value) == "Por favor, agrega al menos un examen"

    @pytest.mark.asyncio
    async def test_requires_date(self, billing, gateway, ana, make_page):
        gateway.list_pending_appointments.return_value = make_page([])
        await billing.select_patient(ana)
        billing.add_service(11)
        billing.fecha = None

        with pytest.raises(BillingIncomplete):
            await billing.submit()


class TestSuccessDisplay:
    """The post-success clear never wipes a newer draft."""

    @pytest.fixture
    def slow_clear(self, gateway, consulta_general, rayos_x, pending_rayos_x):
        aggregator = BillingAggregator(gateway, today=lambda: TODAY, success_display_seconds=5)
        aggregator.catalog = {consulta_general.id: consulta_general, rayos_x.id: rayos_x}
        gateway.list_pending_appointments.return_value = pending_rayos_x
        gateway.create_invoice.return_value = _invoice(90, Decimal("450.00"))
        return aggregator

    @pytest.mark.asyncio
    async def test_new_selection_during_display_survives(self, slow_clear, gateway, ana, luis, make_page):
        await slow_clear.select_patient(ana)
        await slow_clear.submit(TODAY)
        assert slow_clear.show_success

        gateway.list_pending_appointments.return_value = make_page([])
        await slow_clear.select_patient(luis)
        slow_clear.add_service(11)
        await slow_clear.wait_idle()

        assert not slow_clear.show_success
        assert slow_clear.patient == luis
        assert [line.arancel.id for line in slow_clear.lines] == [11]

    @pytest.mark.asyncio
    async def test_resubmit_during_display_does_not_invoice_twice(self, slow_clear, gateway, ana):
        await slow_clear.select_patient(ana)
        await slow_clear.submit(TODAY)

        with pytest.raises(BillingIncomplete):
            await slow_clear.submit(TODAY)

        gateway.create_invoice.assert_called_once()
        assert slow_clear.patient is None
        assert slow_clear.lines == []

    @pytest.mark.asyncio
    async def test_reselecting_billed_patient_starts_fresh_cart(self, slow_clear, gateway, ana, make_page):
        await slow_clear.select_patient(ana)
        await slow_clear.submit(TODAY)

        gateway.list_pending_appointments.return_value = make_page([])
        await slow_clear.select_patient(ana)

        assert slow_clear.patient == ana
        assert slow_clear.lines == []
