"""Tests for the appointment and invoice reports."""
from datetime import date
from decimal import Decimal

import pytest

from clinica.exceptions import ApiError
from clinica.models import Invoice
from clinica.reports import AppointmentReport, InvoiceReport


class TestAppointmentReport:

    @pytest.mark.asyncio
    async def test_filters_passed_to_gateway(self, gateway, make_page):
        gateway.list_completed_appointments.return_value = make_page([], count=0)
        report = AppointmentReport(gateway)

        await report.load(page=2, fecha_inicio=date(2025, 6, 1), fecha_fin=date(2025, 6, 30), doctor_id=3)

        gateway.list_completed_appointments.assert_called_once_with(
            2, date(2025, 6, 1), date(2025, 6, 30), 3
        )

    @pytest.mark.asyncio
    async def test_revenue_uses_service_prices(
        self, gateway, make_appointment, make_page, consulta_general, rayos_x, dr_perez
    ):
        gateway.list_all_doctors.return_value = [dr_perez]
        gateway.list_all_aranceles.return_value = [consulta_general, rayos_x]
        gateway.list_completed_appointments.return_value = make_page([
            make_appointment(1, arancel=11, estado="Completada", estado_pago=True),
            make_appointment(2, arancel=21, estado="Completada", estado_pago=True),
            make_appointment(3, arancel=999, estado="Completada", estado_pago=True),
        ], count=23)
        report = AppointmentReport(gateway)

        await report.load_filters()
        await report.load(fecha_inicio=date(2025, 6, 1))

        summary = report.summary
        assert summary.total_registros == 23
        assert summary.total_ingresos == Decimal("750.00")
        assert summary.fecha_inicio == date(2025, 6, 1)
        assert report.total_pages == 3

    @pytest.mark.asyncio
    async def test_doctor_name(self, gateway, make_page, dr_perez):
        gateway.list_all_doctors.return_value = [dr_perez]
        gateway.list_all_aranceles.return_value = []
        gateway.list_completed_appointments.return_value = make_page([])
        report = AppointmentReport(gateway)
        await report.load_filters()

        assert report.doctor_name() == "Todos los doctores"
        await report.load(doctor_id=3)
        assert report.doctor_name() == "Dr. Pérez"
        await report.load(doctor_id=42)
        assert report.doctor_name() == "Doctor no encontrado"

    @pytest.mark.asyncio
    async def test_load_failure(self, gateway):
        gateway.list_completed_appointments.side_effect = ApiError("Error 500: Internal Server Error", 500)
        report = AppointmentReport(gateway)

        assert await report.load() is False
        assert report.citas == []
        assert report.error == "Error 500: Internal Server Error"
        assert report.summary.total_ingresos == Decimal("0")


class TestInvoiceReport:

    @pytest.mark.asyncio
    async def test_summary_sums_invoice_totals(self, gateway, make_page):
        gateway.list_invoices.return_value = make_page([
            Invoice(id=1, id_paciente=7, fecha=date(2025, 6, 2), total=Decimal("450.00")),
            Invoice(id=2, id_paciente=8, fecha=date(2025, 6, 3), total=Decimal("300.50")),
        ], count=2)
        report = InvoiceReport(gateway)

        await report.load(fecha_inicio=date(2025, 6, 1), fecha_fin=date(2025, 6, 30))

        gateway.list_invoices.assert_called_once_with(1, date(2025, 6, 1), date(2025, 6, 30))
        assert report.summary.total_ingresos == Decimal("750.50")
        assert report.summary.total_registros == 2
        assert report.total_pages == 1

    @pytest.mark.asyncio
    async def test_load_failure(self, gateway):
        gateway.list_invoices.side_effect = ApiError("Error 500: Internal Server Error", 500)
        report = InvoiceReport(gateway)

        assert await report.load() is False
        assert report.facturas == []
        assert report.error is not None
