"""Client assembly.

Wires storage, session, gateway and the workflows together the way a UI
shell would at startup: configure logging, restore any saved session, then
hand the same gateway to every view.
"""
from typing import Optional

from clinica import config
from clinica.appointments import AppointmentWorkflow
from clinica.billing import BillingAggregator
from clinica.gateway import ClinicGateway
from clinica.logging_config import get_logger, setup_structured_logging
from clinica.patients import PatientRegistry
from clinica.reports import AppointmentReport, InvoiceReport
from clinica.session import SessionContext
from clinica.storage import ClientStorage

logger = get_logger(__name__)


class ClinicClient:
    """One authenticated client and its views."""

    def __init__(self, gateway: ClinicGateway):
        self.gateway = gateway
        self.appointments = AppointmentWorkflow(gateway)
        self.billing = BillingAggregator(gateway)
        self.patients = PatientRegistry(gateway)
        self.appointment_report = AppointmentReport(gateway)
        self.invoice_report = InvoiceReport(gateway)

    @property
    def session(self) -> SessionContext:
        return self.gateway.session

    def login(self, usuario: str, contrasena: str):
        return self.gateway.login(usuario, contrasena)

    def logout(self) -> None:
        self.gateway.logout()


def create_client(
    database_url: Optional[str] = None,
    base_url: Optional[str] = None,
    configure_logging: bool = True
) -> ClinicClient:
    """
    Build a client from configuration and restore the saved session.

    Args:
        database_url: Client-state store (default: config.SESSION_DB_URL)
        base_url: Backend API root (default: config.API_BASE_URL)
        configure_logging: Install the structlog configuration

    Returns:
        ClinicClient, authenticated if a valid session was saved
    """
    if configure_logging:
        setup_structured_logging(config.LOG_LEVEL)

    storage = ClientStorage(database_url or config.SESSION_DB_URL)
    session = SessionContext(storage)
    restored = session.hydrate()

    gateway = ClinicGateway(session, base_url=base_url or config.API_BASE_URL)
    logger.info("client_started", base_url=gateway.base_url, session_restored=restored)
    return ClinicClient(gateway)
