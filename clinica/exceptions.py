"""Error taxonomy for the clinic client.

Client-side errors never reach the network; ApiError and its subclasses are
the only errors produced by backend calls.
"""
from typing import Dict, Optional


class ApiError(Exception):
    """Raised for every failed backend call (transport or HTTP status)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


class NotAuthenticated(ApiError):
    """Raised when a gated call is attempted without an active session."""

    def __init__(self, message: str = "Sesión no iniciada"):
        super().__init__(message, status_code=401)


class BackendUnavailable(ApiError):
    """Raised when the circuit breaker is open (fail fast)."""
    pass


class FormValidationError(Exception):
    """
    Field-scoped validation failure.

    Attributes:
        errors: {field_name: message} for every invalid field
    """

    def __init__(self, errors: Dict[str, str]):
        super().__init__(", ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


class BillingIncomplete(Exception):
    """Raised when an invoice is submitted without patient, date or lines."""
    pass


class DuplicateLineItem(Exception):
    """Raised when a service already present in the cart is added again."""

    def __init__(self, arancel_id: int):
        super().__init__("Este examen ya está agregado")
        self.arancel_id = arancel_id


class UnknownService(Exception):
    """Raised when a service id is not in the loaded catalog."""

    def __init__(self, arancel_id: int):
        super().__init__(f"Servicio {arancel_id} no encontrado en el catálogo")
        self.arancel_id = arancel_id


class ActionInProgress(Exception):
    """Raised when an action is triggered again while its request is in flight."""

    def __init__(self, action: str):
        super().__init__(f"Action '{action}' is already in progress")
        self.action = action
