"""Appointment list state.

Purpose: Hold the visible page of appointments between backend round-trips.

Pattern: Normalized store. Entities are keyed by id; the page is an ordered
list of ids. Mutations touch one entity (patch, remove) or one page (replace)
so a local edit never rewrites unrelated rows.
"""
import math
from typing import Dict, List, Optional

from clinica import config
from clinica.models import Appointment, Page


class AppointmentListState:
    """Visible appointment page with pagination and status flags."""

    def __init__(self, page_size: int = config.PAGE_SIZE):
        self.page_size = page_size
        self.entities: Dict[int, Appointment] = {}
        self.order: List[int] = []
        self.page = 1
        self.total = 0
        self.search = ""
        self.has_next = False
        self.has_previous = False
        self.loading = False
        self.error: Optional[str] = None

    @property
    def items(self) -> List[Appointment]:
        """Appointments of the visible page, in display order."""
        return [self.entities[i] for i in self.order if i in self.entities]

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    def get(self, appointment_id: int) -> Optional[Appointment]:
        return self.entities.get(appointment_id)

    def replace_page(self, page: int, data: Page[Appointment]) -> None:
        """Install a freshly loaded page."""
        self.page = page
        self.entities = {a.id: a for a in data.results}
        self.order = [a.id for a in data.results]
        self.total = data.count
        self.has_next = data.next is not None
        self.has_previous = data.previous is not None
        self.error = None

    def fail(self, message: str) -> None:
        """A list load failed: show nothing but the error."""
        self.entities = {}
        self.order = []
        self.has_next = False
        self.has_previous = False
        self.error = message

    def prepend(self, appointment: Appointment) -> None:
        """Add a created appointment at the top of the page and count it."""
        self.entities[appointment.id] = appointment
        if appointment.id in self.order:
            self.order.remove(appointment.id)
        self.order.insert(0, appointment.id)
        self.total += 1

    def patch(self, appointment_id: int, **fields) -> Optional[Appointment]:
        """
        Replace only the given fields of a stored appointment.

        Returns:
            Updated appointment, or None when the id is not on the page
        """
        current = self.entities.get(appointment_id)
        if current is None:
            return None
        updated = current.model_copy(update=fields)
        self.entities[appointment_id] = updated
        return updated

    def remove(self, appointment_id: int) -> bool:
        """Drop an appointment and decrement the total. Returns False if absent."""
        if appointment_id not in self.entities:
            return False
        del self.entities[appointment_id]
        self.order = [i for i in self.order if i != appointment_id]
        self.total = max(0, self.total - 1)
        return True
