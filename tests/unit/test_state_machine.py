"""Tests for appointment status rules."""
import pytest

from clinica.state import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    AppointmentStatus,
    is_override,
    is_valid_transition,
    parse_status,
)


class TestStatusRules:
    """Test the Pendiente/Completada/Cancelada lifecycle."""

    def test_initial_status_is_pendiente(self):
        assert INITIAL_STATUS == AppointmentStatus.PENDIENTE
        assert INITIAL_STATUS.value == "Pendiente"

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert VALID_TRANSITIONS[status] == []

    @pytest.mark.parametrize("current,new,expected", [
        ("Pendiente", "Completada", True),
        ("Pendiente", "Cancelada", True),
        ("Pendiente", "Pendiente", True),
        ("Completada", "Pendiente", False),
        ("Cancelada", "Completada", False),
        ("Completada", "Completada", True),
        ("Pendiente", "Archivada", False),
        ("Reprogramada", "Pendiente", True),
    ])
    def test_is_valid_transition(self, current, new, expected):
        assert is_valid_transition(current, new) is expected

    def test_parse_status_rejects_unknown(self):
        with pytest.raises(ValueError):
            parse_status("Archivada")

    def test_enum_compares_with_wire_value(self):
        assert AppointmentStatus.COMPLETADA == "Completada"

    def test_is_override(self):
        assert is_override("Cancelada", "Pendiente")
        assert not is_override("Cancelada", "Cancelada")
        assert not is_override("Pendiente", "Cancelada")
        assert not is_override("Reprogramada", "Pendiente")
