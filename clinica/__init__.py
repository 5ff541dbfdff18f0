"""Clinic management client: appointments, billing, patients and reports."""

__version__ = "1.0.0"
