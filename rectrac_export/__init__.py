"""Headless export of the RecTrac Facility Reservation report."""

__version__ = "0.1.0"
