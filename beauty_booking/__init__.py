"""Booking lifecycle and realtime booking lists for a beauty services marketplace."""

__version__ = "0.1.0"
