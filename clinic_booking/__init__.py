"""
Clinic Booking Service

A FastAPI-based system for booking clinic appointments, with public doctor
listings, race-safe slot reservation, staff appointment management and
admin-managed staff accounts.
"""

__version__ = "1.0.0"
