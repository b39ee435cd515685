"""
Clinic Booking

A FastAPI-based appointment scheduling core for a medical clinic: weekly
doctor schedules, slot availability, double-booking prevention and an
audited appointment lifecycle.
"""

__version__ = "1.0.0"
