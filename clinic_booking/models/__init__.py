# Importing every model registers it on Base.metadata and lets string
# relationship targets resolve.
from .user import User
from .patient import Patient
from .doctor import Doctor
from .schedule import WeeklySchedule
from .appointment import Appointment, AppointmentHistory, AppointmentStatus, HistoryEventType

__all__ = [
    "User", "Patient", "Doctor", "WeeklySchedule",
    "Appointment", "AppointmentHistory", "AppointmentStatus", "HistoryEventType",
]
