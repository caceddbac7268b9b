"""Database models."""

from app.models.appointments import appointments
from app.models.base import metadata
from app.models.clinics import clinic_secretaries, clinics
from app.models.doctors import doctors
from app.models.notifications import notifications
from app.models.patients import patients
from app.models.payments import payments
from app.models.teleconsultation_sessions import teleconsultation_sessions
from app.models.users import users

__all__ = [
    "appointments",
    "clinic_secretaries",
    "clinics",
    "doctors",
    "metadata",
    "notifications",
    "patients",
    "payments",
    "teleconsultation_sessions",
    "users",
]
