"""Directory lookups: users, patients, doctors and clinic staff."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenException, NotFoundException
from app.models.clinics import clinic_secretaries
from app.models.doctors import doctors
from app.models.patients import patients
from app.models.users import users

STAFF_ROLES = frozenset({"secretary", "doctor", "admin"})


class UserService:
    """Read-only access to the directory tables."""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: UUID) -> dict | None:
        """Get user by internal ID."""
        result = await db.execute(select(users).where(users.c.id == user_id))
        user = result.mappings().first()
        return dict(user) if user else None

    @staticmethod
    async def get_patient(db: AsyncSession, patient_id: UUID) -> dict | None:
        """Get a patient record by ID."""
        result = await db.execute(select(patients).where(patients.c.id == patient_id))
        patient = result.mappings().first()
        return dict(patient) if patient else None

    @staticmethod
    async def get_patient_for_user(db: AsyncSession, user_id: UUID) -> dict | None:
        """Get the patient record of a user account."""
        result = await db.execute(select(patients).where(patients.c.user_id == user_id))
        patient = result.mappings().first()
        return dict(patient) if patient else None

    @staticmethod
    async def get_doctor(db: AsyncSession, doctor_id: UUID) -> dict | None:
        """Get a doctor record by ID."""
        result = await db.execute(select(doctors).where(doctors.c.id == doctor_id))
        doctor = result.mappings().first()
        return dict(doctor) if doctor else None

    @staticmethod
    async def get_active_secretary_user_ids(db: AsyncSession, clinic_id: UUID) -> list[UUID]:
        """User IDs of the active secretaries of a clinic."""
        result = await db.execute(
            select(clinic_secretaries.c.secretary_id)
            .where(
                clinic_secretaries.c.clinic_id == clinic_id,
                clinic_secretaries.c.is_active.is_(True),
            )
            .order_by(clinic_secretaries.c.created_at, clinic_secretaries.c.secretary_id)
        )
        return [row.secretary_id for row in result]

    @staticmethod
    def is_staff(user: dict) -> bool:
        """Whether the user may act on other people's appointments."""
        return user.get("role") in STAFF_ROLES

    @classmethod
    async def resolve_patient(
        cls,
        db: AsyncSession,
        user: dict,
        patient_id: UUID | None = None,
    ) -> dict:
        """
        Resolve the patient a request acts for.

        Patients may only act for themselves; staff may name any patient.

        Args:
            db: Database session
            user: Authenticated user
            patient_id: Patient named in the request, if any

        Returns:
            Patient record

        Raises:
            NotFoundException: If no matching patient exists
            ForbiddenException: If a patient names someone else
        """
        if patient_id is None:
            patient = await cls.get_patient_for_user(db, user["id"])
            if not patient:
                raise NotFoundException("Patient profile not found")
            return patient

        patient = await cls.get_patient(db, patient_id)
        if not patient:
            raise NotFoundException("Patient not found")

        if patient["user_id"] != user["id"] and not cls.is_staff(user):
            raise ForbiddenException("Cannot act for another patient")

        return patient
