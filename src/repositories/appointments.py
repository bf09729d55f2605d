"""
Appointment Repository
"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository, Session
from . import filters
from ..models.entities import Appointment


class AppointmentRepository(BaseRepository[Appointment]):
    """Appointments keyed by (ghlAppointmentId, locationId)."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "appointments", Appointment)

    async def get_by_ghl_id(
        self,
        ghl_appointment_id: str,
        location_id: str,
        session: Session = None
    ) -> Optional[Appointment]:
        return await self.find_one(filters.appointment(ghl_appointment_id, location_id), session=session)
