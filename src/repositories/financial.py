"""
Financial Repositories
Invoices and orders.
"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository, Session
from . import filters
from ..models.entities import Invoice, Order


class InvoiceRepository(BaseRepository[Invoice]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "invoices", Invoice)

    async def get_by_ghl_id(
        self,
        ghl_invoice_id: str,
        location_id: str,
        session: Session = None
    ) -> Optional[Invoice]:
        return await self.find_one(filters.invoice(ghl_invoice_id, location_id), session=session)


class OrderRepository(BaseRepository[Order]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "orders", Order)
