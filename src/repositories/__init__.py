"""
Repositories Layer
Data persistence and query operations for the webhook pipeline.
"""
from dataclasses import dataclass
from motor.motor_asyncio import AsyncIOMotorDatabase

from .connection import db_manager, get_database, create_indexes, DatabaseManager, TransactionRunner
from .base import BaseRepository, UpsertResult
from .contacts import ContactRepository, NoteRepository, TaskRepository
from .appointments import AppointmentRepository
from .projects import ProjectRepository
from .financial import InvoiceRepository, OrderRepository
from .conversations import ConversationRepository, MessageRepository
from .locations import LocationRepository, UserRepository
from .archive import EventArchive


@dataclass
class Repositories:
    """Every entity repository bound to one database."""
    contacts: ContactRepository
    notes: NoteRepository
    tasks: TaskRepository
    appointments: AppointmentRepository
    projects: ProjectRepository
    invoices: InvoiceRepository
    orders: OrderRepository
    conversations: ConversationRepository
    messages: MessageRepository
    locations: LocationRepository
    users: UserRepository
    archive: EventArchive

    @classmethod
    def build(cls, database: AsyncIOMotorDatabase) -> "Repositories":
        return cls(
            contacts=ContactRepository(database),
            notes=NoteRepository(database),
            tasks=TaskRepository(database),
            appointments=AppointmentRepository(database),
            projects=ProjectRepository(database),
            invoices=InvoiceRepository(database),
            orders=OrderRepository(database),
            conversations=ConversationRepository(database),
            messages=MessageRepository(database),
            locations=LocationRepository(database),
            users=UserRepository(database),
            archive=EventArchive(database),
        )


__all__ = [
    "db_manager",
    "get_database",
    "create_indexes",
    "DatabaseManager",
    "TransactionRunner",
    "BaseRepository",
    "UpsertResult",
    "Repositories",
    "ContactRepository",
    "NoteRepository",
    "TaskRepository",
    "AppointmentRepository",
    "ProjectRepository",
    "InvoiceRepository",
    "OrderRepository",
    "ConversationRepository",
    "MessageRepository",
    "LocationRepository",
    "UserRepository",
    "EventArchive",
]
